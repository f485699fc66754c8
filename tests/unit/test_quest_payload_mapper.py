import sys
from pathlib import Path
import unittest

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from questlog.application.mappers.quest_payload_mapper import quest_from_payload, quest_to_payload
from questlog.domain.errors import InvalidQuestData
from questlog.domain.models.quest import PermissionLevel, Quest, QuestDates, QuestPermissions, QuestStatus, Reward, Task
from questlog.domain.models.sync import MessageType, SyncMessage


class QuestPayloadMapperTests(unittest.TestCase):
    def test_payload_uses_camel_case_document_keys(self) -> None:
        quest = Quest(
            id="q1",
            title="Find the relic",
            status=QuestStatus.HIDDEN,
            giver_name="Elder",
            tasks=[Task(id="t1", text="Enter the crypt", completed=True)],
            permissions=QuestPermissions(default=PermissionLevel.NONE, users={"alice": PermissionLevel.OWNER}),
            parent_id="root",
            author_id="alice",
            hidden_prior_status=QuestStatus.ACTIVE,
            dates=QuestDates(created=5, started=6),
        )

        payload = quest_to_payload(quest)

        self.assertEqual("Elder", payload["giverName"])
        self.assertEqual("root", payload["parentId"])
        self.assertEqual("active", payload["hiddenPriorStatus"])
        self.assertEqual({"default": 0, "alice": 3}, payload["permissions"])
        self.assertEqual({"created": 5, "started": 6, "ended": None}, payload["dates"])
        self.assertEqual(quest, quest_from_payload(payload))

    def test_rewards_and_gm_notes_are_carried(self) -> None:
        quest = Quest(
            id="q1",
            rewards=[Reward(id="r1", name="Gold"), Reward(id="r2", name="Cursed ring", hidden=True, locked=False)],
            gm_notes="The elder is lying",
        )

        payload = quest_to_payload(quest)

        self.assertEqual("The elder is lying", payload["gmNotes"])
        self.assertEqual(
            {"id": "r2", "name": "Cursed ring", "hidden": True, "locked": False},
            payload["rewards"][1],
        )
        self.assertEqual(quest, quest_from_payload(payload))

    def test_reward_defaults_to_locked_and_visible(self) -> None:
        quest = quest_from_payload({"id": "q1", "rewards": [{"id": "r1", "name": "Gold"}]})

        self.assertTrue(quest.rewards[0].locked)
        self.assertFalse(quest.rewards[0].hidden)
        self.assertEqual("", quest.gm_notes)

    def test_missing_optional_fields_fall_back_to_defaults(self) -> None:
        quest = quest_from_payload({"id": "q1"})

        self.assertEqual("New Quest", quest.title)
        self.assertEqual(QuestStatus.AVAILABLE, quest.status)
        self.assertEqual(PermissionLevel.OBSERVER, quest.permissions.default)

    def test_malformed_payloads_raise_invalid_quest_data(self) -> None:
        for payload in (
            {},
            {"id": "q1", "status": "inactive"},
            {"id": "q1", "permissions": {"default": 7}},
            {"id": "q1", "tasks": [{"text": "no id"}]},
            {"id": "q1", "rewards": [{"name": "no id"}]},
            {"id": "q1", "order": "first"},
            ["not", "a", "mapping"],
        ):
            with self.subTest(payload=payload):
                with self.assertRaises(InvalidQuestData):
                    quest_from_payload(payload)


class SyncMessageWireTests(unittest.TestCase):
    def test_wire_shape(self) -> None:
        message = SyncMessage(type=MessageType.APPLY, quest_id="q1", revision=3, payload={"sender": "gm"})

        self.assertEqual(
            {"type": "apply", "questId": "q1", "revision": 3, "payload": {"sender": "gm"}},
            message.to_wire(),
        )
        self.assertEqual("gm", SyncMessage.from_wire(message.to_wire()).sender)

    def test_from_wire_rejects_malformed_messages(self) -> None:
        for wire in (
            {"type": "shout", "questId": "q1"},
            {"type": "apply"},
            {"type": "apply", "questId": "q1", "revision": "x"},
            {"type": "apply", "questId": "q1", "payload": []},
        ):
            with self.subTest(wire=wire):
                with self.assertRaises(InvalidQuestData):
                    SyncMessage.from_wire(wire)


if __name__ == "__main__":
    unittest.main()
