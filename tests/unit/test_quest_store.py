import sys
from pathlib import Path
import unittest

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from questlog.application.services.event_bus import EventBus
from questlog.application.services.quest_store import QuestStore
from questlog.domain.events import (
    QuestCreated,
    QuestDeleted,
    QuestPermissionsChanged,
    QuestsLoaded,
    QuestStatusChanged,
    QuestUpdated,
)
from questlog.domain.models.quest import PermissionLevel, Quest, QuestStatus


class QuestStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self.bus = EventBus()
        self.events: list[object] = []
        for event_type in (
            QuestsLoaded,
            QuestCreated,
            QuestUpdated,
            QuestDeleted,
            QuestStatusChanged,
            QuestPermissionsChanged,
        ):
            self.bus.subscribe(event_type, self.events.append)
        self.store = QuestStore(self.bus)

    def test_put_new_quest_publishes_created(self) -> None:
        self.store.put(Quest(id="q1", revision=1), origin="local")

        self.assertIn("q1", self.store)
        self.assertEqual(1, self.store.revision("q1"))
        self.assertEqual([QuestCreated(quest_id="q1", revision=1, origin="local")], self.events)

    def test_put_existing_quest_publishes_field_specific_events(self) -> None:
        self.store.put(Quest(id="q1", revision=1), origin="local")
        self.events.clear()

        updated = Quest(id="q1", revision=2, status=QuestStatus.ACTIVE)
        updated.permissions = updated.permissions.with_level("alice", PermissionLevel.OWNER)
        self.store.put(updated, origin="remote")

        self.assertEqual(
            [
                QuestUpdated(quest_id="q1", revision=2, origin="remote"),
                QuestStatusChanged(quest_id="q1", previous_status="available", status="active", origin="remote"),
                QuestPermissionsChanged(quest_id="q1", origin="remote"),
            ],
            self.events,
        )

    def test_reads_return_copies(self) -> None:
        self.store.put(Quest(id="q1", title="Original"), origin="local")

        copy = self.store.get("q1")
        copy.title = "Changed"

        self.assertEqual("Original", self.store.get("q1").title)
        self.assertEqual("Original", self.store.snapshot()["q1"].title)

    def test_remove_publishes_deleted_only_for_known_quest(self) -> None:
        self.store.put(Quest(id="q1"), origin="local")
        self.events.clear()

        self.assertTrue(self.store.remove("q1", origin="remote"))
        self.assertFalse(self.store.remove("q1", origin="remote"))
        self.assertEqual([QuestDeleted(quest_id="q1", origin="remote")], self.events)
        self.assertEqual(0, self.store.revision("q1"))

    def test_load_replaces_arena(self) -> None:
        self.store.put(Quest(id="old"), origin="local")

        self.store.load([Quest(id="b"), Quest(id="a")])

        self.assertEqual(["a", "b"], [quest.id for quest in self.store.list_all()])
        self.assertEqual(QuestsLoaded(quest_ids=("a", "b")), self.events[-1])


if __name__ == "__main__":
    unittest.main()
