import sys
from pathlib import Path
import unittest

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from questlog.application import dtos
from questlog.application.contract import (
    COMMAND_INTENTS,
    CONTRACT_DTO_TYPES,
    CONTRACT_VERSION,
    HOOK_NAMES,
    MESSAGE_TYPES,
    QUERY_INTENTS,
)
from questlog.application.services.quest_log_service import QuestLogService


class ApplicationContractTests(unittest.TestCase):
    def test_contract_version_uses_semver(self) -> None:
        self.assertRegex(CONTRACT_VERSION, r"^\d+\.\d+\.\d+$")

    def test_quest_log_service_implements_declared_intents(self) -> None:
        for name in COMMAND_INTENTS + QUERY_INTENTS:
            self.assertTrue(callable(getattr(QuestLogService, name, None)), f"Missing contract intent: {name}")

    def test_declared_dto_types_exist(self) -> None:
        for dto_name in CONTRACT_DTO_TYPES:
            self.assertTrue(hasattr(dtos, dto_name), f"Missing contract DTO: {dto_name}")

    def test_hook_names_cover_core_lifecycle(self) -> None:
        for hook in (
            "quest:created",
            "quest:updated",
            "quest:deleted",
            "quest:statusChanged",
            "quest:permissionsChanged",
            "quest:classified",
        ):
            self.assertIn(hook, HOOK_NAMES)

    def test_message_types_match_wire_protocol(self) -> None:
        self.assertEqual(("apply", "request", "resync"), MESSAGE_TYPES)


if __name__ == "__main__":
    unittest.main()
