import sys
from pathlib import Path
import unittest

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from questlog.domain.errors import CycleDetected
from questlog.domain.models.quest import Quest
from questlog.domain.services.quest_graph import (
    assert_acyclic,
    assert_can_attach,
    descendants,
    find_cycle_edge,
    would_create_cycle,
)


def _chain() -> dict[str, Quest]:
    # a -> b -> c
    return {
        "a": Quest(id="a", sub_quest_ids=["b"]),
        "b": Quest(id="b", parent_id="a", sub_quest_ids=["c"]),
        "c": Quest(id="c", parent_id="b"),
        "d": Quest(id="d"),
    }


class QuestGraphTests(unittest.TestCase):
    def test_descendants_follow_sub_quest_links(self) -> None:
        self.assertEqual({"b", "c"}, descendants(_chain(), "a"))
        self.assertEqual(set(), descendants(_chain(), "d"))

    def test_attaching_an_ancestor_under_its_descendant_is_a_cycle(self) -> None:
        quests = _chain()

        self.assertTrue(would_create_cycle(quests, "c", "a"))
        self.assertTrue(would_create_cycle(quests, "a", "a"))
        self.assertFalse(would_create_cycle(quests, "a", "d"))
        self.assertFalse(would_create_cycle(quests, "d", "a"))

    def test_assert_can_attach_raises_with_edge_details(self) -> None:
        with self.assertRaises(CycleDetected) as ctx:
            assert_can_attach(_chain(), "c", "a")

        self.assertEqual("c", ctx.exception.parent_id)
        self.assertEqual("a", ctx.exception.child_id)

    def test_parent_pointer_alone_counts_as_edge(self) -> None:
        quests = {
            "a": Quest(id="a"),
            "b": Quest(id="b", parent_id="a"),
        }

        self.assertTrue(would_create_cycle(quests, "b", "a"))

    def test_find_cycle_edge_detects_closed_loop(self) -> None:
        quests = _chain()
        quests["c"].sub_quest_ids.append("a")

        self.assertIsNotNone(find_cycle_edge(quests))
        with self.assertRaises(CycleDetected):
            assert_acyclic(quests)

    def test_acyclic_graph_passes(self) -> None:
        self.assertIsNone(find_cycle_edge(_chain()))
        assert_acyclic(_chain())


if __name__ == "__main__":
    unittest.main()
