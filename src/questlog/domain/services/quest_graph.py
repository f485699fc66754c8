from __future__ import annotations

from typing import Dict, List, Mapping, Optional, Set, Tuple

from questlog.domain.errors import CycleDetected
from questlog.domain.models.quest import Quest


def _edges(quests: Mapping[str, Quest]) -> Dict[str, List[str]]:
    adjacency: Dict[str, Set[str]] = {quest_id: set() for quest_id in quests}
    for quest_id, quest in quests.items():
        adjacency.setdefault(quest_id, set()).update(quest.sub_quest_ids)
        if quest.parent_id:
            adjacency.setdefault(quest.parent_id, set()).add(quest_id)
    return {key: sorted(children) for key, children in adjacency.items()}


def descendants(quests: Mapping[str, Quest], root_id: str) -> Set[str]:
    adjacency = _edges(quests)
    seen: Set[str] = set()
    stack = list(adjacency.get(root_id, ()))
    while stack:
        current = stack.pop()
        if current in seen:
            continue
        seen.add(current)
        stack.extend(adjacency.get(current, ()))
    return seen


def would_create_cycle(quests: Mapping[str, Quest], parent_id: str, child_id: str) -> bool:
    if parent_id == child_id:
        return True
    return parent_id in descendants(quests, child_id)


def assert_can_attach(quests: Mapping[str, Quest], parent_id: str, child_id: str) -> None:
    if would_create_cycle(quests, parent_id, child_id):
        raise CycleDetected(parent_id, child_id)


def find_cycle_edge(quests: Mapping[str, Quest]) -> Optional[Tuple[str, str]]:
    """Return one (parent, child) edge that closes a cycle, or None when acyclic."""

    adjacency = _edges(quests)
    visiting: Set[str] = set()
    done: Set[str] = set()

    for start in sorted(adjacency):
        if start in done:
            continue
        stack: List[Tuple[str, int]] = [(start, 0)]
        visiting.add(start)
        while stack:
            node, index = stack[-1]
            children = adjacency.get(node, [])
            if index >= len(children):
                stack.pop()
                visiting.discard(node)
                done.add(node)
                continue
            stack[-1] = (node, index + 1)
            child = children[index]
            if child in visiting:
                return node, child
            if child not in done:
                visiting.add(child)
                stack.append((child, 0))
    return None


def assert_acyclic(quests: Mapping[str, Quest]) -> None:
    edge = find_cycle_edge(quests)
    if edge is not None:
        raise CycleDetected(*edge)
