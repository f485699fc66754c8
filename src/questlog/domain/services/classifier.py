from __future__ import annotations

from typing import Dict, Iterable, List, Optional

from questlog.domain.models.classification import Classification
from questlog.domain.models.quest import BUCKET_ORDER, Quest, QuestStatus, SessionRole
from questlog.domain.services.permissions import FineGrainedPermissionEvaluator, PermissionEvaluator


def sort_key(quest: Quest) -> tuple[int, int, str]:
    return int(quest.order), int(quest.dates.created), str(quest.id)


def classify(
    quests: Iterable[Quest],
    user_id: str,
    role: SessionRole,
    evaluator: Optional[PermissionEvaluator] = None,
) -> Classification:
    """Sort the quests ``user_id`` may see into the five workflow buckets.

    Output depends only on the given quests and caller identity, so two calls
    over the same snapshot compare equal and presentation code can diff them.
    """

    evaluator = evaluator or FineGrainedPermissionEvaluator()
    buckets: Dict[QuestStatus, List[Quest]] = {status: [] for status in BUCKET_ORDER}
    for quest in quests:
        if not evaluator.is_visible(quest, user_id, role):
            continue
        buckets[quest.status].append(quest)

    ordered = {
        status.value: tuple(quest.id for quest in sorted(rows, key=sort_key))
        for status, rows in buckets.items()
    }
    return Classification(**ordered)
