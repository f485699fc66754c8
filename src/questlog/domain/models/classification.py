from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Tuple

from questlog.domain.models.quest import BUCKET_ORDER, QuestStatus


@dataclass(frozen=True)
class Classification:
    active: Tuple[str, ...] = ()
    available: Tuple[str, ...] = ()
    completed: Tuple[str, ...] = ()
    failed: Tuple[str, ...] = ()
    hidden: Tuple[str, ...] = ()

    def bucket(self, status: QuestStatus | str) -> Tuple[str, ...]:
        return getattr(self, QuestStatus(status).value)

    def counts(self) -> Dict[str, int]:
        return {status.value: len(self.bucket(status)) for status in BUCKET_ORDER}

    def all_ids(self) -> Tuple[str, ...]:
        return tuple(quest_id for status in BUCKET_ORDER for quest_id in self.bucket(status))
