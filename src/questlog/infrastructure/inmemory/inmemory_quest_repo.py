from __future__ import annotations

import copy
from typing import Dict, Iterable, List, Optional

from questlog.domain.models.quest import Quest
from questlog.domain.repositories import ExternalChangeCallback, QuestRepository


class InMemoryQuestRepository(QuestRepository):
    def __init__(self, quests: Iterable[Quest] = ()) -> None:
        self._quests: Dict[str, Quest] = {quest.id: copy.deepcopy(quest) for quest in quests}
        self._callbacks: List[ExternalChangeCallback] = []

    def load_all(self) -> List[Quest]:
        return [copy.deepcopy(self._quests[quest_id]) for quest_id in sorted(self._quests)]

    def get(self, quest_id: str) -> Optional[Quest]:
        quest = self._quests.get(str(quest_id))
        return copy.deepcopy(quest) if quest is not None else None

    def persist(self, quest: Quest) -> None:
        self._quests[quest.id] = copy.deepcopy(quest)

    def delete(self, quest_id: str) -> None:
        self._quests.pop(str(quest_id), None)

    def subscribe_external_change(self, callback: ExternalChangeCallback) -> None:
        self._callbacks.append(callback)

    def simulate_external_edit(self, quest_id: str, quest: Optional[Quest]) -> None:
        """Edit the backing store out of band, as a journal editor would, and notify subscribers."""

        if quest is None:
            self._quests.pop(str(quest_id), None)
        else:
            self._quests[str(quest_id)] = copy.deepcopy(quest)
        for callback in list(self._callbacks):
            callback(str(quest_id), copy.deepcopy(quest) if quest is not None else None)
