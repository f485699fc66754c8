from __future__ import annotations

import copy
from typing import Dict, Iterable, List, Optional

from questlog.application.services.event_bus import EventBus
from questlog.domain.events import (
    QuestCreated,
    QuestDeleted,
    QuestPermissionsChanged,
    QuestsLoaded,
    QuestStatusChanged,
    QuestUpdated,
)
from questlog.domain.models.quest import Quest


class QuestStore:
    """Per-client arena of quest documents keyed by id.

    Callers only ever receive copies; every write goes through ``put`` or
    ``remove`` so change notifications cannot be bypassed.
    """

    def __init__(self, event_bus: EventBus) -> None:
        self.event_bus = event_bus
        self._quests: Dict[str, Quest] = {}

    def __contains__(self, quest_id: object) -> bool:
        return quest_id in self._quests

    def __len__(self) -> int:
        return len(self._quests)

    def get(self, quest_id: str) -> Optional[Quest]:
        quest = self._quests.get(str(quest_id))
        return copy.deepcopy(quest) if quest is not None else None

    def revision(self, quest_id: str) -> int:
        quest = self._quests.get(str(quest_id))
        return int(quest.revision) if quest is not None else 0

    def list_all(self) -> List[Quest]:
        return [copy.deepcopy(self._quests[quest_id]) for quest_id in sorted(self._quests)]

    def snapshot(self) -> Dict[str, Quest]:
        return {quest_id: copy.deepcopy(quest) for quest_id, quest in self._quests.items()}

    def load(self, quests: Iterable[Quest]) -> None:
        """Replace the whole arena, e.g. on connect or reconnect."""

        self._quests = {quest.id: copy.deepcopy(quest) for quest in quests}
        self.event_bus.publish(QuestsLoaded(quest_ids=tuple(sorted(self._quests))))

    def put(self, quest: Quest, *, origin: str) -> None:
        previous = self._quests.get(quest.id)
        stored = copy.deepcopy(quest)
        self._quests[quest.id] = stored

        if previous is None:
            self.event_bus.publish(QuestCreated(quest_id=stored.id, revision=stored.revision, origin=origin))
            return

        self.event_bus.publish(QuestUpdated(quest_id=stored.id, revision=stored.revision, origin=origin))
        if previous.status != stored.status:
            self.event_bus.publish(
                QuestStatusChanged(
                    quest_id=stored.id,
                    previous_status=previous.status.value,
                    status=stored.status.value,
                    origin=origin,
                )
            )
        if previous.permissions != stored.permissions:
            self.event_bus.publish(QuestPermissionsChanged(quest_id=stored.id, origin=origin))

    def remove(self, quest_id: str, *, origin: str) -> bool:
        removed = self._quests.pop(str(quest_id), None)
        if removed is None:
            return False
        self.event_bus.publish(QuestDeleted(quest_id=removed.id, origin=origin))
        return True
