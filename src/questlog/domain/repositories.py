from abc import ABC, abstractmethod
from typing import Callable, List, Optional

from questlog.domain.models.quest import Quest
from questlog.domain.models.sync import SyncMessage

ExternalChangeCallback = Callable[[str, Optional[Quest]], None]
MessageHandler = Callable[[SyncMessage], None]


class QuestRepository(ABC):
    @abstractmethod
    def load_all(self) -> List[Quest]:
        raise NotImplementedError

    @abstractmethod
    def persist(self, quest: Quest) -> None:
        raise NotImplementedError

    @abstractmethod
    def delete(self, quest_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def subscribe_external_change(self, callback: ExternalChangeCallback) -> None:
        """Register a callback fired with (quest_id, quest or None) on out-of-band edits."""
        raise NotImplementedError


class QuestTransport(ABC):
    @abstractmethod
    def send(self, message: SyncMessage) -> None:
        raise NotImplementedError

    @abstractmethod
    def on_message(self, handler: MessageHandler) -> None:
        raise NotImplementedError

    def close(self) -> None:
        """Stop delivering messages; default transports hold nothing to release."""
        return None
