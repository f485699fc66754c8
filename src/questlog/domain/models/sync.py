from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

from questlog.domain.errors import InvalidQuestData


class MessageType(str, Enum):
    APPLY = "apply"
    REQUEST = "request"
    RESYNC = "resync"


@dataclass(frozen=True)
class SyncMessage:
    """One socket message. Wire shape: {type, questId, revision, payload}."""

    type: MessageType
    quest_id: str
    revision: int
    payload: Mapping[str, Any] = field(default_factory=dict)

    @property
    def sender(self) -> str:
        return str(self.payload.get("sender", ""))

    def with_sender(self, sender: str) -> "SyncMessage":
        """Copy of this message attributed to ``sender`` as authenticated by the transport."""

        payload = dict(self.payload)
        payload["sender"] = str(sender)
        return SyncMessage(type=self.type, quest_id=self.quest_id, revision=self.revision, payload=payload)

    def to_wire(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "questId": self.quest_id,
            "revision": int(self.revision),
            "payload": dict(self.payload),
        }

    @classmethod
    def from_wire(cls, data: Mapping[str, Any]) -> "SyncMessage":
        if not isinstance(data, Mapping):
            raise InvalidQuestData(f"Sync message must be a mapping, got {type(data).__name__}")
        try:
            message_type = MessageType(str(data.get("type", "")))
        except ValueError as exc:
            raise InvalidQuestData(f"Unknown sync message type: {data.get('type')!r}") from exc
        quest_id = str(data.get("questId", "") or "")
        if not quest_id:
            raise InvalidQuestData("Sync message is missing questId")
        payload = data.get("payload") or {}
        if not isinstance(payload, Mapping):
            raise InvalidQuestData("Sync message payload must be a mapping")
        try:
            revision = int(data.get("revision", 0) or 0)
        except (TypeError, ValueError) as exc:
            raise InvalidQuestData(f"Invalid revision: {data.get('revision')!r}") from exc
        return cls(type=message_type, quest_id=quest_id, revision=revision, payload=dict(payload))
