from __future__ import annotations

import json
import logging
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional

from questlog.domain.errors import InvalidQuestData
from questlog.domain.models.sync import SyncMessage
from questlog.domain.repositories import MessageHandler, QuestTransport


logger = logging.getLogger(__name__)

DropFilter = Callable[[str, Dict[str, Any]], bool]


class LoopbackHub:
    """In-process relay shared by several clients.

    Messages are queued rather than delivered inline so a test controls
    interleaving with ``drain``. Each message is serialized to JSON and back,
    so receivers never share objects with the sender. The sender does not
    receive its own broadcast. Every message is attributed to the client that
    sent it; a different ``sender`` claimed in the payload is replaced.
    """

    def __init__(self) -> None:
        self._transports: Dict[str, "LoopbackTransport"] = {}
        self._queue: Deque[tuple[str, str]] = deque()
        self.drop_filter: Optional[DropFilter] = None
        self.sent: List[Dict[str, Any]] = []
        self.dropped: List[Dict[str, Any]] = []

    def connect(self, client_id: str) -> "LoopbackTransport":
        transport = LoopbackTransport(self, str(client_id))
        self._transports[transport.client_id] = transport
        return transport

    def disconnect(self, client_id: str) -> None:
        self._transports.pop(str(client_id), None)

    def pending(self) -> int:
        return len(self._queue)

    def broadcast(self, sender_id: str, message: SyncMessage) -> None:
        if message.sender != sender_id:
            logger.warning(
                "Replaced forged sender on loopback message",
                extra={"client_id": sender_id, "claimed_sender": message.sender, "quest_id": message.quest_id},
            )
        wire = message.with_sender(sender_id).to_wire()
        self.sent.append(wire)
        encoded = json.dumps(wire, sort_keys=True)
        for client_id in sorted(self._transports):
            if client_id == sender_id:
                continue
            self._queue.append((client_id, encoded))

    def drain(self, max_messages: int | None = None) -> int:
        """Deliver queued messages in FIFO order, including ones sent while draining."""

        delivered = 0
        while self._queue:
            if max_messages is not None and delivered >= max_messages:
                break
            client_id, encoded = self._queue.popleft()
            transport = self._transports.get(client_id)
            if transport is None:
                continue
            wire = json.loads(encoded)
            if self.drop_filter is not None and self.drop_filter(client_id, wire):
                self.dropped.append(wire)
                continue
            transport.deliver(wire)
            delivered += 1
        return delivered


class LoopbackTransport(QuestTransport):
    def __init__(self, hub: LoopbackHub, client_id: str) -> None:
        self.hub = hub
        self.client_id = client_id
        self._handlers: List[MessageHandler] = []

    def send(self, message: SyncMessage) -> None:
        self.hub.broadcast(self.client_id, message)

    def on_message(self, handler: MessageHandler) -> None:
        self._handlers.append(handler)

    def deliver(self, wire: Dict[str, Any]) -> None:
        try:
            message = SyncMessage.from_wire(wire)
        except InvalidQuestData as exc:
            logger.warning("Skipped malformed loopback message", extra={"client_id": self.client_id, "error": str(exc)})
            return
        for handler in list(self._handlers):
            handler(message)

    def close(self) -> None:
        self.hub.disconnect(self.client_id)
