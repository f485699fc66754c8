from __future__ import annotations

import logging
import time
from typing import Callable, Dict, List, Optional

from questlog.application.services.event_bus import EventBus
from questlog.application.services.quest_store import QuestStore
from questlog.application.services.sync_protocol import (
    ORIGIN_EXTERNAL,
    ORIGIN_LOCAL,
    RESYNC_REQUEST,
    SyncContext,
    SyncTransition,
    apply_message,
    delete_message,
    handle_message,
    status_request_message,
)
from questlog.domain.events import QuestResyncRequested
from questlog.domain.models.quest import Quest, QuestStatus
from questlog.domain.models.session import SessionRoster
from questlog.domain.models.sync import MessageType, SyncMessage
from questlog.domain.repositories import QuestRepository, QuestTransport
from questlog.domain.services.permissions import PermissionEvaluator


def _epoch_ms() -> int:
    return int(time.time() * 1000)


class QuestSyncService:
    """Commits local writes optimistically and folds remote messages into the store."""

    def __init__(
        self,
        *,
        client_id: str,
        store: QuestStore,
        transport: QuestTransport,
        repository: QuestRepository,
        event_bus: EventBus,
        roster: SessionRoster,
        evaluator: PermissionEvaluator,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self.client_id = str(client_id)
        self.store = store
        self.transport = transport
        self.repository = repository
        self.event_bus = event_bus
        self.roster = roster
        self.evaluator = evaluator
        self.clock = clock or _epoch_ms
        self._pending_resync: Dict[str, SyncMessage] = {}
        self._logger = logging.getLogger(__name__)

    def context(self) -> SyncContext:
        return SyncContext(
            client_id=self.client_id,
            roster=self.roster,
            evaluator=self.evaluator,
            pending_resync={
                quest_id: str(message.payload.get("responder", "")) for quest_id, message in self._pending_resync.items()
            },
        )

    def pending_resyncs(self) -> List[str]:
        return sorted(self._pending_resync)

    def commit_local(self, quest: Quest) -> Quest:
        """Apply an already-authorized write locally, persist it, then broadcast it."""

        quest.revision = self.store.revision(quest.id) + 1
        self.store.put(quest, origin=ORIGIN_LOCAL)
        self.repository.persist(quest)
        self.transport.send(apply_message(quest, sender=self.client_id))
        return quest

    def commit_local_delete(self, quest_id: str) -> None:
        revision = self.store.revision(quest_id) + 1
        self.store.remove(quest_id, origin=ORIGIN_LOCAL)
        self.repository.delete(quest_id)
        self.transport.send(delete_message(quest_id, revision, sender=self.client_id))

    def send_status_request(self, quest: Quest, target: QuestStatus) -> None:
        self._logger.info(
            "Routing status change as privileged request",
            extra={"quest_id": quest.id, "status": target.value, "client_id": self.client_id},
        )
        self.transport.send(status_request_message(quest, target, sender=self.client_id))

    def receive(self, message: SyncMessage) -> SyncTransition:
        transition = handle_message(self.store.snapshot(), message, self.context(), now_ms=self.clock())

        if transition.discarded:
            self._logger.info(
                "Discarded sync message",
                extra={
                    "quest_id": message.quest_id,
                    "message_type": message.type.value,
                    "revision": message.revision,
                    "sender": message.sender,
                    "reason": transition.discarded,
                },
            )

        for quest_id in transition.resync_cleared:
            self._pending_resync.pop(quest_id, None)
        for quest in transition.upserts:
            self.store.put(quest, origin=transition.origin)
            if transition.persist:
                self.repository.persist(quest)
        for quest_id in transition.deletions:
            self.store.remove(quest_id, origin=transition.origin)
            if transition.persist:
                self.repository.delete(quest_id)

        for outgoing in transition.outgoing:
            if outgoing.type == MessageType.RESYNC and outgoing.payload.get("kind") == RESYNC_REQUEST:
                self._pending_resync[outgoing.quest_id] = outgoing
            self.transport.send(outgoing)

        for quest_id in transition.resync_started:
            self.event_bus.publish(
                QuestResyncRequested(
                    quest_id=quest_id,
                    reason=type(transition.error).__name__ if transition.error else "resync",
                )
            )
        return transition

    def retry_pending_resyncs(self) -> int:
        """Resend outstanding resync requests; delivery is fire-and-forget so one may be lost."""

        for message in list(self._pending_resync.values()):
            self.transport.send(message)
        return len(self._pending_resync)

    def apply_external(self, quest_id: str, quest: Optional[Quest]) -> bool:
        """Mirror an out-of-band edit of the backing document; nothing is broadcast."""

        self._pending_resync.pop(quest_id, None)
        if quest is None:
            return self.store.remove(quest_id, origin=ORIGIN_EXTERNAL)
        self.store.put(quest, origin=ORIGIN_EXTERNAL)
        return True

    def reset(self) -> None:
        self._pending_resync.clear()
