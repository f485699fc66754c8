"""Message-driven state transitions for quest replication.

``handle_message`` is a pure function of (local quests, incoming message,
client context). It never touches a store or a transport; it returns a
``SyncTransition`` describing which documents to replace or drop and which
messages to send, so every rule here can be exercised without a live socket.

Ordering rule: an ``apply`` for a quest is accepted only when its revision is
exactly one above the local revision. Anything else (gap, duplicate, unknown
quest) is dropped and answered with a single resync request; until the
resync document arrives further traffic for that quest is ignored. The
request authority (lowest-id GM) is the tie breaker: a stale or racing write
it receives loses to its own copy, which is pushed back to the writer.
A resync document is accepted only from the client the request was addressed
to or from the request authority.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

from questlog.application.mappers.quest_payload_mapper import quest_from_payload, quest_to_payload
from questlog.domain.errors import (
    CycleDetected,
    InvalidQuestData,
    InvalidTransition,
    PermissionDenied,
    QuestLogError,
    RevisionGap,
    UnknownQuest,
)
from questlog.domain.models.quest import Quest, QuestStatus
from questlog.domain.models.session import SessionRoster
from questlog.domain.models.sync import MessageType, SyncMessage
from questlog.domain.services.permissions import PermissionEvaluator
from questlog.domain.services.quest_graph import assert_acyclic
from questlog.domain.services.status_machine import (
    apply_status,
    authorize_transition,
    parse_status,
    validate_status_fields,
)

ORIGIN_LOCAL = "local"
ORIGIN_REMOTE = "remote"
ORIGIN_RESYNC = "resync"
ORIGIN_EXTERNAL = "external"

OP_UPSERT = "upsert"
OP_DELETE = "delete"
ACTION_STATUS = "status"
RESYNC_REQUEST = "request"
RESYNC_DOCUMENT = "document"


@dataclass(frozen=True)
class SyncContext:
    client_id: str
    roster: SessionRoster
    evaluator: PermissionEvaluator
    # quest id -> client the outstanding resync request was addressed to
    pending_resync: Mapping[str, str] = field(default_factory=dict)

    @property
    def is_authority(self) -> bool:
        return self.roster.request_authority() == self.client_id


@dataclass
class SyncTransition:
    upserts: List[Quest] = field(default_factory=list)
    deletions: List[str] = field(default_factory=list)
    outgoing: List[SyncMessage] = field(default_factory=list)
    resync_started: List[str] = field(default_factory=list)
    resync_cleared: List[str] = field(default_factory=list)
    origin: str = ORIGIN_REMOTE
    persist: bool = False
    discarded: Optional[str] = None
    error: Optional[QuestLogError] = None

    @property
    def changed_ids(self) -> List[str]:
        return [quest.id for quest in self.upserts] + list(self.deletions)


def apply_message(quest: Quest, *, sender: str) -> SyncMessage:
    return SyncMessage(
        type=MessageType.APPLY,
        quest_id=quest.id,
        revision=int(quest.revision),
        payload={"sender": sender, "op": OP_UPSERT, "quest": quest_to_payload(quest)},
    )


def delete_message(quest_id: str, revision: int, *, sender: str) -> SyncMessage:
    return SyncMessage(
        type=MessageType.APPLY,
        quest_id=quest_id,
        revision=int(revision),
        payload={"sender": sender, "op": OP_DELETE},
    )


def status_request_message(quest: Quest, target: QuestStatus, *, sender: str) -> SyncMessage:
    return SyncMessage(
        type=MessageType.REQUEST,
        quest_id=quest.id,
        revision=int(quest.revision),
        payload={"sender": sender, "action": ACTION_STATUS, "status": target.value},
    )


def resync_request_message(
    quest_id: str,
    local_revision: int,
    *,
    sender: str,
    responder: str,
    reason: str,
) -> SyncMessage:
    return SyncMessage(
        type=MessageType.RESYNC,
        quest_id=quest_id,
        revision=int(local_revision),
        payload={"sender": sender, "kind": RESYNC_REQUEST, "responder": responder, "reason": reason},
    )


def resync_document_message(
    quest_id: str,
    quest: Optional[Quest],
    *,
    sender: str,
    target: str,
) -> SyncMessage:
    return SyncMessage(
        type=MessageType.RESYNC,
        quest_id=quest_id,
        revision=int(quest.revision) if quest is not None else 0,
        payload={
            "sender": sender,
            "kind": RESYNC_DOCUMENT,
            "target": target,
            "quest": quest_to_payload(quest) if quest is not None else None,
        },
    )


def _discard(reason: str, error: Optional[QuestLogError] = None) -> SyncTransition:
    return SyncTransition(discarded=reason, error=error)


def _start_resync(
    message: SyncMessage,
    local: Optional[Quest],
    context: SyncContext,
    error: QuestLogError,
) -> SyncTransition:
    local_revision = int(local.revision) if local is not None else 0
    if context.is_authority:
        if local is not None and message.revision <= local_revision:
            # A racing or replayed write lost to the authority's copy; push it back.
            transition = _discard(str(error), error)
            transition.outgoing.append(
                resync_document_message(message.quest_id, local, sender=context.client_id, target=message.sender)
            )
            return transition
        responder = message.sender
    else:
        responder = context.roster.request_authority() or message.sender
    if not responder or responder == context.client_id:
        return _discard(f"{error}; no peer to resync from", error)

    request = resync_request_message(
        message.quest_id,
        local_revision,
        sender=context.client_id,
        responder=responder,
        reason=type(error).__name__,
    )
    return SyncTransition(
        outgoing=[request],
        resync_started=[message.quest_id],
        discarded=str(error),
        error=error,
    )


def _reject_unauthorized(
    message: SyncMessage,
    local: Optional[Quest],
    context: SyncContext,
    error: QuestLogError,
) -> SyncTransition:
    transition = _discard(str(error), error)
    if context.is_authority and message.sender:
        # Roll the offending client back to the authority's copy.
        transition.outgoing.append(
            resync_document_message(message.quest_id, local, sender=context.client_id, target=message.sender)
        )
    return transition


def _handle_apply(quests: Mapping[str, Quest], message: SyncMessage, context: SyncContext) -> SyncTransition:
    quest_id = message.quest_id
    if quest_id in context.pending_resync:
        return _discard("awaiting resync")

    local = quests.get(quest_id)
    local_revision = int(local.revision) if local is not None else 0
    if message.revision != local_revision + 1:
        error: QuestLogError
        if local is None:
            error = UnknownQuest(quest_id)
        else:
            error = RevisionGap(quest_id, local_revision, message.revision)
        return _start_resync(message, local, context, error)

    sender = message.sender
    role = context.roster.role_of(sender)
    op = str(message.payload.get("op", OP_UPSERT))

    if op == OP_DELETE:
        if local is None:
            return _discard("delete for unknown quest", UnknownQuest(quest_id))
        if not context.evaluator.is_owner(local, sender, role):
            return _reject_unauthorized(message, local, context, PermissionDenied(quest_id, sender, "delete"))
        return SyncTransition(deletions=[quest_id])

    if op != OP_UPSERT:
        return _discard(f"unknown apply op {op!r}", InvalidQuestData(f"unknown apply op {op!r}"))

    try:
        incoming = quest_from_payload(message.payload.get("quest") or {})
    except InvalidQuestData as exc:
        return _discard(str(exc), exc)
    if incoming.id != quest_id:
        error = InvalidQuestData(f"apply for {quest_id} carried document {incoming.id}")
        return _discard(str(error), error)
    incoming.revision = message.revision

    if local is None:
        if not context.evaluator.can_create(sender, role):
            return _reject_unauthorized(message, None, context, PermissionDenied(quest_id, sender, "create"))
    elif not context.evaluator.is_owner(local, sender, role):
        return _reject_unauthorized(message, local, context, PermissionDenied(quest_id, sender, "update"))

    try:
        validate_status_fields(incoming)
        duplicates = incoming.duplicate_task_orders()
        if duplicates:
            raise InvalidQuestData(f"Quest {quest_id} repeats task order {duplicates}")
        candidate = dict(quests)
        candidate[quest_id] = incoming
        assert_acyclic(candidate)
    except (InvalidTransition, CycleDetected, InvalidQuestData) as exc:
        return _reject_unauthorized(message, local, context, exc)

    return SyncTransition(upserts=[incoming])


def _handle_request(
    quests: Mapping[str, Quest],
    message: SyncMessage,
    context: SyncContext,
    now_ms: int,
) -> SyncTransition:
    if not context.is_authority:
        return _discard("not the request authority")

    local = quests.get(message.quest_id)
    if local is None:
        return _discard("request for unknown quest", UnknownQuest(message.quest_id))

    action = str(message.payload.get("action", ""))
    if action != ACTION_STATUS:
        error = InvalidQuestData(f"unknown request action {action!r}")
        return _discard(str(error), error)

    sender = message.sender
    role = context.roster.role_of(sender)
    try:
        target = parse_status(local.id, local.status, message.payload.get("status"))
        authorize_transition(
            local,
            target,
            user_id=sender,
            level=context.evaluator.effective_level(local, sender, role),
            policy=context.evaluator.policy,
        )
    except (PermissionDenied, InvalidTransition) as exc:
        return _discard(str(exc), exc)

    updated = apply_status(local, target, now_ms=now_ms)
    updated.revision = int(local.revision) + 1
    return SyncTransition(
        upserts=[updated],
        outgoing=[apply_message(updated, sender=context.client_id)],
        origin=ORIGIN_LOCAL,
        persist=True,
    )


def _handle_resync(quests: Mapping[str, Quest], message: SyncMessage, context: SyncContext) -> SyncTransition:
    kind = str(message.payload.get("kind", ""))

    if kind == RESYNC_REQUEST:
        if str(message.payload.get("responder", "")) != context.client_id:
            return _discard("resync request addressed to another client")
        local = quests.get(message.quest_id)
        return SyncTransition(
            outgoing=[
                resync_document_message(
                    message.quest_id,
                    copy.deepcopy(local) if local is not None else None,
                    sender=context.client_id,
                    target=message.sender,
                )
            ]
        )

    if kind == RESYNC_DOCUMENT:
        if str(message.payload.get("target", "")) != context.client_id:
            return _discard("resync document addressed to another client")
        sender = message.sender
        if sender not in (context.pending_resync.get(message.quest_id), context.roster.request_authority()):
            # Only the peer we asked, or the authority rolling us back, may replace a document.
            error = PermissionDenied(message.quest_id, sender, "resync")
            return _discard(str(error), error)
        document = message.payload.get("quest")
        if document is None:
            deletions = [message.quest_id] if message.quest_id in quests else []
            return SyncTransition(
                deletions=deletions, resync_cleared=[message.quest_id], origin=ORIGIN_RESYNC, persist=True
            )
        try:
            incoming = quest_from_payload(document)
        except InvalidQuestData as exc:
            return _discard(str(exc), exc)
        incoming.revision = message.revision
        return SyncTransition(
            upserts=[incoming], resync_cleared=[message.quest_id], origin=ORIGIN_RESYNC, persist=True
        )

    error = InvalidQuestData(f"unknown resync kind {kind!r}")
    return _discard(str(error), error)


def handle_message(
    quests: Mapping[str, Quest],
    message: SyncMessage,
    context: SyncContext,
    *,
    now_ms: int,
) -> SyncTransition:
    if message.sender == context.client_id:
        return _discard("own message echoed by relay")

    if message.type == MessageType.APPLY:
        return _handle_apply(quests, message, context)
    if message.type == MessageType.REQUEST:
        return _handle_request(quests, message, context, now_ms)
    return _handle_resync(quests, message, context)
