from __future__ import annotations

import copy
from enum import Enum

from questlog.domain.errors import InvalidTransition, PermissionDenied
from questlog.domain.models.quest import PermissionLevel, Quest, QuestStatus
from questlog.domain.models.session import PermissionPolicy


class TransitionRoute(str, Enum):
    LOCAL = "local"
    REQUEST = "request"


def parse_status(quest_id: str, current: QuestStatus, value: object) -> QuestStatus:
    try:
        return QuestStatus(str(getattr(value, "value", value)))
    except ValueError as exc:
        raise InvalidTransition(quest_id, current.value, str(value), "unknown status") from exc


def authorize_transition(
    quest: Quest,
    target: QuestStatus,
    *,
    user_id: str,
    level: PermissionLevel,
    policy: PermissionPolicy,
) -> TransitionRoute:
    """Decide whether a status change applies locally, goes out as a request, or is refused."""

    if target == quest.status:
        raise InvalidTransition(quest.id, quest.status.value, target.value, "status unchanged")

    if level >= PermissionLevel.OWNER:
        return TransitionRoute.LOCAL

    if (
        quest.status == QuestStatus.AVAILABLE
        and target == QuestStatus.ACTIVE
        and policy.allow_player_accept
        and level >= PermissionLevel.OBSERVER
    ):
        return TransitionRoute.REQUEST

    raise PermissionDenied(quest.id, user_id, f"set status {target.value} on")


def apply_status(quest: Quest, target: QuestStatus, *, now_ms: int) -> Quest:
    """Return a copy of ``quest`` moved to ``target`` with dates and hide memory updated."""

    if target == quest.status:
        raise InvalidTransition(quest.id, quest.status.value, target.value, "status unchanged")

    updated = copy.deepcopy(quest)
    if target == QuestStatus.HIDDEN:
        updated.hidden_prior_status = quest.status
        updated.status = QuestStatus.HIDDEN
        return updated

    updated.status = target
    updated.hidden_prior_status = None
    if target == QuestStatus.ACTIVE:
        updated.dates.started = int(now_ms)
        updated.dates.ended = None
    elif target in (QuestStatus.COMPLETED, QuestStatus.FAILED):
        if updated.dates.started is None:
            updated.dates.started = int(now_ms)
        updated.dates.ended = int(now_ms)
    elif target == QuestStatus.AVAILABLE:
        updated.dates.started = None
        updated.dates.ended = None
    return updated


def unhide(quest: Quest) -> Quest:
    if quest.status != QuestStatus.HIDDEN:
        raise InvalidTransition(quest.id, quest.status.value, "unhide", "quest is not hidden")
    if quest.hidden_prior_status is None:
        raise InvalidTransition(quest.id, quest.status.value, "unhide", "no status to restore")

    updated = copy.deepcopy(quest)
    updated.status = quest.hidden_prior_status
    updated.hidden_prior_status = None
    return updated


def validate_status_fields(quest: Quest) -> None:
    if quest.status == QuestStatus.HIDDEN:
        if quest.hidden_prior_status in (None, QuestStatus.HIDDEN):
            raise InvalidTransition(quest.id, "hidden", "hidden", "hidden quest lost its prior status")
    elif quest.hidden_prior_status is not None:
        raise InvalidTransition(quest.id, quest.status.value, quest.status.value, "visible quest keeps a hide memory")
