from __future__ import annotations

from typing import Any, Mapping

from questlog.domain.errors import InvalidQuestData
from questlog.domain.models.quest import (
    DEFAULT_PERMISSION_KEY,
    PermissionLevel,
    Quest,
    QuestDates,
    QuestPermissions,
    QuestStatus,
    Reward,
    Task,
)


def task_to_payload(task: Task) -> dict[str, Any]:
    return {
        "id": task.id,
        "text": task.text,
        "completed": bool(task.completed),
        "failed": bool(task.failed),
        "hidden": bool(task.hidden),
        "order": int(task.order),
    }


def reward_to_payload(reward: Reward) -> dict[str, Any]:
    return {
        "id": reward.id,
        "name": reward.name,
        "hidden": bool(reward.hidden),
        "locked": bool(reward.locked),
    }


def quest_to_payload(quest: Quest) -> dict[str, Any]:
    permissions: dict[str, int] = {DEFAULT_PERMISSION_KEY: int(quest.permissions.default)}
    for user_id, level in sorted(quest.permissions.users.items()):
        permissions[str(user_id)] = int(level)

    return {
        "id": quest.id,
        "title": quest.title,
        "status": quest.status.value,
        "giverName": quest.giver_name,
        "description": quest.description,
        "tasks": [task_to_payload(task) for task in quest.tasks],
        "rewards": [reward_to_payload(reward) for reward in quest.rewards],
        "gmNotes": quest.gm_notes,
        "permissions": permissions,
        "order": int(quest.order),
        "parentId": quest.parent_id,
        "subQuestIds": list(quest.sub_quest_ids),
        "revision": int(quest.revision),
        "authorId": quest.author_id,
        "hiddenPriorStatus": quest.hidden_prior_status.value if quest.hidden_prior_status else None,
        "dates": {
            "created": int(quest.dates.created),
            "started": quest.dates.started,
            "ended": quest.dates.ended,
        },
    }


def _optional_int(value: object) -> int | None:
    if value is None:
        return None
    return int(value)


def _to_task(payload: Mapping[str, Any], fallback_order: int) -> Task:
    task_id = str(payload.get("id", "") or "")
    if not task_id:
        raise InvalidQuestData("Task payload is missing id")
    return Task(
        id=task_id,
        text=str(payload.get("text", "") or ""),
        completed=bool(payload.get("completed", False)),
        failed=bool(payload.get("failed", False)),
        hidden=bool(payload.get("hidden", False)),
        order=int(payload.get("order", fallback_order)),
    )


def _to_reward(payload: Mapping[str, Any]) -> Reward:
    reward_id = str(payload.get("id", "") or "")
    if not reward_id:
        raise InvalidQuestData("Reward payload is missing id")
    return Reward(
        id=reward_id,
        name=str(payload.get("name", "") or ""),
        hidden=bool(payload.get("hidden", False)),
        locked=bool(payload.get("locked", True)),
    )


def _to_permissions(payload: object) -> QuestPermissions:
    if payload is None:
        return QuestPermissions()
    if not isinstance(payload, Mapping):
        raise InvalidQuestData("Quest permissions must be a mapping")
    default = PermissionLevel.parse(payload.get(DEFAULT_PERMISSION_KEY, PermissionLevel.OBSERVER))
    users = {
        str(user_id): PermissionLevel.parse(level)
        for user_id, level in payload.items()
        if str(user_id) != DEFAULT_PERMISSION_KEY
    }
    return QuestPermissions(default=default, users=users)


def quest_from_payload(payload: Mapping[str, Any]) -> Quest:
    if not isinstance(payload, Mapping):
        raise InvalidQuestData(f"Quest payload must be a mapping, got {type(payload).__name__}")
    quest_id = str(payload.get("id", "") or "")
    if not quest_id:
        raise InvalidQuestData("Quest payload is missing id")

    try:
        status = QuestStatus(str(payload.get("status", QuestStatus.AVAILABLE.value)))
        prior_raw = payload.get("hiddenPriorStatus")
        prior = QuestStatus(str(prior_raw)) if prior_raw else None
        dates_raw = payload.get("dates") or {}
        tasks = [
            _to_task(task, index)
            for index, task in enumerate(payload.get("tasks") or [])
            if isinstance(task, Mapping)
        ]
        rewards = [_to_reward(reward) for reward in payload.get("rewards") or [] if isinstance(reward, Mapping)]
        return Quest(
            id=quest_id,
            title=str(payload.get("title", "New Quest") or "New Quest"),
            status=status,
            giver_name=str(payload.get("giverName", "") or ""),
            description=str(payload.get("description", "") or ""),
            tasks=tasks,
            rewards=rewards,
            gm_notes=str(payload.get("gmNotes", "") or ""),
            permissions=_to_permissions(payload.get("permissions")),
            order=int(payload.get("order", 0) or 0),
            parent_id=str(payload["parentId"]) if payload.get("parentId") else None,
            sub_quest_ids=[str(sub_id) for sub_id in payload.get("subQuestIds") or []],
            revision=int(payload.get("revision", 0) or 0),
            author_id=str(payload["authorId"]) if payload.get("authorId") else None,
            hidden_prior_status=prior,
            dates=QuestDates(
                created=int(dates_raw.get("created", 0) or 0),
                started=_optional_int(dates_raw.get("started")),
                ended=_optional_int(dates_raw.get("ended")),
            ),
        )
    except (TypeError, ValueError, AttributeError) as exc:
        raise InvalidQuestData(f"Malformed quest payload for {quest_id}: {exc}") from exc
