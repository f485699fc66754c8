from __future__ import annotations

from typing import Sequence

from questlog.application.dtos import QuestView, RewardView, TaskView
from questlog.domain.models.quest import Quest, Reward, Task


def _task_state(task: Task) -> str:
    if task.completed:
        return "completed"
    if task.failed:
        return "failed"
    return "incomplete"


def to_task_view(task: Task) -> TaskView:
    return TaskView(id=task.id, text=task.text, state=_task_state(task), hidden=bool(task.hidden))


def to_reward_view(reward: Reward) -> RewardView:
    return RewardView(id=reward.id, name=reward.name, hidden=bool(reward.hidden), locked=bool(reward.locked))


def to_quest_view(
    *,
    quest: Quest,
    is_owner: bool,
    is_personal: bool,
    is_primary: bool,
    can_accept: bool,
    visible_sub_quest_ids: Sequence[str],
) -> QuestView:
    # Non-owners never see hidden entries or GM notes.
    tasks = [task for task in sorted(quest.tasks, key=lambda row: row.order) if is_owner or not task.hidden]
    rewards = [reward for reward in quest.rewards if is_owner or not reward.hidden]
    return QuestView(
        id=quest.id,
        title=quest.title,
        status=quest.status.value,
        giver_name=quest.giver_name,
        description=quest.description,
        is_owner=is_owner,
        is_personal=is_personal,
        is_primary=is_primary,
        can_accept=can_accept,
        parent_id=quest.parent_id,
        sub_quest_ids=tuple(visible_sub_quest_ids),
        tasks=tuple(to_task_view(task) for task in tasks),
        tasks_done=sum(1 for task in tasks if task.completed),
        tasks_total=len(tasks),
        rewards=tuple(to_reward_view(reward) for reward in rewards),
        gm_notes=quest.gm_notes if is_owner else None,
    )
