from dataclasses import dataclass, field
from typing import List, Optional, Tuple


@dataclass(frozen=True)
class TaskView:
    id: str
    text: str
    state: str
    hidden: bool = False


@dataclass(frozen=True)
class RewardView:
    id: str
    name: str
    hidden: bool = False
    locked: bool = True


@dataclass(frozen=True)
class QuestView:
    id: str
    title: str
    status: str
    giver_name: str
    description: str
    is_owner: bool
    is_personal: bool
    is_primary: bool
    can_accept: bool
    parent_id: Optional[str] = None
    sub_quest_ids: Tuple[str, ...] = ()
    tasks: Tuple[TaskView, ...] = ()
    tasks_done: int = 0
    tasks_total: int = 0
    rewards: Tuple[RewardView, ...] = ()
    gm_notes: Optional[str] = None


@dataclass
class DeleteResult:
    deleted_id: str
    saved_ids: List[str] = field(default_factory=list)
