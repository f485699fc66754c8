from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Dict, List, Optional


class QuestStatus(str, Enum):
    ACTIVE = "active"
    AVAILABLE = "available"
    COMPLETED = "completed"
    FAILED = "failed"
    HIDDEN = "hidden"


# Bucket order used by classification and counts.
BUCKET_ORDER: tuple[QuestStatus, ...] = (
    QuestStatus.ACTIVE,
    QuestStatus.AVAILABLE,
    QuestStatus.COMPLETED,
    QuestStatus.FAILED,
    QuestStatus.HIDDEN,
)


class PermissionLevel(IntEnum):
    """Mirrors the host document permission levels; LIMITED (1) is never used."""

    NONE = 0
    OBSERVER = 2
    OWNER = 3

    @classmethod
    def parse(cls, value: object) -> "PermissionLevel":
        if isinstance(value, PermissionLevel):
            return value
        if isinstance(value, int) and not isinstance(value, bool):
            return cls(value)
        normalized = str(value or "").strip().upper()
        if normalized in cls.__members__:
            return cls[normalized]
        raise ValueError(f"Unknown permission level: {value!r}")


class SessionRole(str, Enum):
    GM = "gm"
    TRUSTED_PLAYER = "trusted_player"
    PLAYER = "player"


DEFAULT_PERMISSION_KEY = "default"


@dataclass
class QuestPermissions:
    default: PermissionLevel = PermissionLevel.OBSERVER
    users: Dict[str, PermissionLevel] = field(default_factory=dict)

    def level_for(self, user_id: str) -> PermissionLevel:
        return self.users.get(str(user_id), self.default)

    def with_level(self, user_id: str, level: PermissionLevel) -> "QuestPermissions":
        if str(user_id) == DEFAULT_PERMISSION_KEY:
            return QuestPermissions(default=PermissionLevel.parse(level), users=dict(self.users))
        users = dict(self.users)
        users[str(user_id)] = PermissionLevel.parse(level)
        return QuestPermissions(default=self.default, users=users)


@dataclass
class QuestDates:
    created: int = 0
    started: Optional[int] = None
    ended: Optional[int] = None


@dataclass
class Task:
    id: str
    text: str
    completed: bool = False
    failed: bool = False
    hidden: bool = False
    order: int = 0

    def toggle(self) -> None:
        """Cycle incomplete -> completed -> failed -> incomplete."""

        if not self.completed and not self.failed:
            self.completed = True
        elif self.completed:
            self.completed = False
            self.failed = True
        else:
            self.failed = False


@dataclass
class Reward:
    """A reward listed on a quest. Locked rewards cannot be claimed by players yet."""

    id: str
    name: str
    hidden: bool = False
    locked: bool = True


@dataclass
class Quest:
    id: str
    title: str = "New Quest"
    status: QuestStatus = QuestStatus.AVAILABLE
    giver_name: str = ""
    description: str = ""
    tasks: List[Task] = field(default_factory=list)
    rewards: List[Reward] = field(default_factory=list)
    gm_notes: str = ""
    permissions: QuestPermissions = field(default_factory=QuestPermissions)
    order: int = 0
    parent_id: Optional[str] = None
    sub_quest_ids: List[str] = field(default_factory=list)
    revision: int = 0
    author_id: Optional[str] = None
    hidden_prior_status: Optional[QuestStatus] = None
    dates: QuestDates = field(default_factory=QuestDates)

    @property
    def is_active(self) -> bool:
        return self.status == QuestStatus.ACTIVE

    @property
    def is_hidden(self) -> bool:
        return self.status == QuestStatus.HIDDEN

    def get_task(self, task_id: str) -> Optional[Task]:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def get_reward(self, reward_id: str) -> Optional[Reward]:
        for reward in self.rewards:
            if reward.id == reward_id:
                return reward
        return None

    def duplicate_task_orders(self) -> List[int]:
        seen: set[int] = set()
        duplicates: List[int] = []
        for task in self.tasks:
            if task.order in seen and task.order not in duplicates:
                duplicates.append(task.order)
            seen.add(task.order)
        return duplicates

    def related_quest_ids(self) -> List[str]:
        """Self plus parent and sub-quests; every quest whose view depends on this one."""

        ids = [self.id, *self.sub_quest_ids]
        if self.parent_id:
            ids.insert(0, self.parent_id)
        return ids
