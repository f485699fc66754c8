from dataclasses import dataclass
from typing import ClassVar, Optional, Tuple

from questlog.domain.models.classification import Classification


@dataclass
class QuestsLoaded:
    hook: ClassVar[str] = "quest:loaded"
    quest_ids: Tuple[str, ...]


@dataclass
class QuestCreated:
    hook: ClassVar[str] = "quest:created"
    quest_id: str
    revision: int
    origin: str


@dataclass
class QuestUpdated:
    hook: ClassVar[str] = "quest:updated"
    quest_id: str
    revision: int
    origin: str


@dataclass
class QuestDeleted:
    hook: ClassVar[str] = "quest:deleted"
    quest_id: str
    origin: str


@dataclass
class QuestStatusChanged:
    hook: ClassVar[str] = "quest:statusChanged"
    quest_id: str
    previous_status: Optional[str]
    status: str
    origin: str


@dataclass
class QuestPermissionsChanged:
    hook: ClassVar[str] = "quest:permissionsChanged"
    quest_id: str
    origin: str


@dataclass
class QuestsClassified:
    hook: ClassVar[str] = "quest:classified"
    user_id: str
    classification: Classification


@dataclass
class PrimaryQuestChanged:
    hook: ClassVar[str] = "quest:primaryChanged"
    previous_quest_id: Optional[str]
    quest_id: Optional[str]


@dataclass
class QuestResyncRequested:
    hook: ClassVar[str] = "quest:resyncRequested"
    quest_id: str
    reason: str


HOOK_EVENT_TYPES = (
    QuestsLoaded,
    QuestCreated,
    QuestUpdated,
    QuestDeleted,
    QuestStatusChanged,
    QuestPermissionsChanged,
    QuestsClassified,
    PrimaryQuestChanged,
    QuestResyncRequested,
)
