from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from questlog.domain.models.quest import PermissionLevel, Quest, QuestStatus, SessionRole
from questlog.domain.models.session import PermissionPolicy, SessionRoster


@dataclass(frozen=True)
class PermissionEvaluator(ABC):
    """Computes a user's access to a quest from replicated state only.

    Implementations must stay referentially transparent: every client evaluates
    the same (quest, user, role) triple against its own copy of the quest and
    has to reach the same answer, otherwise peers drop each other's writes.
    """

    policy: PermissionPolicy = field(default_factory=PermissionPolicy)

    @abstractmethod
    def effective_level(self, quest: Quest, user_id: str, role: SessionRole) -> PermissionLevel:
        raise NotImplementedError

    def is_owner(self, quest: Quest, user_id: str, role: SessionRole) -> bool:
        return self.effective_level(quest, user_id, role) >= PermissionLevel.OWNER

    def can_observe(self, quest: Quest, user_id: str, role: SessionRole) -> bool:
        return self.effective_level(quest, user_id, role) >= PermissionLevel.OBSERVER

    def can_create(self, user_id: str, role: SessionRole) -> bool:
        if role == SessionRole.GM:
            return True
        if role == SessionRole.TRUSTED_PLAYER and self.policy.trusted_player_edit:
            return True
        return self.policy.allow_player_create

    def is_visible(self, quest: Quest, user_id: str, role: SessionRole) -> bool:
        if role == SessionRole.GM:
            return True
        if self.policy.hide_from_players:
            return False
        level = self.effective_level(quest, user_id, role)
        if quest.status == QuestStatus.HIDDEN:
            if level >= PermissionLevel.OWNER:
                return True
            return quest.author_id == str(user_id) and level >= PermissionLevel.OBSERVER
        return level >= PermissionLevel.OBSERVER

    def with_policy(self, policy: PermissionPolicy) -> "PermissionEvaluator":
        return type(self)(policy=policy)


@dataclass(frozen=True)
class FineGrainedPermissionEvaluator(PermissionEvaluator):
    def effective_level(self, quest: Quest, user_id: str, role: SessionRole) -> PermissionLevel:
        if role == SessionRole.GM:
            return PermissionLevel.OWNER

        level = quest.permissions.level_for(str(user_id))
        if (
            role == SessionRole.TRUSTED_PLAYER
            and self.policy.trusted_player_edit
            and level == PermissionLevel.OBSERVER
            and quest.author_id != str(user_id)
        ):
            return PermissionLevel.OWNER
        return level


@dataclass(frozen=True)
class GmOnlyPermissionEvaluator(PermissionEvaluator):
    """The host's built-in behaviour: the map grants reading, only a GM edits."""

    def effective_level(self, quest: Quest, user_id: str, role: SessionRole) -> PermissionLevel:
        if role == SessionRole.GM:
            return PermissionLevel.OWNER
        return min(quest.permissions.level_for(str(user_id)), PermissionLevel.OBSERVER)

    def can_create(self, user_id: str, role: SessionRole) -> bool:
        return role == SessionRole.GM


def _non_gm_grants(quest: Quest, roster: SessionRoster) -> list[PermissionLevel]:
    return [
        level
        for user_id, level in sorted(quest.permissions.users.items())
        if not roster.is_gm(user_id)
    ]


def is_personal(quest: Quest, roster: SessionRoster) -> bool:
    """True when only specific players, not everyone, can read the quest."""

    if quest.permissions.default >= PermissionLevel.OBSERVER:
        return False
    return any(level >= PermissionLevel.OBSERVER for level in _non_gm_grants(quest, roster))


def is_hidden_from_players(quest: Quest, roster: SessionRoster) -> bool:
    if quest.permissions.default >= PermissionLevel.OBSERVER:
        return False
    return not any(level >= PermissionLevel.OBSERVER for level in _non_gm_grants(quest, roster))
