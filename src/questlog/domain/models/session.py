from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping, Optional

from questlog.domain.models.quest import PermissionLevel, SessionRole


@dataclass(frozen=True)
class PermissionPolicy:
    """World-scoped module flags that widen what non-GM users may do."""

    trusted_player_edit: bool = False
    allow_player_accept: bool = False
    allow_player_create: bool = False
    hide_from_players: bool = False
    default_permission: PermissionLevel = PermissionLevel.OBSERVER


@dataclass(frozen=True)
class SessionRoster:
    roles: Mapping[str, SessionRole] = field(default_factory=dict)

    def role_of(self, user_id: str) -> SessionRole:
        return self.roles.get(str(user_id), SessionRole.PLAYER)

    def is_gm(self, user_id: str) -> bool:
        return self.role_of(user_id) == SessionRole.GM

    def gm_ids(self) -> tuple[str, ...]:
        return tuple(sorted(user_id for user_id, role in self.roles.items() if role == SessionRole.GM))

    def request_authority(self) -> Optional[str]:
        """The single client that answers privileged requests and resync requests."""

        gm_ids = self.gm_ids()
        return gm_ids[0] if gm_ids else None

    def with_role(self, user_id: str, role: SessionRole) -> "SessionRoster":
        roles = dict(self.roles)
        roles[str(user_id)] = role
        return SessionRoster(roles=roles)

    def without(self, user_id: str) -> "SessionRoster":
        roles = {key: value for key, value in self.roles.items() if key != str(user_id)}
        return SessionRoster(roles=roles)
