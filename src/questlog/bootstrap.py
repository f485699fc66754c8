import logging
import os
import socket
from typing import Mapping, Optional
from urllib.parse import urlparse

from questlog.application.services.event_bus import EventBus
from questlog.application.services.quest_log_service import QuestLogService
from questlog.domain.models.quest import PermissionLevel, SessionRole
from questlog.domain.models.session import PermissionPolicy, SessionRoster
from questlog.domain.repositories import QuestRepository, QuestTransport
from questlog.domain.services.permissions import FineGrainedPermissionEvaluator
from questlog.infrastructure.inmemory.inmemory_quest_repo import InMemoryQuestRepository
from questlog.infrastructure.inmemory.loopback_transport import LoopbackHub


logger = logging.getLogger(__name__)


def _is_truthy(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes"}


def _looks_like_local_mysql_unreachable(database_url: str) -> bool:
    if not database_url:
        return False

    parsed = urlparse(database_url)
    if not parsed.scheme.startswith("mysql"):
        return False

    host = (parsed.hostname or "").strip().lower()
    if host not in {"localhost", "127.0.0.1", "::1"}:
        return False

    port = parsed.port or 3306
    timeout = float(os.getenv("QUESTLOG_DB_CONNECT_TIMEOUT_S", "0.35"))

    try:
        with socket.create_connection((host, port), timeout=timeout):
            return False
    except OSError:
        return True


def load_policy() -> PermissionPolicy:
    raw_default = os.getenv("QUESTLOG_DEFAULT_PERMISSION", "observer")
    try:
        default_permission = PermissionLevel.parse(raw_default)
    except ValueError:
        logger.warning("Ignoring unknown default permission", extra={"value": raw_default})
        default_permission = PermissionLevel.OBSERVER

    return PermissionPolicy(
        trusted_player_edit=_is_truthy("QUESTLOG_TRUSTED_PLAYER_EDIT"),
        allow_player_accept=_is_truthy("QUESTLOG_ALLOW_PLAYERS_ACCEPT"),
        allow_player_create=_is_truthy("QUESTLOG_ALLOW_PLAYERS_CREATE"),
        hide_from_players=_is_truthy("QUESTLOG_HIDE_FROM_PLAYERS"),
        default_permission=default_permission,
    )


def _build_sql_repository(database_url: str) -> QuestRepository:
    from sqlalchemy import create_engine
    from sqlalchemy.orm import sessionmaker

    from questlog.infrastructure.db.sql.quest_repo import SqlQuestRepository, ensure_schema

    engine = create_engine(database_url, echo=False, future=True)
    session_factory = sessionmaker(bind=engine, autoflush=False)
    ensure_schema(session_factory)
    repository = SqlQuestRepository(session_factory)

    # Force an early connectivity check so fallback happens before the session starts.
    try:
        repository.load_all()
    except Exception as exc:
        raise RuntimeError(f"SQL bootstrap connectivity check failed: {exc}") from exc
    return repository


def create_repository() -> QuestRepository:
    database_url = os.getenv("QUESTLOG_DATABASE_URL")
    if database_url:
        if _looks_like_local_mysql_unreachable(database_url):
            logger.warning("MySQL appears unreachable, falling back to in-memory persistence.")
            return InMemoryQuestRepository()
        try:
            return _build_sql_repository(database_url)
        except Exception as exc:  # pragma: no cover - best-effort fallback
            logger.warning("SQL persistence unavailable, falling back to in-memory.", extra={"error": str(exc)})

    return InMemoryQuestRepository()


def create_transport(client_id: str, hub: Optional[LoopbackHub] = None) -> QuestTransport:
    relay_url = os.getenv("QUESTLOG_RELAY_URL")
    if relay_url:
        from questlog.infrastructure.relay_transport import HttpRelayTransport

        return HttpRelayTransport(
            relay_url,
            token=os.getenv("QUESTLOG_RELAY_TOKEN"),
            timeout=float(os.getenv("QUESTLOG_RELAY_TIMEOUT_S", "3")),
            retries=int(os.getenv("QUESTLOG_RELAY_RETRIES", "1")),
            backoff_seconds=float(os.getenv("QUESTLOG_RELAY_BACKOFF_S", "0.2")),
        )
    return (hub or LoopbackHub()).connect(client_id)


def create_quest_log_service(
    user_id: str,
    *,
    roles: Mapping[str, SessionRole] | None = None,
    repository: QuestRepository | None = None,
    transport: QuestTransport | None = None,
    hub: Optional[LoopbackHub] = None,
    event_bus: EventBus | None = None,
) -> QuestLogService:
    roster = SessionRoster(roles=dict(roles or {str(user_id): SessionRole.GM}))
    policy = load_policy()
    return QuestLogService(
        user_id=str(user_id),
        roster=roster,
        repository=repository or create_repository(),
        transport=transport or create_transport(str(user_id), hub),
        event_bus=event_bus or EventBus(),
        evaluator=FineGrainedPermissionEvaluator(policy=policy),
    )
