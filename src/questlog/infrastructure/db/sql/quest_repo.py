from __future__ import annotations

import json
import logging
from typing import Dict, List, Optional

from sqlalchemy import text

from questlog.application.mappers.quest_payload_mapper import quest_from_payload, quest_to_payload
from questlog.domain.errors import InvalidQuestData
from questlog.domain.models.quest import Quest
from questlog.domain.repositories import ExternalChangeCallback, QuestRepository
from .connection import get_session_factory


logger = logging.getLogger(__name__)

QUEST_TABLE = "quest_document"


def ensure_schema(session_factory=None) -> None:
    factory = session_factory or get_session_factory()
    with factory.begin() as session:
        session.execute(
            text(
                f"""
                CREATE TABLE IF NOT EXISTS {QUEST_TABLE} (
                    quest_id VARCHAR(64) NOT NULL PRIMARY KEY,
                    revision INTEGER NOT NULL,
                    document TEXT NOT NULL
                )
                """
            )
        )


class SqlQuestRepository(QuestRepository):
    """Stores each quest as one JSON document row keyed by quest id.

    Other processes may write the same table; ``poll_external_changes``
    compares stored revisions with the last ones this repository wrote or
    read and reports the differences to subscribers.
    """

    def __init__(self, session_factory=None) -> None:
        self._session_factory = session_factory or get_session_factory()
        self._callbacks: List[ExternalChangeCallback] = []
        self._known_revisions: Dict[str, int] = {}

    def _session(self):
        return self._session_factory()

    def load_all(self) -> List[Quest]:
        with self._session() as session:
            rows = session.execute(
                text(f"SELECT quest_id, revision, document FROM {QUEST_TABLE} ORDER BY quest_id")
            ).all()

        quests: List[Quest] = []
        self._known_revisions = {}
        for row in rows:
            quest = self._row_to_quest(row)
            if quest is None:
                continue
            quests.append(quest)
            self._known_revisions[quest.id] = int(row.revision)
        return quests

    def get(self, quest_id: str) -> Optional[Quest]:
        with self._session() as session:
            row = session.execute(
                text(f"SELECT quest_id, revision, document FROM {QUEST_TABLE} WHERE quest_id = :quest_id"),
                {"quest_id": str(quest_id)},
            ).first()
        return self._row_to_quest(row) if row is not None else None

    def persist(self, quest: Quest) -> None:
        with self._session_factory.begin() as session:
            dialect = session.bind.dialect.name if session.bind is not None else "mysql"
            if dialect == "mysql":
                statement = text(
                    f"""
                    INSERT INTO {QUEST_TABLE} (quest_id, revision, document)
                    VALUES (:quest_id, :revision, :document)
                    ON DUPLICATE KEY UPDATE
                        revision = VALUES(revision),
                        document = VALUES(document)
                    """
                )
            else:
                statement = text(
                    f"""
                    INSERT INTO {QUEST_TABLE} (quest_id, revision, document)
                    VALUES (:quest_id, :revision, :document)
                    ON CONFLICT(quest_id) DO UPDATE SET
                        revision = excluded.revision,
                        document = excluded.document
                    """
                )
            session.execute(
                statement,
                {
                    "quest_id": str(quest.id),
                    "revision": int(quest.revision),
                    "document": json.dumps(quest_to_payload(quest), sort_keys=True),
                },
            )
        self._known_revisions[quest.id] = int(quest.revision)

    def delete(self, quest_id: str) -> None:
        with self._session_factory.begin() as session:
            session.execute(
                text(f"DELETE FROM {QUEST_TABLE} WHERE quest_id = :quest_id"),
                {"quest_id": str(quest_id)},
            )
        self._known_revisions.pop(str(quest_id), None)

    def subscribe_external_change(self, callback: ExternalChangeCallback) -> None:
        self._callbacks.append(callback)

    def poll_external_changes(self) -> List[str]:
        """Notify subscribers about rows changed or removed by another writer."""

        with self._session() as session:
            rows = session.execute(text(f"SELECT quest_id, revision, document FROM {QUEST_TABLE}")).all()

        changed: List[str] = []
        seen = set()
        for row in rows:
            quest_id = str(row.quest_id)
            seen.add(quest_id)
            if self._known_revisions.get(quest_id) == int(row.revision):
                continue
            quest = self._row_to_quest(row)
            if quest is None:
                continue
            self._known_revisions[quest_id] = int(row.revision)
            changed.append(quest_id)
            self._notify(quest_id, quest)

        for quest_id in sorted(set(self._known_revisions) - seen):
            self._known_revisions.pop(quest_id, None)
            changed.append(quest_id)
            self._notify(quest_id, None)
        return changed

    def _notify(self, quest_id: str, quest: Optional[Quest]) -> None:
        for callback in list(self._callbacks):
            callback(quest_id, quest)

    @staticmethod
    def _row_to_quest(row) -> Optional[Quest]:
        try:
            document = json.loads(row.document or "{}")
            quest = quest_from_payload(document)
        except (ValueError, InvalidQuestData) as exc:
            logger.warning("Skipped unreadable quest row", extra={"quest_id": str(row.quest_id), "error": str(exc)})
            return None
        quest.revision = int(row.revision)
        return quest
