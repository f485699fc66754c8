import json
import os
import sys
from pathlib import Path
import unittest
from unittest import mock

from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from questlog.application.mappers.quest_payload_mapper import quest_to_payload
from questlog.domain.models.quest import Quest, QuestStatus, Task
from questlog.infrastructure.db.sql import connection
from questlog.infrastructure.db.sql.quest_repo import QUEST_TABLE, SqlQuestRepository, ensure_schema


def _quest(quest_id: str, *, title: str = "Find the relic", revision: int = 1) -> Quest:
    return Quest(
        id=quest_id,
        title=title,
        status=QuestStatus.ACTIVE,
        tasks=[Task(id="t1", text="Enter the crypt")],
        revision=revision,
    )


class SqlQuestRepositoryTests(unittest.TestCase):
    def setUp(self) -> None:
        engine = create_engine(
            "sqlite://",
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        self.session_factory = sessionmaker(bind=engine, autoflush=False)
        ensure_schema(self.session_factory)
        self.repository = SqlQuestRepository(self.session_factory)

    def _write_row(self, quest: Quest) -> None:
        with self.session_factory.begin() as session:
            session.execute(
                text(f"UPDATE {QUEST_TABLE} SET revision = :revision, document = :document WHERE quest_id = :quest_id"),
                {
                    "quest_id": quest.id,
                    "revision": quest.revision,
                    "document": json.dumps(quest_to_payload(quest)),
                },
            )

    def test_persist_then_load_all_returns_document_with_row_revision(self) -> None:
        self.repository.persist(_quest("q2", revision=4))
        self.repository.persist(_quest("q1"))

        loaded = self.repository.load_all()

        self.assertEqual(["q1", "q2"], [quest.id for quest in loaded])
        self.assertEqual(4, loaded[1].revision)
        self.assertEqual(["Enter the crypt"], [task.text for task in loaded[1].tasks])
        self.assertEqual(QuestStatus.ACTIVE, loaded[0].status)

    def test_persist_overwrites_existing_row(self) -> None:
        self.repository.persist(_quest("q1"))
        self.repository.persist(_quest("q1", title="Return the relic", revision=2))

        stored = self.repository.get("q1")

        self.assertEqual("Return the relic", stored.title)
        self.assertEqual(2, stored.revision)
        self.assertEqual(1, len(self.repository.load_all()))

    def test_delete_removes_row(self) -> None:
        self.repository.persist(_quest("q1"))

        self.repository.delete("q1")

        self.assertIsNone(self.repository.get("q1"))
        self.assertEqual([], self.repository.load_all())

    def test_unreadable_rows_are_skipped_with_warning(self) -> None:
        self.repository.persist(_quest("q1"))
        with self.session_factory.begin() as session:
            session.execute(text(f"UPDATE {QUEST_TABLE} SET document = 'not json' WHERE quest_id = 'q1'"))

        with self.assertLogs("questlog.infrastructure.db.sql.quest_repo", level="WARNING"):
            loaded = self.repository.load_all()

        self.assertEqual([], loaded)

    def test_poll_reports_rows_changed_by_another_writer(self) -> None:
        self.repository.persist(_quest("q1"))
        self.repository.persist(_quest("q2"))
        notified: list[tuple[str, object]] = []
        self.repository.subscribe_external_change(lambda quest_id, quest: notified.append((quest_id, quest)))

        self._write_row(_quest("q1", title="Edited elsewhere", revision=2))

        self.assertEqual(["q1"], self.repository.poll_external_changes())
        self.assertEqual("q1", notified[0][0])
        self.assertEqual("Edited elsewhere", notified[0][1].title)
        self.assertEqual(2, notified[0][1].revision)
        self.assertEqual([], self.repository.poll_external_changes())

    def test_poll_reports_rows_removed_by_another_writer(self) -> None:
        self.repository.persist(_quest("q1"))
        other = SqlQuestRepository(self.session_factory)
        notified: list[tuple[str, object]] = []
        self.repository.subscribe_external_change(lambda quest_id, quest: notified.append((quest_id, quest)))

        other.delete("q1")

        self.assertEqual(["q1"], self.repository.poll_external_changes())
        self.assertEqual([("q1", None)], notified)

    def test_poll_picks_up_rows_inserted_by_another_writer(self) -> None:
        other = SqlQuestRepository(self.session_factory)
        other.persist(_quest("q9", revision=3))

        self.assertEqual(["q9"], self.repository.poll_external_changes())
        self.assertEqual(3, self.repository.get("q9").revision)


class SessionFactoryTests(unittest.TestCase):
    def setUp(self) -> None:
        connection.get_session_factory.cache_clear()
        self.addCleanup(connection.get_session_factory.cache_clear)

    def test_engine_is_built_on_first_use_from_environment(self) -> None:
        self.assertFalse(hasattr(connection, "engine"))

        with mock.patch.dict(os.environ, {"QUESTLOG_DATABASE_URL": "sqlite://"}), mock.patch.object(
            connection, "create_engine", wraps=create_engine
        ) as engine_factory:
            self.assertEqual(0, engine_factory.call_count)
            first = connection.get_session_factory()
            second = connection.get_session_factory()

        engine_factory.assert_called_once()
        self.assertEqual("sqlite://", engine_factory.call_args.args[0])
        self.assertIs(first, second)


if __name__ == "__main__":
    unittest.main()
