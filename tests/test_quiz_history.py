import json
import unittest
from datetime import datetime, timezone

import psycopg2

from fakes import FakeConnection
from quiz_history import HistoryRecord, HistoryStore, PersistenceFailed


def record() -> HistoryRecord:
    return HistoryRecord(
        topic="Rivers",
        difficulty="beginner",
        mode="test",
        score=3,
        total_questions=5,
        time_taken=88,
        questions=[{"question": "q"}],
        results={"userAnswers": ["A"], "score": 3, "timeTaken": 88},
    )


class HistoryStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self.conn = FakeConnection()
        self.store = HistoryStore(lambda: self.conn)

    def test_append_inserts_and_commits(self) -> None:
        created = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        self.conn.fetchone_result = (7, created)

        saved = self.store.append("u1", record())

        self.assertEqual(saved, {"id": 7, "created_at": created.isoformat()})
        sql, params = self.conn.executed[0]
        self.assertTrue(sql.startswith("INSERT INTO quiz_history"))
        self.assertEqual(params[:7], ("u1", "Rivers", "beginner", "test", 3, 5, 88))
        self.assertEqual(json.loads(params[7]), [{"question": "q"}])
        self.assertTrue(self.conn.committed)
        self.assertTrue(self.conn.closed)

    def test_append_rolls_back_on_database_error(self) -> None:
        self.conn.fail_with = psycopg2.OperationalError("boom")
        with self.assertRaises(PersistenceFailed):
            self.store.append("u1", record())
        self.assertTrue(self.conn.rolled_back)
        self.assertTrue(self.conn.closed)

    def test_unreachable_database(self) -> None:
        with self.assertRaises(PersistenceFailed):
            HistoryStore(lambda: None).list_for_user("u1")

    def test_list_for_user_is_newest_first(self) -> None:
        created = datetime(2024, 5, 1, tzinfo=timezone.utc)
        self.conn.fetchall_result = [
            (2, "u1", "Rivers", "beginner", "test", 3, 5, 88, [], {}, created),
        ]

        rows = self.store.list_for_user("u1", limit=10)

        sql, params = self.conn.executed[0]
        self.assertIn("ORDER BY created_at DESC, id DESC", sql)
        self.assertEqual(params, ("u1", 10))
        self.assertEqual(rows[0]["id"], 2)
        self.assertEqual(rows[0]["created_at"], created.isoformat())


if __name__ == "__main__":
    unittest.main()
