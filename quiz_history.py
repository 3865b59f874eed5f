# ============================================================================
# IMPORTS
# ============================================================================

# Standard Library
import json
from dataclasses import dataclass, field

# Third-Party: Database
import psycopg2


class PersistenceFailed(Exception):
    status = 500
    message = "Could not save quiz history"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.message)
        self.message = message or self.message


@dataclass(frozen=True)
class HistoryRecord:
    topic: str
    difficulty: str
    mode: str
    score: int
    total_questions: int
    time_taken: int
    questions: list = field(default_factory=list)
    results: dict = field(default_factory=dict)


HISTORY_COLUMNS = (
    "id", "user_id", "topic", "difficulty", "mode", "score",
    "total_questions", "time_taken", "questions", "results", "created_at",
)


def _row_to_dict(row) -> dict:
    item = dict(zip(HISTORY_COLUMNS, row))
    created = item.get("created_at")
    item["created_at"] = created.isoformat() if created else None
    return item


class HistoryStore:
    """Append/query access to the `quiz_history` table.

    `connect` returns a psycopg2 connection, or None when the database is
    unreachable.
    """

    def __init__(self, connect):
        self.connect = connect

    def _conn(self):
        conn = self.connect()
        if not conn:
            raise PersistenceFailed("Database connection error")
        return conn

    def append(self, user_id, record: HistoryRecord) -> dict:
        conn = self._conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO quiz_history
                    (user_id, topic, difficulty, mode, score, total_questions, time_taken, questions, results)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING id, created_at
                """,
                (
                    str(user_id),
                    record.topic,
                    record.difficulty,
                    record.mode,
                    record.score,
                    record.total_questions,
                    record.time_taken,
                    json.dumps(record.questions),
                    json.dumps(record.results),
                ),
            )
            hid, created_at = cur.fetchone()
            conn.commit()
            cur.close()
            return {"id": hid, "created_at": (created_at.isoformat() if created_at else None)}
        except psycopg2.Error as e:
            conn.rollback()
            raise PersistenceFailed(str(e)) from e
        finally:
            conn.close()

    def list_for_user(self, user_id, limit: int = 50) -> list[dict]:
        conn = self._conn()
        try:
            cur = conn.cursor()
            cur.execute(
                f"""
                SELECT {", ".join(HISTORY_COLUMNS)}
                FROM quiz_history
                WHERE user_id = %s
                ORDER BY created_at DESC, id DESC
                LIMIT %s
                """,
                (str(user_id), int(limit)),
            )
            rows = cur.fetchall()
            cur.close()
            return [_row_to_dict(r) for r in rows]
        except psycopg2.Error as e:
            raise PersistenceFailed(str(e)) from e
        finally:
            conn.close()
