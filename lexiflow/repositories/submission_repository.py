import logging
import sqlite3

from lexiflow.db.connection import get_connection
from lexiflow.models.submission import Submission
from lexiflow.repositories.base import AbstractSubmissionRepository
from lexiflow.repositories.serialization import from_db_timestamp, to_db_timestamp

logger = logging.getLogger(__name__)


def _row_to_submission(row: sqlite3.Row) -> Submission:
    return Submission.rehydrate(
        id=row["id"],
        source_url=row["source_url"],
        status=row["status"],
        created_at=from_db_timestamp(row["created_at"]),
        processed_at=from_db_timestamp(row["processed_at"]),
    )


class SubmissionRepository(AbstractSubmissionRepository):
    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def save(self, submission: Submission) -> None:
        """
        Upsert by id. source_url and created_at are never rewritten once the
        row exists.
        """
        with get_connection(self._db_path) as conn:
            conn.execute(
                """
                INSERT INTO submissions (id, source_url, status, created_at, processed_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    status       = excluded.status,
                    processed_at = excluded.processed_at
                """,
                (
                    submission.id,
                    submission.source_url,
                    int(submission.status),
                    to_db_timestamp(submission.created_at),
                    to_db_timestamp(submission.processed_at),
                ),
            )
            conn.commit()

    def get(self, submission_id: str) -> Submission | None:
        with get_connection(self._db_path) as conn:
            row = conn.execute(
                "SELECT * FROM submissions WHERE id = ?", (submission_id,)
            ).fetchone()
        return _row_to_submission(row) if row else None

    def list_recent(self, limit: int = 50) -> list[Submission]:
        with get_connection(self._db_path) as conn:
            rows = conn.execute(
                "SELECT * FROM submissions ORDER BY created_at DESC LIMIT ?", (limit,)
            ).fetchall()
        return [_row_to_submission(row) for row in rows]

    def ping(self) -> bool:
        try:
            with get_connection(self._db_path) as conn:
                conn.execute("SELECT 1").fetchone()
            return True
        except sqlite3.Error:
            logger.exception("[db] health check failed | db=%s", self._db_path)
            return False
