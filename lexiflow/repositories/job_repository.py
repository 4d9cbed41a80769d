import sqlite3

from lexiflow.db.connection import get_connection
from lexiflow.models.deconstruction_job import DeconstructionJob
from lexiflow.repositories.base import AbstractJobRepository
from lexiflow.repositories.serialization import from_db_timestamp, to_db_timestamp


def _row_to_job(row: sqlite3.Row) -> DeconstructionJob:
    return DeconstructionJob.rehydrate(
        id=row["id"],
        submission_id=row["submission_id"],
        status=row["status"],
        created_at=from_db_timestamp(row["created_at"]),
        retry_count=row["retry_count"],
        raw_content=row["raw_content"],
        cleaned_markdown=row["cleaned_markdown"],
        analysis_json=row["analysis_json"],
        last_error=row["last_error"],
        completed_at=from_db_timestamp(row["completed_at"]),
    )


class JobRepository(AbstractJobRepository):
    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def save(self, job: DeconstructionJob) -> None:
        with get_connection(self._db_path) as conn:
            conn.execute(
                """
                INSERT INTO deconstruction_jobs
                    (id, submission_id, status, raw_content, cleaned_markdown,
                     analysis_json, retry_count, last_error, created_at, completed_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    status           = excluded.status,
                    raw_content      = excluded.raw_content,
                    cleaned_markdown = excluded.cleaned_markdown,
                    analysis_json    = excluded.analysis_json,
                    retry_count      = excluded.retry_count,
                    last_error       = excluded.last_error,
                    completed_at     = excluded.completed_at
                """,
                (
                    job.id,
                    job.submission_id,
                    int(job.status),
                    job.raw_content,
                    job.cleaned_markdown,
                    job.analysis_json,
                    job.retry_count,
                    job.last_error,
                    to_db_timestamp(job.created_at),
                    to_db_timestamp(job.completed_at),
                ),
            )
            conn.commit()

    def get(self, job_id: str) -> DeconstructionJob | None:
        with get_connection(self._db_path) as conn:
            row = conn.execute(
                "SELECT * FROM deconstruction_jobs WHERE id = ?", (job_id,)
            ).fetchone()
        return _row_to_job(row) if row else None

    def list_for_submission(self, submission_id: str) -> list[DeconstructionJob]:
        with get_connection(self._db_path) as conn:
            rows = conn.execute(
                """
                SELECT * FROM deconstruction_jobs
                WHERE submission_id = ?
                ORDER BY created_at ASC
                """,
                (submission_id,),
            ).fetchall()
        return [_row_to_job(row) for row in rows]
