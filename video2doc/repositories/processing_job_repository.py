from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from uuid import uuid4

from video2doc.repositories.common import utc_now_iso
from video2doc.repositories.database import Database

SUPERSEDED_STATUS = "superseded"


@dataclass(frozen=True)
class ProcessingJobRecord:
    job_id: str
    document_id: str
    provider_job_id: str
    status: str
    progress: int
    status_message: str | None
    error_message: str | None
    created_at: str
    updated_at: str


class ProcessingJobRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    def create_job(
        self,
        *,
        document_id: str,
        provider_job_id: str,
        status: str = "queued",
    ) -> ProcessingJobRecord:
        job_id = f"job_{uuid4().hex}"
        now_iso = utc_now_iso()
        with self._db.connection() as conn:
            # At most one job per document stays active.
            conn.execute(
                """
                UPDATE processing_jobs
                SET status = ?, updated_at = ?
                WHERE document_id = ? AND status != ?
                """,
                (SUPERSEDED_STATUS, now_iso, document_id, SUPERSEDED_STATUS),
            )
            conn.execute(
                """
                INSERT INTO processing_jobs (
                    id, document_id, provider_job_id, status, progress,
                    status_message, error_message, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, 0, NULL, NULL, ?, ?)
                """,
                (job_id, document_id, provider_job_id, status, now_iso, now_iso),
            )
            row = _select_job(conn, job_id)
        assert row is not None
        return _row_to_record(row)

    def update_progress(
        self,
        job_id: str,
        *,
        status: str,
        progress: int,
        status_message: str | None = None,
        error_message: str | None = None,
    ) -> ProcessingJobRecord | None:
        bounded_progress = max(0, min(100, progress))
        with self._db.connection() as conn:
            conn.execute(
                """
                UPDATE processing_jobs
                SET status = ?,
                    progress = MAX(progress, ?),
                    status_message = COALESCE(?, status_message),
                    error_message = COALESCE(?, error_message),
                    updated_at = ?
                WHERE id = ? AND status != ?
                """,
                (
                    status,
                    bounded_progress,
                    status_message,
                    error_message,
                    utc_now_iso(),
                    job_id,
                    SUPERSEDED_STATUS,
                ),
            )
            row = _select_job(conn, job_id)
        if row is None:
            return None
        return _row_to_record(row)

    def get_active_job(self, document_id: str) -> ProcessingJobRecord | None:
        with self._db.connection() as conn:
            row = conn.execute(
                """
                SELECT id, document_id, provider_job_id, status, progress,
                       status_message, error_message, created_at, updated_at
                FROM processing_jobs
                WHERE document_id = ? AND status != ?
                ORDER BY created_at DESC, rowid DESC
                LIMIT 1
                """,
                (document_id, SUPERSEDED_STATUS),
            ).fetchone()
        if row is None:
            return None
        return _row_to_record(row)

    def list_jobs(self, document_id: str) -> list[ProcessingJobRecord]:
        with self._db.connection() as conn:
            rows = conn.execute(
                """
                SELECT id, document_id, provider_job_id, status, progress,
                       status_message, error_message, created_at, updated_at
                FROM processing_jobs
                WHERE document_id = ?
                ORDER BY created_at ASC, rowid ASC
                """,
                (document_id,),
            ).fetchall()
        return [_row_to_record(row) for row in rows]


def _select_job(conn: sqlite3.Connection, job_id: str) -> sqlite3.Row | None:
    row = conn.execute(
        """
        SELECT id, document_id, provider_job_id, status, progress,
               status_message, error_message, created_at, updated_at
        FROM processing_jobs
        WHERE id = ?
        """,
        (job_id,),
    ).fetchone()
    if row is None:
        return None
    return row


def _row_to_record(row: sqlite3.Row) -> ProcessingJobRecord:
    return ProcessingJobRecord(
        job_id=str(row["id"]),
        document_id=str(row["document_id"]),
        provider_job_id=str(row["provider_job_id"]),
        status=str(row["status"]),
        progress=int(row["progress"]),
        status_message=_none_if_empty(row["status_message"]),
        error_message=_none_if_empty(row["error_message"]),
        created_at=str(row["created_at"]),
        updated_at=str(row["updated_at"]),
    )


def _none_if_empty(value: object) -> str | None:
    if isinstance(value, str) and value.strip():
        return value
    return None
