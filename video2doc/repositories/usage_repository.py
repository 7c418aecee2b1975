from __future__ import annotations

from dataclasses import dataclass

from video2doc.repositories.common import utc_now_iso
from video2doc.repositories.database import Database


@dataclass(frozen=True)
class UsageSnapshot:
    user_id: str
    month: str
    documents_processed: int
    total_video_duration_seconds: int


class UsageRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    def increment(self, *, user_id: str, month: str, duration_seconds: int) -> UsageSnapshot:
        duration = max(0, duration_seconds)
        with self._db.connection() as conn:
            # Single statement so concurrent completions never lose an update.
            conn.execute(
                """
                INSERT INTO usage_counters
                (user_id, month, documents_processed, total_video_duration_seconds, updated_at)
                VALUES (?, ?, 1, ?, ?)
                ON CONFLICT(user_id, month) DO UPDATE SET
                    documents_processed = usage_counters.documents_processed + 1,
                    total_video_duration_seconds =
                        usage_counters.total_video_duration_seconds
                        + excluded.total_video_duration_seconds,
                    updated_at = excluded.updated_at
                """,
                (user_id, month, duration, utc_now_iso()),
            )
            row = conn.execute(
                """
                SELECT documents_processed, total_video_duration_seconds
                FROM usage_counters
                WHERE user_id = ? AND month = ?
                """,
                (user_id, month),
            ).fetchone()

        return UsageSnapshot(
            user_id=user_id,
            month=month,
            documents_processed=int(row["documents_processed"]) if row is not None else 0,
            total_video_duration_seconds=(
                int(row["total_video_duration_seconds"]) if row is not None else 0
            ),
        )

    def get(self, *, user_id: str, month: str) -> UsageSnapshot:
        with self._db.connection() as conn:
            row = conn.execute(
                """
                SELECT documents_processed, total_video_duration_seconds
                FROM usage_counters
                WHERE user_id = ? AND month = ?
                """,
                (user_id, month),
            ).fetchone()

        if row is None:
            return UsageSnapshot(
                user_id=user_id,
                month=month,
                documents_processed=0,
                total_video_duration_seconds=0,
            )
        return UsageSnapshot(
            user_id=user_id,
            month=month,
            documents_processed=int(row["documents_processed"]),
            total_video_duration_seconds=int(row["total_video_duration_seconds"]),
        )
