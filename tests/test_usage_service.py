from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

from video2doc.repositories.database import Database
from video2doc.repositories.usage_repository import UsageRepository
from video2doc.services.usage_service import UsageRecorder


def test_usage_recorder_counts_against_current_month(tmp_path: Path) -> None:
    db = Database(tmp_path / "state.db")
    db.initialize()
    moments = [datetime(2024, 5, 31, 23, 59, tzinfo=UTC)]
    recorder = UsageRecorder(usage=UsageRepository(db), now=lambda: moments[-1])

    recorder.record_completion("acct_1", 300)
    may = recorder.record_completion("acct_1", 200)
    assert may.month == "2024-05"
    assert may.documents_processed == 2
    assert may.total_video_duration_seconds == 500

    moments.append(datetime(2024, 6, 1, 0, 0, tzinfo=UTC))
    june = recorder.current_usage("acct_1")
    assert june.month == "2024-06"
    assert june.documents_processed == 0
    assert june.total_video_duration_seconds == 0
