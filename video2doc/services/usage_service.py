from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from video2doc.repositories.common import month_key
from video2doc.repositories.usage_repository import UsageRepository, UsageSnapshot

LOGGER = logging.getLogger("video2doc.usage")


class UsageRecorder:
    def __init__(
        self,
        *,
        usage: UsageRepository,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._usage = usage
        self._now = now

    def record_completion(self, account_id: str, duration_seconds: int) -> UsageSnapshot:
        """Count one completed document and its duration against the current month."""
        snapshot = self._usage.increment(
            user_id=account_id,
            month=self._current_month(),
            duration_seconds=duration_seconds,
        )
        LOGGER.info(
            "usage recorded account_id=%s month=%s documents=%s duration_seconds=%s",
            account_id,
            snapshot.month,
            snapshot.documents_processed,
            snapshot.total_video_duration_seconds,
        )
        return snapshot

    def current_usage(self, account_id: str) -> UsageSnapshot:
        return self._usage.get(user_id=account_id, month=self._current_month())

    def _current_month(self) -> str:
        return month_key(self._now() if self._now is not None else None)
