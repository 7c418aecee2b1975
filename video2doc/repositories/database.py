from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from video2doc.errors import StoreUnavailableError

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS documents (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    status TEXT NOT NULL,
    source_reference TEXT NOT NULL,
    title TEXT NULL,
    content TEXT NULL,
    metadata_json TEXT NOT NULL,
    error_code TEXT NULL,
    error_message TEXT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    completed_at TEXT NULL,
    CHECK (status IN ('pending', 'processing', 'completed', 'error')),
    CHECK (content IS NULL OR error_message IS NULL)
);

CREATE INDEX IF NOT EXISTS idx_documents_user_created
ON documents(user_id, created_at DESC);

CREATE TABLE IF NOT EXISTS processing_jobs (
    id TEXT PRIMARY KEY,
    document_id TEXT NOT NULL,
    provider_job_id TEXT NOT NULL,
    status TEXT NOT NULL,
    progress INTEGER NOT NULL,
    status_message TEXT NULL,
    error_message TEXT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    CHECK (progress >= 0 AND progress <= 100),
    FOREIGN KEY(document_id) REFERENCES documents(id)
);

CREATE INDEX IF NOT EXISTS idx_processing_jobs_document
ON processing_jobs(document_id, created_at DESC);

CREATE TABLE IF NOT EXISTS usage_counters (
    user_id TEXT NOT NULL,
    month TEXT NOT NULL,
    documents_processed INTEGER NOT NULL,
    total_video_duration_seconds INTEGER NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (user_id, month)
);

CREATE TABLE IF NOT EXISTS account_subscriptions (
    user_id TEXT PRIMARY KEY,
    tier TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""

_BUSY_TIMEOUT_SECONDS = 10.0


class Database:
    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(self._path, timeout=_BUSY_TIMEOUT_SECONDS)
        except sqlite3.Error as exc:
            raise StoreUnavailableError(f"could not open database at {self._path}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA foreign_keys = ON")
            yield conn
            conn.commit()
        except sqlite3.Error as exc:
            raise StoreUnavailableError(f"database operation failed: {exc}") from exc
        finally:
            conn.close()

    def initialize(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self.connection() as conn:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.executescript(SCHEMA_SQL)
