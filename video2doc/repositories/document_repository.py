from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from uuid import uuid4

from pydantic import ValidationError

from video2doc.errors import DocumentNotFoundError, DocumentStateError, StoreUnavailableError
from video2doc.models.document_contracts import (
    DOCUMENT_METADATA_ADAPTER,
    ManualDocumentMetadata,
    VideoDocumentMetadata,
)
from video2doc.repositories.common import utc_now_iso
from video2doc.repositories.database import Database

AnyDocumentMetadata = VideoDocumentMetadata | ManualDocumentMetadata

_DOCUMENT_COLUMNS = """
    id, user_id, status, source_reference, title, content, metadata_json,
    error_code, error_message, created_at, updated_at, completed_at
"""


@dataclass(frozen=True)
class DocumentRecord:
    document_id: str
    user_id: str
    status: str
    source_reference: str
    title: str | None
    content: str | None
    metadata: AnyDocumentMetadata
    error_code: str | None
    error_message: str | None
    created_at: str
    updated_at: str
    completed_at: str | None


class DocumentRepository:
    """Persistence for documents.

    Every status-changing update is conditional on the status the caller
    expects, so a row that reached ``completed`` or ``error`` is never
    written again. A lost race surfaces as :class:`DocumentStateError`.
    """

    def __init__(self, db: Database) -> None:
        self._db = db

    def create_document(
        self,
        *,
        user_id: str,
        source_reference: str,
        metadata: AnyDocumentMetadata,
        title: str | None = None,
    ) -> DocumentRecord:
        document_id = f"doc_{uuid4().hex}"
        now_iso = utc_now_iso()
        with self._db.connection() as conn:
            conn.execute(
                """
                INSERT INTO documents (
                    id, user_id, status, source_reference, title, content, metadata_json,
                    error_code, error_message, created_at, updated_at, completed_at
                )
                VALUES (?, ?, 'pending', ?, ?, NULL, ?, NULL, NULL, ?, ?, NULL)
                """,
                (
                    document_id,
                    user_id,
                    source_reference,
                    title,
                    _dump_metadata(metadata),
                    now_iso,
                    now_iso,
                ),
            )
            return _require_row(conn, document_id)

    def get_document(self, document_id: str) -> DocumentRecord | None:
        with self._db.connection() as conn:
            row = _select_row(conn, document_id)
        if row is None:
            return None
        return _row_to_record(row)

    def list_documents(self, *, user_id: str, limit: int = 50) -> list[DocumentRecord]:
        with self._db.connection() as conn:
            rows = conn.execute(
                f"""
                SELECT {_DOCUMENT_COLUMNS}
                FROM documents
                WHERE user_id = ?
                ORDER BY created_at DESC
                LIMIT ?
                """,
                (user_id, limit),
            ).fetchall()
        return [_row_to_record(row) for row in rows]

    def mark_processing(self, document_id: str) -> DocumentRecord:
        with self._db.connection() as conn:
            cursor = conn.execute(
                """
                UPDATE documents
                SET status = 'processing', updated_at = ?
                WHERE id = ? AND status = 'pending'
                """,
                (utc_now_iso(), document_id),
            )
            _ensure_transition(conn, cursor, document_id, expected="pending")
            return _require_row(conn, document_id)

    def update_metadata(
        self,
        document_id: str,
        *,
        metadata: AnyDocumentMetadata,
        title: str | None = None,
    ) -> DocumentRecord:
        with self._db.connection() as conn:
            cursor = conn.execute(
                """
                UPDATE documents
                SET metadata_json = ?, title = COALESCE(?, title), updated_at = ?
                WHERE id = ? AND status = 'processing'
                """,
                (_dump_metadata(metadata), title, utc_now_iso(), document_id),
            )
            _ensure_transition(conn, cursor, document_id, expected="processing")
            return _require_row(conn, document_id)

    def mark_completed(
        self,
        document_id: str,
        *,
        content: str,
        metadata: AnyDocumentMetadata,
        title: str | None = None,
    ) -> DocumentRecord:
        now_iso = utc_now_iso()
        with self._db.connection() as conn:
            cursor = conn.execute(
                """
                UPDATE documents
                SET status = 'completed',
                    content = ?,
                    metadata_json = ?,
                    title = COALESCE(?, title),
                    error_code = NULL,
                    error_message = NULL,
                    updated_at = ?,
                    completed_at = ?
                WHERE id = ? AND status = 'processing'
                """,
                (content, _dump_metadata(metadata), title, now_iso, now_iso, document_id),
            )
            _ensure_transition(conn, cursor, document_id, expected="processing")
            return _require_row(conn, document_id)

    def mark_error(
        self,
        document_id: str,
        *,
        error_code: str,
        error_message: str,
    ) -> DocumentRecord:
        with self._db.connection() as conn:
            cursor = conn.execute(
                """
                UPDATE documents
                SET status = 'error',
                    content = NULL,
                    error_code = ?,
                    error_message = ?,
                    updated_at = ?
                WHERE id = ? AND status IN ('pending', 'processing')
                """,
                (error_code, error_message, utc_now_iso(), document_id),
            )
            _ensure_transition(conn, cursor, document_id, expected="pending or processing")
            return _require_row(conn, document_id)


def _select_row(conn: sqlite3.Connection, document_id: str) -> sqlite3.Row | None:
    row = conn.execute(
        f"""
        SELECT {_DOCUMENT_COLUMNS}
        FROM documents
        WHERE id = ?
        """,
        (document_id,),
    ).fetchone()
    if row is None:
        return None
    return row


def _require_row(conn: sqlite3.Connection, document_id: str) -> DocumentRecord:
    row = _select_row(conn, document_id)
    if row is None:
        raise DocumentNotFoundError(f"document not found: {document_id}")
    return _row_to_record(row)


def _ensure_transition(
    conn: sqlite3.Connection,
    cursor: sqlite3.Cursor,
    document_id: str,
    *,
    expected: str,
) -> None:
    if cursor.rowcount == 1:
        return
    row = _select_row(conn, document_id)
    if row is None:
        raise DocumentNotFoundError(f"document not found: {document_id}")
    raise DocumentStateError(
        f"document {document_id} is {row['status']}; expected {expected}"
    )


def _dump_metadata(metadata: AnyDocumentMetadata) -> str:
    return metadata.model_dump_json()


def _row_to_record(row: sqlite3.Row) -> DocumentRecord:
    try:
        metadata = DOCUMENT_METADATA_ADAPTER.validate_json(str(row["metadata_json"]))
    except ValidationError as exc:
        raise StoreUnavailableError(
            f"document {row['id']} carries unreadable metadata: {exc}"
        ) from exc
    return DocumentRecord(
        document_id=str(row["id"]),
        user_id=str(row["user_id"]),
        status=str(row["status"]),
        source_reference=str(row["source_reference"]),
        title=_none_if_empty(row["title"]),
        content=row["content"] if isinstance(row["content"], str) else None,
        metadata=metadata,
        error_code=_none_if_empty(row["error_code"]),
        error_message=_none_if_empty(row["error_message"]),
        created_at=str(row["created_at"]),
        updated_at=str(row["updated_at"]),
        completed_at=_none_if_empty(row["completed_at"]),
    )


def _none_if_empty(value: object) -> str | None:
    if isinstance(value, str) and value.strip():
        return value
    return None
