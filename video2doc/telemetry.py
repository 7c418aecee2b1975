"""Lifecycle events for documents and HTTP requests.

Events carry identifiers, stage names and counters only. Document text
(transcripts, generated content, summaries, provider error detail) never
leaves the process through telemetry: those fields are replaced by their
size, secrets are masked, and any attribute outside the known vocabulary is
dropped and counted.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Literal, Protocol

import structlog

LOGGER = logging.getLogger("video2doc.telemetry")

EVENT_NAMES: frozenset[str] = frozenset(
    {
        "document.pipeline.started",
        "document.pipeline.stage",
        "document.pipeline.rejected",
        "document.pipeline.failed",
        "document.pipeline.completed",
        "http.request.start",
        "http.request.finish",
        "http.request.error",
    }
)

_LABEL_FIELDS: frozenset[str] = frozenset(
    {
        "document_id",
        "account_id",
        "stage",
        "error_code",
        "error_type",
        "request_id",
        "method",
        "path",
    }
)
_COUNTER_FIELDS: frozenset[str] = frozenset(
    {"progress", "duration_seconds", "word_count", "elapsed_ms", "duration_ms", "status_code"}
)
_DOCUMENT_TEXT_FIELDS: frozenset[str] = frozenset(
    {"transcript", "content", "summary", "key_points", "provider_message", "prompt"}
)
_SECRET_FIELDS: frozenset[str] = frozenset({"api_key", "authorization"})
_MAX_LABEL_LENGTH = 120

TelemetryValue = bool | int | float | str | None


class TelemetrySink(Protocol):
    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        ...


class NoOpTelemetrySink:
    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        _ = (event_name, attributes)


class StructuredLogTelemetrySink:
    """Writes each event as one structlog line on the telemetry logger."""

    def __init__(self) -> None:
        self._logger = structlog.get_logger("video2doc.telemetry")

    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        self._logger.info(event_name, **dict(attributes))


@dataclass(frozen=True)
class TelemetryClient:
    enabled: bool
    sink: TelemetrySink

    @classmethod
    def disabled(cls) -> TelemetryClient:
        return cls(enabled=False, sink=NoOpTelemetrySink())

    def emit(self, event_name: str, **attributes: Any) -> None:
        if not self.enabled:
            return
        if event_name not in EVENT_NAMES:
            LOGGER.warning("unknown telemetry event skipped event=%s", event_name)
            return
        self.sink.emit(event_name=event_name, attributes=sanitize_event_attributes(attributes))


def build_telemetry_client(*, enabled: bool, sink: Literal["none", "log"]) -> TelemetryClient:
    if not enabled or sink == "none":
        return TelemetryClient.disabled()
    if sink == "log":
        return TelemetryClient(enabled=True, sink=StructuredLogTelemetrySink())

    LOGGER.warning("unsupported telemetry sink requested; disabling telemetry sink=%s", sink)
    return TelemetryClient.disabled()


def sanitize_event_attributes(attributes: Mapping[str, Any]) -> dict[str, TelemetryValue]:
    sanitized: dict[str, TelemetryValue] = {}
    dropped = 0
    for raw_key, raw_value in attributes.items():
        key = str(raw_key).strip().lower()
        if key in _SECRET_FIELDS:
            sanitized[key] = "[redacted]"
        elif key in _DOCUMENT_TEXT_FIELDS:
            sanitized[key] = _describe_text(raw_value)
        elif key in _COUNTER_FIELDS:
            counter = _as_counter(raw_value)
            if counter is None:
                dropped += 1
                continue
            sanitized[key] = counter
        elif key in _LABEL_FIELDS:
            sanitized[key] = _as_label(raw_value)
        else:
            dropped += 1
    if dropped:
        sanitized["dropped_attributes"] = dropped
    return sanitized


def _describe_text(value: Any) -> str:
    if isinstance(value, str):
        return f"[redacted {len(value)} chars]"
    if isinstance(value, list | tuple):
        return f"[redacted {len(value)} items]"
    return "[redacted]"


def _as_counter(value: Any) -> int | float | None:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    return value


def _as_label(value: Any) -> str | None:
    if value is None:
        return None
    compact = " ".join(str(value).split())
    if len(compact) <= _MAX_LABEL_LENGTH:
        return compact
    return f"{compact[:_MAX_LABEL_LENGTH]}..."
