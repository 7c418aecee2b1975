from __future__ import annotations

import logging
import re
import sys
from collections.abc import Iterable
from pathlib import Path

import structlog
from structlog.typing import EventDict, Processor

from video2doc.config import AppSettings

ROOT_LOGGER_NAME = "video2doc"
TELEMETRY_LOGGER_NAME = "video2doc.telemetry"
LOG_FILE_NAME = "video2doc.log"
TELEMETRY_LOG_FILE_NAME = "video2doc-telemetry.log"

# Keyword arguments that carry document text or provider detail.
_REDACTED_EVENT_KEYS: frozenset[str] = frozenset(
    {"transcript", "content", "summary", "provider_message", "api_key", "authorization"}
)
# Provider credentials that can surface inside exception text and URLs.
_CREDENTIAL_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"([?&]key=)[^&\s'\"]+", flags=re.IGNORECASE),
    re.compile(r"(bearer\s+)[A-Za-z0-9._\-]+", flags=re.IGNORECASE),
)


def configure_application_logging(settings: AppSettings) -> Path:
    """Route ``video2doc`` logs to the console and a JSON file.

    Telemetry events get their own JSON file and never reach the console.
    Both outputs pass through :func:`redact_document_text`.
    """
    log_dir = settings.log_dir
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / LOG_FILE_NAME
    telemetry_log_file = log_dir / TELEMETRY_LOG_FILE_NAME

    _configure_structlog()

    console_handler = logging.StreamHandler(stream=sys.stdout)
    console_handler.setLevel(_resolve_log_level(settings.log_level))
    console_handler.setFormatter(
        _formatter(structlog.dev.ConsoleRenderer(colors=_stream_supports_color(sys.stdout)))
    )
    _install_handlers(
        ROOT_LOGGER_NAME,
        [console_handler, _json_file_handler(log_file, level=logging.DEBUG)],
        level=logging.DEBUG,
    )
    _install_handlers(
        TELEMETRY_LOGGER_NAME,
        [_json_file_handler(telemetry_log_file, level=logging.INFO)],
        level=logging.INFO,
    )

    logging.getLogger(ROOT_LOGGER_NAME).info(
        "logging configured console_level=%s path=%s telemetry_path=%s",
        settings.log_level.upper(),
        log_file,
        telemetry_log_file,
    )
    return log_file


def redact_document_text(
    _logger: object,
    _method_name: str,
    event_dict: EventDict,
) -> EventDict:
    for key in _REDACTED_EVENT_KEYS.intersection(event_dict):
        event_dict[key] = "[redacted]"
    event = event_dict.get("event")
    if isinstance(event, str):
        event_dict["event"] = mask_credentials(event)
    return event_dict


def mask_credentials(message: str) -> str:
    for pattern in _CREDENTIAL_PATTERNS:
        message = pattern.sub(r"\1[redacted]", message)
    return message


def _resolve_log_level(raw_level: str) -> int:
    resolved = logging.getLevelNamesMapping().get(raw_level.strip().upper())
    return resolved if resolved is not None else logging.INFO


def _configure_structlog() -> None:
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            redact_document_text,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def _install_handlers(
    logger_name: str,
    handlers: Iterable[logging.Handler],
    *,
    level: int,
) -> None:
    logger = logging.getLogger(logger_name)
    logger.setLevel(level)
    logger.propagate = False
    for existing in list(logger.handlers):
        logger.removeHandler(existing)
        existing.close()
    for handler in handlers:
        logger.addHandler(handler)


def _json_file_handler(path: Path, *, level: int) -> logging.Handler:
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(
        _formatter(
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(sort_keys=True),
        )
    )
    return handler


def _formatter(*renderers: Processor) -> structlog.stdlib.ProcessorFormatter:
    # Stdlib records arrive with the %-formatted message already in ``event``.
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[
            structlog.contextvars.merge_contextvars,
            redact_document_text,
        ],
        processors=[
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True, key="timestamp"),
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            *renderers,
        ],
    )


def _stream_supports_color(stream: object) -> bool:
    isatty = getattr(stream, "isatty", None)
    if not callable(isatty):
        return False
    try:
        return bool(isatty())
    except (OSError, ValueError):
        return False
