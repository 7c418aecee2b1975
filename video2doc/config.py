from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_DATA_DIR = ".video2doc"
_DATA_DIR_RELATIVE_DEFAULTS: tuple[tuple[str, Path], ...] = (
    ("db_path", Path("state.db")),
    ("audio_dir", Path("audio")),
    ("log_dir", Path("logs")),
)
_PATH_FIELDS: tuple[str, ...] = (
    "data_dir",
    *(field_name for field_name, _ in _DATA_DIR_RELATIVE_DEFAULTS),
)
_BOOLEAN_COERCION_FIELDS: tuple[str, ...] = (
    "transcription_punctuate",
    "transcription_format_text",
    "telemetry_enabled",
)
_BASE_URL_FIELDS: tuple[str, ...] = (
    "youtube_api_base_url",
    "assemblyai_base_url",
    "openai_base_url",
)


def _default_in_data_dir(relative_path: Path) -> Path:
    return Path(DEFAULT_DATA_DIR) / relative_path


def _data_dir_default_note(relative_path: Path) -> str:
    return f"Defaults to `${{VIDEO2DOC_DATA_DIR}}/{relative_path}` when not explicitly set."


def _resolve_path(value: str | Path) -> Path:
    return Path(value).expanduser().resolve()


def _parse_bool_with_default(value: Any, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        if value == 1:
            return True
        if value == 0:
            return False
        return default
    if not isinstance(value, str):
        return default

    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _normalize_optional_text(value: Any) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        return None
    normalized = value.strip()
    if normalized:
        return normalized
    return None


class AppSettings(BaseSettings):
    """
    Canonical runtime configuration.

    Every option is read from a `VIDEO2DOC_*` environment variable (or `.env`),
    and the field description documents what it controls.
    """

    model_config = SettingsConfigDict(
        env_prefix="VIDEO2DOC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # Core paths.
    data_dir: Path = Field(
        default=Path(DEFAULT_DATA_DIR),
        description="Root runtime directory for the database, logs, and downloaded audio.",
    )
    db_path: Path = Field(
        default=_default_in_data_dir(Path("state.db")),
        description=f"SQLite database path. {_data_dir_default_note(Path('state.db'))}",
    )
    audio_dir: Path = Field(
        default=_default_in_data_dir(Path("audio")),
        description=(
            "Scratch directory for downloaded audio. Files are deleted after each run. "
            f"{_data_dir_default_note(Path('audio'))}"
        ),
    )

    # Video platform metadata.
    youtube_api_key: str | None = Field(
        default=None,
        description="YouTube Data API key used to look up title, duration, and channel.",
    )
    youtube_api_base_url: str = Field(
        default="https://www.googleapis.com/youtube/v3",
        description="YouTube Data API base URL.",
    )
    youtube_http_timeout_seconds: float = Field(
        default=15.0,
        description="HTTP timeout for video metadata lookups.",
    )

    # Speech recognition provider.
    assemblyai_api_key: str | None = Field(
        default=None,
        description="AssemblyAI API key for transcription.",
    )
    assemblyai_base_url: str = Field(
        default="https://api.assemblyai.com/v2",
        description="AssemblyAI API base URL.",
    )
    assemblyai_http_timeout_seconds: float = Field(
        default=60.0,
        description="HTTP timeout for AssemblyAI requests (uploads included).",
    )
    transcription_language_code: str | None = Field(
        default=None,
        description="Optional language code forwarded to the provider. Auto-detected when unset.",
    )
    transcription_punctuate: bool = Field(
        default=True,
        description="Ask the provider to punctuate the transcript.",
    )
    transcription_format_text: bool = Field(
        default=True,
        description="Ask the provider to format numbers and casing in the transcript.",
    )
    transcription_poll_interval_seconds: float = Field(
        default=5.0,
        description="Delay between transcription status polls.",
    )
    transcription_poll_max_attempts: int = Field(
        default=60,
        description="Maximum number of status polls before the job is treated as timed out.",
    )
    transcription_request_max_attempts: int = Field(
        default=3,
        description="Attempts per transcription HTTP call when the failure is transient.",
    )
    transcription_retry_base_delay_seconds: float = Field(
        default=1.0,
        description="Linear backoff base for transient transcription failures.",
    )

    # Text generation provider.
    openai_api_key: str | None = Field(
        default=None,
        description="OpenAI API key used to generate documents from transcripts.",
    )
    openai_base_url: str = Field(
        default="https://api.openai.com/v1",
        description="OpenAI-compatible API base URL.",
    )
    openai_model: str = Field(
        default="gpt-4-turbo-preview",
        description="Chat model used for document generation.",
    )
    openai_temperature: float = Field(
        default=0.7,
        description="Sampling temperature for document generation.",
    )
    openai_max_tokens: int = Field(
        default=4000,
        description="Maximum completion tokens for a generated document.",
    )
    openai_http_timeout_seconds: float = Field(
        default=120.0,
        description="HTTP timeout for document generation requests.",
    )
    summarization_max_attempts: int = Field(
        default=3,
        description="Attempts for document generation when the provider rate-limits.",
    )
    summarization_retry_base_delay_seconds: float = Field(
        default=1.0,
        description="Linear backoff base for rate-limited document generation.",
    )

    # Audio acquisition.
    audio_format: str = Field(
        default="bestaudio/best",
        description="yt-dlp format selector used when downloading audio.",
    )

    # Logging.
    log_dir: Path = Field(
        default=_default_in_data_dir(Path("logs")),
        description=f"Directory for log files. {_data_dir_default_note(Path('logs'))}",
    )
    log_level: str = Field(
        default="INFO",
        description="Console log level (stdout).",
    )

    # Telemetry.
    telemetry_enabled: bool = Field(
        default=True,
        description="Enable lightweight internal telemetry events.",
    )
    telemetry_sink: Literal["none", "log"] = Field(
        default="log",
        description=(
            "Telemetry sink backend. `log` emits structured telemetry locally; "
            "`none` disables sink output."
        ),
    )

    @field_validator("telemetry_sink", mode="before")
    @classmethod
    def _normalize_telemetry_sink(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("VIDEO2DOC_TELEMETRY_SINK must be a string.")
        normalized = value.strip().lower()
        if normalized in {"none", "log"}:
            return normalized
        raise ValueError("VIDEO2DOC_TELEMETRY_SINK must be set to: none, log.")

    @field_validator(*_BASE_URL_FIELDS, mode="before")
    @classmethod
    def _normalize_base_urls(cls, value: Any, info: ValidationInfo) -> str:
        env_name = f"VIDEO2DOC_{str(info.field_name).upper()}"
        if not isinstance(value, str):
            raise ValueError(f"{env_name} must be a string.")
        normalized = value.strip().rstrip("/")
        if not normalized:
            raise ValueError(f"{env_name} must not be empty.")
        return normalized

    @field_validator(
        "transcription_poll_max_attempts",
        "transcription_request_max_attempts",
        "summarization_max_attempts",
    )
    @classmethod
    def _require_positive_attempts(cls, value: int, info: ValidationInfo) -> int:
        if value < 1:
            raise ValueError(f"VIDEO2DOC_{str(info.field_name).upper()} must be >= 1.")
        return value

    @field_validator(*_PATH_FIELDS, mode="before")
    @classmethod
    def _normalize_paths(cls, value: Any) -> Any:
        if value is None:
            return None
        return _resolve_path(value)

    @field_validator(*_BOOLEAN_COERCION_FIELDS, mode="before")
    @classmethod
    def _normalize_booleans(cls, value: Any, info: ValidationInfo) -> bool:
        field_name = info.field_name
        assert field_name is not None
        default_value = cls.model_fields[field_name].default
        assert isinstance(default_value, bool)
        return _parse_bool_with_default(value, default=default_value)

    @field_validator(
        "youtube_api_key",
        "assemblyai_api_key",
        "openai_api_key",
        "transcription_language_code",
        mode="before",
    )
    @classmethod
    def _normalize_optional_strings(cls, value: Any) -> str | None:
        return _normalize_optional_text(value)


def _validate_provider_configuration(
    *,
    youtube_api_key: str | None,
    assemblyai_api_key: str | None,
    openai_api_key: str | None,
) -> None:
    errors: list[str] = []

    if youtube_api_key is None:
        errors.append("VIDEO2DOC_YOUTUBE_API_KEY is required for video metadata lookups.")
    if assemblyai_api_key is None:
        errors.append("VIDEO2DOC_ASSEMBLYAI_API_KEY is required for transcription.")
    if openai_api_key is None:
        errors.append("VIDEO2DOC_OPENAI_API_KEY is required for document generation.")

    if errors:
        bullets = "\n".join(f"- {message}" for message in errors)
        raise ValueError(f"Invalid provider configuration:\n{bullets}")


def _apply_path_defaults(settings: AppSettings) -> AppSettings:
    updates: dict[str, Path] = {}
    for field_name, relative_default in _DATA_DIR_RELATIVE_DEFAULTS:
        if field_name in settings.model_fields_set:
            continue
        updates[field_name] = settings.data_dir / relative_default
    if not updates:
        return settings
    return settings.model_copy(update=updates)


def _resolve_path_fields(settings: AppSettings) -> AppSettings:
    resolved_updates = {
        field_name: _resolve_path(getattr(settings, field_name))
        for field_name in _PATH_FIELDS
    }
    return settings.model_copy(update=resolved_updates)


def load_settings(*, validate_provider_secrets: bool = True) -> AppSettings:
    settings = AppSettings()
    settings = _apply_path_defaults(settings)
    settings = _resolve_path_fields(settings)

    if validate_provider_secrets:
        _validate_provider_configuration(
            youtube_api_key=settings.youtube_api_key,
            assemblyai_api_key=settings.assemblyai_api_key,
            openai_api_key=settings.openai_api_key,
        )

    return settings
