from __future__ import annotations

from functools import lru_cache

from video2doc.config import AppSettings, load_settings
from video2doc.repositories.account_repository import AccountRepository
from video2doc.repositories.database import Database
from video2doc.repositories.document_repository import DocumentRepository
from video2doc.repositories.processing_job_repository import ProcessingJobRepository
from video2doc.repositories.usage_repository import UsageRepository
from video2doc.services.document_pipeline_service import DocumentPipelineService
from video2doc.services.media_service import MediaAcquisitionService
from video2doc.services.quota_service import QuotaEvaluator
from video2doc.services.summarization_service import SummarizationClient
from video2doc.services.transcription_service import TranscriptionClient, TranscriptionOptions
from video2doc.services.usage_service import UsageRecorder
from video2doc.telemetry import TelemetryClient, build_telemetry_client


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    return load_settings()


@lru_cache(maxsize=1)
def get_database() -> Database:
    database = Database(get_settings().db_path)
    database.initialize()
    return database


@lru_cache(maxsize=1)
def get_quota_evaluator() -> QuotaEvaluator:
    database = get_database()
    return QuotaEvaluator(accounts=AccountRepository(database), usage=UsageRepository(database))


@lru_cache(maxsize=1)
def get_usage_recorder() -> UsageRecorder:
    return UsageRecorder(usage=UsageRepository(get_database()))


@lru_cache(maxsize=1)
def get_pipeline() -> DocumentPipelineService:
    settings = get_settings()
    database = get_database()

    return DocumentPipelineService(
        documents=DocumentRepository(database),
        jobs=ProcessingJobRepository(database),
        quota=get_quota_evaluator(),
        usage_recorder=get_usage_recorder(),
        media=MediaAcquisitionService(
            api_key=settings.youtube_api_key,
            api_base_url=settings.youtube_api_base_url,
            http_timeout_seconds=settings.youtube_http_timeout_seconds,
            audio_dir=settings.audio_dir,
            audio_format=settings.audio_format,
        ),
        transcription=TranscriptionClient(
            api_key=settings.assemblyai_api_key,
            base_url=settings.assemblyai_base_url,
            http_timeout_seconds=settings.assemblyai_http_timeout_seconds,
            poll_interval_seconds=settings.transcription_poll_interval_seconds,
            poll_max_attempts=settings.transcription_poll_max_attempts,
            request_max_attempts=settings.transcription_request_max_attempts,
            retry_base_delay_seconds=settings.transcription_retry_base_delay_seconds,
            default_options=TranscriptionOptions(
                language_code=settings.transcription_language_code,
                punctuate=settings.transcription_punctuate,
                format_text=settings.transcription_format_text,
            ),
        ),
        summarization=SummarizationClient(
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
            model=settings.openai_model,
            temperature=settings.openai_temperature,
            max_tokens=settings.openai_max_tokens,
            http_timeout_seconds=settings.openai_http_timeout_seconds,
        ),
        telemetry=get_telemetry(),
        summarization_max_attempts=settings.summarization_max_attempts,
        summarization_retry_base_delay_seconds=settings.summarization_retry_base_delay_seconds,
    )


@lru_cache(maxsize=1)
def get_telemetry() -> TelemetryClient:
    settings = get_settings()
    return build_telemetry_client(
        enabled=settings.telemetry_enabled,
        sink=settings.telemetry_sink,
    )


def reset_cached_dependencies() -> None:
    get_pipeline.cache_clear()
    get_usage_recorder.cache_clear()
    get_quota_evaluator.cache_clear()
    get_database.cache_clear()
    get_telemetry.cache_clear()
    get_settings.cache_clear()
