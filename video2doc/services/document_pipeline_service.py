from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from typing import Any, TypeVar

from structlog.contextvars import bound_contextvars

from video2doc.errors import (
    DocumentNotFoundError,
    DocumentStateError,
    PipelineError,
    ProcessingFailedError,
    QuotaCheckFailedError,
    QuotaExceededError,
    StoreUnavailableError,
    VideoDurationUnknownError,
)
from video2doc.models.document_contracts import StyleConfig, VideoDocumentMetadata
from video2doc.repositories.document_repository import DocumentRecord, DocumentRepository
from video2doc.repositories.processing_job_repository import (
    ProcessingJobRecord,
    ProcessingJobRepository,
)
from video2doc.services.media_service import AudioHandle, MediaAcquisitionService, VideoInfo
from video2doc.services.quota_service import QuotaDecision, QuotaEvaluator
from video2doc.services.retry import SleepFn, with_retry
from video2doc.services.summarization_service import (
    GeneratedDocument,
    SummarizationClient,
    is_rate_limited,
)
from video2doc.services.transcription_service import (
    JobProgress,
    TranscriptionClient,
    TranscriptResult,
)
from video2doc.services.usage_service import UsageRecorder
from video2doc.telemetry import TelemetryClient

LOGGER = logging.getLogger("video2doc.pipeline")

T = TypeVar("T")

STAGE_VIDEO_INFO = "video_info"
STAGE_DOWNLOADING = "downloading"
STAGE_TRANSCRIBING = "transcribing"
STAGE_GENERATING = "generating"
STAGE_COMPLETED = "completed"
STAGE_ERROR = "error"

_TRANSCRIBING_PROGRESS_FLOOR = 15
_TRANSCRIBING_PROGRESS_CEILING = 75


@dataclass(frozen=True)
class PipelineProgress:
    document_id: str
    stage: str
    progress: int
    message: str


PipelineProgressCallback = Callable[[PipelineProgress], Awaitable[None] | None]


@dataclass(frozen=True)
class PreparedRun:
    """A document that passed validation and the quota check, ready to run."""

    document: DocumentRecord
    video_id: str
    video_info: VideoInfo
    decision: QuotaDecision
    style: StyleConfig
    metadata: VideoDocumentMetadata


class DocumentPipelineService:
    """Drives a pending document through acquisition, transcription and generation.

    Status moves ``pending -> processing -> completed | error``. Each stage's
    output is flushed to the document's metadata before the next stage starts,
    and the downloaded audio is released on every exit path. Usage is recorded
    once, after the document is completed.
    """

    def __init__(
        self,
        *,
        documents: DocumentRepository,
        jobs: ProcessingJobRepository,
        quota: QuotaEvaluator,
        usage_recorder: UsageRecorder,
        media: MediaAcquisitionService,
        transcription: TranscriptionClient,
        summarization: SummarizationClient,
        telemetry: TelemetryClient | None = None,
        summarization_max_attempts: int = 3,
        summarization_retry_base_delay_seconds: float = 1.0,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._documents = documents
        self._jobs = jobs
        self._quota = quota
        self._usage_recorder = usage_recorder
        self._media = media
        self._transcription = transcription
        self._summarization = summarization
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()
        self._summarization_max_attempts = max(1, summarization_max_attempts)
        self._summarization_retry_base_delay_seconds = max(
            0.0, summarization_retry_base_delay_seconds
        )
        self._sleep = sleep

    def create_document(
        self,
        *,
        account_id: str,
        video_url: str,
        style: StyleConfig | None = None,
    ) -> DocumentRecord:
        source_reference = video_url.strip()
        if not source_reference:
            raise ValueError("video_url must not be empty")
        document = self._documents.create_document(
            user_id=account_id,
            source_reference=source_reference,
            metadata=VideoDocumentMetadata(style=style or StyleConfig()),
        )
        LOGGER.info(
            "document created document_id=%s account_id=%s",
            document.document_id,
            account_id,
        )
        return document

    def get_document(self, document_id: str) -> DocumentRecord | None:
        return self._documents.get_document(document_id)

    def list_documents(self, account_id: str, *, limit: int = 50) -> list[DocumentRecord]:
        return self._documents.list_documents(user_id=account_id, limit=limit)

    def get_active_job(self, document_id: str) -> ProcessingJobRecord | None:
        return self._jobs.get_active_job(document_id)

    async def process(
        self,
        document_id: str,
        video_url: str,
        style: StyleConfig | None = None,
        on_progress: PipelineProgressCallback | None = None,
    ) -> DocumentRecord:
        prepared = await self.prepare(document_id, video_url, style=style)
        return await self.run(prepared, on_progress=on_progress)

    async def prepare(
        self,
        document_id: str,
        video_url: str,
        *,
        style: StyleConfig | None = None,
        account_id: str | None = None,
    ) -> PreparedRun:
        """Validate the document and the reference, then check the account's quota.

        An invalid reference or a failed metadata lookup moves the document to
        ``error``. A quota rejection leaves it ``pending``.
        """
        document = await _off_loop(self._documents.get_document, document_id)
        if document is None or (account_id is not None and document.user_id != account_id):
            raise DocumentNotFoundError(f"document not found: {document_id}")
        if document.status != "pending":
            raise DocumentStateError(f"document {document_id} is {document.status}")
        if document.source_reference != video_url.strip():
            raise DocumentStateError(
                f"document {document_id} was created for a different video reference"
            )
        if not isinstance(document.metadata, VideoDocumentMetadata):
            raise DocumentStateError(f"document {document_id} is not a video document")

        resolved_style = style or document.metadata.style
        self._telemetry.emit(
            "document.pipeline.started",
            document_id=document_id,
            account_id=document.user_id,
        )

        try:
            video_id = self._media.parse_video_reference(video_url)
            video_info = await _off_loop(self._media.fetch_video_info, video_id)
            if video_info.duration_seconds <= 0:
                raise VideoDurationUnknownError(
                    f"video {video_id} has no usable duration for the quota check"
                )
        except PipelineError as exc:
            await self._record_failure(document_id, exc, job=None, stage=STAGE_VIDEO_INFO)
            raise

        try:
            decision = await _off_loop(
                self._quota.ensure_can_process,
                document.user_id,
                video_info.duration_seconds,
            )
        except (QuotaExceededError, QuotaCheckFailedError) as exc:
            LOGGER.info(
                "document rejected by quota document_id=%s account_id=%s code=%s detail=%s",
                document_id,
                document.user_id,
                exc.code,
                exc,
            )
            self._telemetry.emit(
                "document.pipeline.rejected",
                document_id=document_id,
                error_code=exc.code,
            )
            raise

        metadata = document.metadata.model_copy(
            update={
                "style": resolved_style,
                "video_id": video_info.video_id,
                "title": video_info.title,
                "channel_title": video_info.channel_title,
                "duration_seconds": video_info.duration_seconds,
            }
        )
        return PreparedRun(
            document=document,
            video_id=video_id,
            video_info=video_info,
            decision=decision,
            style=resolved_style,
            metadata=metadata,
        )

    async def run(
        self,
        prepared: PreparedRun,
        *,
        on_progress: PipelineProgressCallback | None = None,
    ) -> DocumentRecord:
        # Every log line of the run, including provider clients, carries the document.
        with bound_contextvars(
            document_id=prepared.document.document_id,
            account_id=prepared.document.user_id,
        ):
            return await self._run(prepared, on_progress)

    async def _run(
        self,
        prepared: PreparedRun,
        on_progress: PipelineProgressCallback | None,
    ) -> DocumentRecord:
        document_id = prepared.document.document_id
        account_id = prepared.document.user_id
        started_at = time.monotonic()

        await _off_loop(self._documents.mark_processing, document_id)

        audio: AudioHandle | None = None
        job: ProcessingJobRecord | None = None
        stage = STAGE_VIDEO_INFO
        try:
            metadata = prepared.metadata
            await _off_loop(
                self._documents.update_metadata,
                document_id,
                metadata=metadata,
                title=prepared.video_info.title,
            )
            await self._report(on_progress, document_id, stage, 5, "Video information saved")

            stage = STAGE_DOWNLOADING
            await self._report(on_progress, document_id, stage, 10, "Downloading audio")
            audio = await _off_loop(self._media.download_audio, prepared.video_id)

            stage = STAGE_TRANSCRIBING
            await self._report(
                on_progress,
                document_id,
                stage,
                _TRANSCRIBING_PROGRESS_FLOOR,
                "Starting transcription",
            )
            provider_job_id = await self._transcription.submit(audio)
            job = await _off_loop(
                self._jobs.create_job,
                document_id=document_id,
                provider_job_id=provider_job_id,
            )
            metadata = metadata.model_copy(update={"transcription_job_id": provider_job_id})
            transcript = await self._transcription.wait(
                provider_job_id,
                on_progress=self._poll_listener(document_id, job, on_progress),
            )
            metadata = _with_transcript(metadata, transcript)
            await _off_loop(self._documents.update_metadata, document_id, metadata=metadata)

            stage = STAGE_GENERATING
            await self._report(on_progress, document_id, stage, 80, "Generating document")
            generated = await self._generate(transcript.text, prepared)
            metadata = _with_generated(metadata, generated)
            await _off_loop(self._documents.update_metadata, document_id, metadata=metadata)

            completed = await _off_loop(
                self._documents.mark_completed,
                document_id,
                content=generated.content,
                metadata=metadata,
                title=prepared.video_info.title,
            )
        except PipelineError as exc:
            await self._record_failure(document_id, exc, job=job, stage=stage)
            await self._report(on_progress, document_id, STAGE_ERROR, 0, exc.user_message)
            raise
        except Exception as exc:
            wrapped = ProcessingFailedError(f"unexpected pipeline failure: {exc}")
            LOGGER.exception(
                "document pipeline crashed document_id=%s stage=%s",
                document_id,
                stage,
            )
            await self._record_failure(document_id, wrapped, job=job, stage=stage)
            await self._report(on_progress, document_id, STAGE_ERROR, 0, wrapped.user_message)
            raise wrapped from exc
        finally:
            if audio is not None:
                await _off_loop(audio.release)

        duration_seconds = prepared.video_info.duration_seconds
        try:
            await _off_loop(self._usage_recorder.record_completion, account_id, duration_seconds)
        except StoreUnavailableError:
            LOGGER.exception(
                "usage recording failed after completion document_id=%s account_id=%s",
                document_id,
                account_id,
            )
            raise

        elapsed_ms = int((time.monotonic() - started_at) * 1000)
        LOGGER.info(
            "document pipeline completed document_id=%s duration_seconds=%s elapsed_ms=%s",
            document_id,
            duration_seconds,
            elapsed_ms,
        )
        self._telemetry.emit(
            "document.pipeline.completed",
            document_id=document_id,
            duration_seconds=duration_seconds,
            word_count=metadata.word_count,
            elapsed_ms=elapsed_ms,
        )
        await self._report(on_progress, document_id, STAGE_COMPLETED, 100, "Completed")
        return completed

    async def _generate(self, transcript: str, prepared: PreparedRun) -> GeneratedDocument:
        limits = prepared.decision.limits
        include_analysis = limits.has_feature("sentiment_analysis") or limits.has_feature(
            "topic_analysis"
        )
        generated = await with_retry(
            lambda: self._summarization.generate(
                transcript,
                prepared.style,
                include_analysis=include_analysis,
            ),
            max_attempts=self._summarization_max_attempts,
            base_delay_seconds=self._summarization_retry_base_delay_seconds,
            should_retry=is_rate_limited,
            sleep=self._sleep,
            operation_name="summarization.generate",
        )
        if not limits.has_feature("sentiment_analysis") and generated.sentiment is not None:
            generated = replace(generated, sentiment=None)
        if not limits.has_feature("topic_analysis") and generated.topics:
            generated = replace(generated, topics=[])
        return generated

    def _poll_listener(
        self,
        document_id: str,
        job: ProcessingJobRecord,
        on_progress: PipelineProgressCallback | None,
    ) -> Callable[[JobProgress], Awaitable[None]]:
        async def listener(progress: JobProgress) -> None:
            await _off_loop(
                self._jobs.update_progress,
                job.job_id,
                status=progress.status,
                progress=progress.progress,
                status_message=progress.message,
            )
            span = _TRANSCRIBING_PROGRESS_CEILING - _TRANSCRIBING_PROGRESS_FLOOR
            overall = _TRANSCRIBING_PROGRESS_FLOOR + int(span * progress.progress / 100)
            await self._report(
                on_progress,
                document_id,
                STAGE_TRANSCRIBING,
                overall,
                progress.message,
                emit_telemetry=False,
            )

        return listener

    async def _report(
        self,
        callback: PipelineProgressCallback | None,
        document_id: str,
        stage: str,
        progress: int,
        message: str,
        *,
        emit_telemetry: bool = True,
    ) -> None:
        if emit_telemetry:
            self._telemetry.emit(
                "document.pipeline.stage",
                document_id=document_id,
                stage=stage,
                progress=progress,
            )
        if callback is None:
            return
        result = callback(
            PipelineProgress(
                document_id=document_id,
                stage=stage,
                progress=progress,
                message=message,
            )
        )
        if result is not None:
            await result

    async def _record_failure(
        self,
        document_id: str,
        exc: PipelineError,
        *,
        job: ProcessingJobRecord | None,
        stage: str,
    ) -> None:
        # Provider detail stays in the log; the row only gets the user-safe message.
        LOGGER.warning(
            "document pipeline failed document_id=%s stage=%s code=%s detail=%s",
            document_id,
            stage,
            exc.code,
            exc,
        )
        self._telemetry.emit(
            "document.pipeline.failed",
            document_id=document_id,
            stage=stage,
            error_code=exc.code,
        )
        if job is not None:
            try:
                await _off_loop(
                    self._jobs.update_progress,
                    job.job_id,
                    status="error",
                    progress=0,
                    error_message=exc.user_message,
                )
            except StoreUnavailableError:
                LOGGER.exception("processing job error update failed job_id=%s", job.job_id)
        try:
            await _off_loop(
                self._documents.mark_error,
                document_id,
                error_code=exc.code,
                error_message=exc.user_message,
            )
        except (StoreUnavailableError, DocumentStateError, DocumentNotFoundError):
            LOGGER.exception("document error update failed document_id=%s", document_id)


async def _off_loop(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    return await asyncio.to_thread(func, *args, **kwargs)


def _with_transcript(
    metadata: VideoDocumentMetadata,
    transcript: TranscriptResult,
) -> VideoDocumentMetadata:
    return metadata.model_copy(
        update={
            "transcript": transcript.text,
            "word_count": transcript.word_count,
            "confidence": transcript.confidence,
            "chapters": list(transcript.chapters),
            "highlights": list(transcript.highlights),
            "entities": list(transcript.entities),
        }
    )


def _with_generated(
    metadata: VideoDocumentMetadata,
    generated: GeneratedDocument,
) -> VideoDocumentMetadata:
    return metadata.model_copy(
        update={
            "summary": generated.summary,
            "key_points": list(generated.key_points),
            "sentiment": generated.sentiment,
            "topics": list(generated.topics),
            "estimated_reading_minutes": generated.estimated_reading_minutes,
        }
    )

