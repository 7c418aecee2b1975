from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, Query
from structlog.contextvars import bind_contextvars, reset_contextvars

from video2doc.dependencies import get_pipeline, get_quota_evaluator
from video2doc.errors import (
    DocumentNotFoundError,
    DocumentStateError,
    InvalidVideoReferenceError,
    MediaAcquisitionFailedError,
    PipelineError,
    QuotaCheckFailedError,
    QuotaExceededError,
    StoreUnavailableError,
    VideoDurationUnknownError,
)
from video2doc.models.document_contracts import (
    DocumentCreateRequest,
    DocumentProcessRequest,
    DocumentResponse,
    ProcessAcceptedResponse,
    ProcessingJobResponse,
    UsageResponse,
)
from video2doc.repositories.document_repository import DocumentRecord
from video2doc.repositories.processing_job_repository import ProcessingJobRecord
from video2doc.services.document_pipeline_service import DocumentPipelineService, PreparedRun
from video2doc.services.quota_service import QuotaEvaluator

LOGGER = logging.getLogger("video2doc.api")

router = APIRouter()

_STATUS_BY_ERROR: tuple[tuple[type[PipelineError], int], ...] = (
    (DocumentNotFoundError, 404),
    (DocumentStateError, 409),
    (InvalidVideoReferenceError, 422),
    (VideoDurationUnknownError, 422),
    (QuotaExceededError, 402),
    (QuotaCheckFailedError, 503),
    (StoreUnavailableError, 503),
    (MediaAcquisitionFailedError, 502),
)


def require_account_id(
    x_account_id: Annotated[str | None, Header(alias="X-Account-ID")] = None,
) -> str:
    if x_account_id is None or not x_account_id.strip():
        raise HTTPException(status_code=401, detail="X-Account-ID header is required.")
    return x_account_id.strip()


def _to_http_exception(exc: PipelineError) -> HTTPException:
    status_code = 500
    for error_type, mapped_status in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            status_code = mapped_status
            break
    detail = exc.reason if isinstance(exc, QuotaExceededError) else exc.user_message
    return HTTPException(status_code=status_code, detail={"code": exc.code, "message": detail})


def _document_response(record: DocumentRecord) -> DocumentResponse:
    return DocumentResponse(
        id=record.document_id,
        user_id=record.user_id,
        status=record.status,  # pyright: ignore[reportArgumentType]
        source_reference=record.source_reference,
        title=record.title,
        content=record.content,
        metadata=record.metadata,
        error_message=record.error_message,
        created_at=record.created_at,
        updated_at=record.updated_at,
        completed_at=record.completed_at,
    )


def _job_response(record: ProcessingJobRecord) -> ProcessingJobResponse:
    return ProcessingJobResponse(
        id=record.job_id,
        document_id=record.document_id,
        provider_job_id=record.provider_job_id,
        status=record.status,
        progress=record.progress,
        status_message=record.status_message,
        error_message=record.error_message,
        created_at=record.created_at,
    )


def _owned_document(
    pipeline: DocumentPipelineService,
    document_id: str,
    account_id: str,
) -> DocumentRecord:
    try:
        record = pipeline.get_document(document_id)
    except PipelineError as exc:
        raise _to_http_exception(exc) from exc
    if record is None or record.user_id != account_id:
        raise HTTPException(status_code=404, detail="Document not found.")
    return record


async def _run_in_background(pipeline: DocumentPipelineService, prepared: PreparedRun) -> None:
    context_tokens = bind_contextvars(document_id=prepared.document.document_id)
    try:
        await pipeline.run(prepared)
    except PipelineError as exc:
        # The document row already carries the failure.
        LOGGER.warning(
            "background pipeline ended with error document_id=%s code=%s",
            prepared.document.document_id,
            exc.code,
        )
    finally:
        reset_contextvars(**context_tokens)


@router.post(
    "/documents",
    response_model=DocumentResponse,
    status_code=201,
    tags=["documents"],
    operation_id="create_document",
)
def create_document(
    request: DocumentCreateRequest,
    account_id: Annotated[str, Depends(require_account_id)],
    pipeline: Annotated[DocumentPipelineService, Depends(get_pipeline)],
) -> DocumentResponse:
    try:
        record = pipeline.create_document(
            account_id=account_id,
            video_url=request.video_url,
            style=request.style,
        )
    except PipelineError as exc:
        raise _to_http_exception(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return _document_response(record)


@router.get(
    "/documents",
    response_model=list[DocumentResponse],
    tags=["documents"],
    operation_id="list_documents",
)
def list_documents(
    account_id: Annotated[str, Depends(require_account_id)],
    pipeline: Annotated[DocumentPipelineService, Depends(get_pipeline)],
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
) -> list[DocumentResponse]:
    try:
        records = pipeline.list_documents(account_id, limit=limit)
    except PipelineError as exc:
        raise _to_http_exception(exc) from exc
    return [_document_response(record) for record in records]


@router.post(
    "/documents/{document_id}/process",
    response_model=ProcessAcceptedResponse,
    status_code=202,
    tags=["documents"],
    operation_id="process_document",
)
async def process_document(
    document_id: str,
    request: DocumentProcessRequest,
    background_tasks: BackgroundTasks,
    account_id: Annotated[str, Depends(require_account_id)],
    pipeline: Annotated[DocumentPipelineService, Depends(get_pipeline)],
) -> ProcessAcceptedResponse:
    context_tokens = bind_contextvars(document_id=document_id)
    try:
        prepared = await pipeline.prepare(
            document_id,
            request.video_url,
            account_id=account_id,
        )
    except PipelineError as exc:
        raise _to_http_exception(exc) from exc
    finally:
        reset_contextvars(**context_tokens)

    background_tasks.add_task(_run_in_background, pipeline, prepared)
    return ProcessAcceptedResponse(
        document_id=document_id,
        status="pending",
        message="Processing started.",
    )


@router.get(
    "/documents/{document_id}",
    response_model=DocumentResponse,
    tags=["documents"],
    operation_id="get_document",
)
def get_document(
    document_id: str,
    account_id: Annotated[str, Depends(require_account_id)],
    pipeline: Annotated[DocumentPipelineService, Depends(get_pipeline)],
) -> DocumentResponse:
    return _document_response(_owned_document(pipeline, document_id, account_id))


@router.get(
    "/documents/{document_id}/job",
    response_model=ProcessingJobResponse,
    tags=["documents"],
    operation_id="get_document_job",
)
def get_document_job(
    document_id: str,
    account_id: Annotated[str, Depends(require_account_id)],
    pipeline: Annotated[DocumentPipelineService, Depends(get_pipeline)],
) -> ProcessingJobResponse:
    _owned_document(pipeline, document_id, account_id)
    try:
        job = pipeline.get_active_job(document_id)
    except PipelineError as exc:
        raise _to_http_exception(exc) from exc
    if job is None:
        raise HTTPException(status_code=404, detail="No processing job for this document.")
    return _job_response(job)


@router.get(
    "/usage",
    response_model=UsageResponse,
    tags=["usage"],
    operation_id="get_usage",
)
def get_usage(
    account_id: Annotated[str, Depends(require_account_id)],
    quota: Annotated[QuotaEvaluator, Depends(get_quota_evaluator)],
) -> UsageResponse:
    try:
        decision = quota.can_process(account_id, 0)
    except PipelineError as exc:
        raise _to_http_exception(exc) from exc

    limits = decision.limits
    usage = decision.usage
    remaining = (
        max(0, limits.documents_per_month - usage.documents_processed)
        if limits.documents_per_month is not None
        else None
    )
    return UsageResponse(
        user_id=account_id,
        month=usage.month,
        tier=limits.tier,
        documents_processed=usage.documents_processed,
        total_video_duration_seconds=usage.total_video_duration_seconds,
        documents_per_month=limits.documents_per_month,
        max_video_duration_seconds=limits.max_video_duration_seconds,
        remaining_documents=remaining,
        features=dict(limits.features),
    )
