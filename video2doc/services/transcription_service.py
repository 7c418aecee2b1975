from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from video2doc.errors import (
    TranscriptionFailedError,
    TranscriptionRateLimitedError,
    TranscriptionTimeoutError,
    TranscriptionUnavailableError,
)
from video2doc.models.document_contracts import Chapter, Entity, Highlight
from video2doc.services.media_service import AudioHandle
from video2doc.services.provider_payloads import (
    as_dict,
    as_list,
    coerce_nonempty_string,
    parse_json_dict,
)
from video2doc.services.retry import SleepFn, is_transient_error, with_retry

LOGGER = logging.getLogger("video2doc.transcription")

PENDING_JOB_STATUSES: frozenset[str] = frozenset({"queued", "processing"})
_QUEUED_PROGRESS = 5
_PROCESSING_PROGRESS_FLOOR = 10
_PROCESSING_PROGRESS_CEILING = 90


@dataclass(frozen=True)
class TranscriptionOptions:
    auto_chapters: bool = True
    auto_highlights: bool = True
    entity_detection: bool = True
    language_code: str | None = None
    punctuate: bool = True
    format_text: bool = True

    def as_request_fields(self) -> dict[str, Any]:
        fields: dict[str, Any] = {
            "auto_chapters": self.auto_chapters,
            "auto_highlights": self.auto_highlights,
            "entity_detection": self.entity_detection,
            "punctuate": self.punctuate,
            "format_text": self.format_text,
        }
        if self.language_code is not None:
            fields["language_code"] = self.language_code
        return fields


@dataclass(frozen=True)
class JobProgress:
    job_id: str
    status: str
    progress: int
    poll: int
    max_polls: int
    message: str


@dataclass(frozen=True)
class TranscriptResult:
    job_id: str
    text: str
    confidence: float | None
    audio_duration_seconds: int | None
    word_count: int
    language_code: str | None = None
    chapters: list[Chapter] = field(default_factory=lambda: list[Chapter]())
    highlights: list[Highlight] = field(default_factory=lambda: list[Highlight]())
    entities: list[Entity] = field(default_factory=lambda: list[Entity]())


ProgressCallback = Callable[[JobProgress], Awaitable[None] | None]


class TranscriptionClient:
    """Speech-recognition client: upload, submit, then poll until terminal.

    Every HTTP call is retried for transient failures only. Provider-side
    ``error`` and the polling ceiling are terminal and never retried.
    """

    def __init__(
        self,
        *,
        api_key: str | None,
        base_url: str,
        http_timeout_seconds: float = 60.0,
        poll_interval_seconds: float = 5.0,
        poll_max_attempts: int = 60,
        request_max_attempts: int = 3,
        retry_base_delay_seconds: float = 1.0,
        default_options: TranscriptionOptions | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        if poll_max_attempts < 1:
            raise ValueError("poll_max_attempts must be >= 1")
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._http_timeout_seconds = http_timeout_seconds
        self._poll_interval_seconds = poll_interval_seconds
        self._poll_max_attempts = poll_max_attempts
        self._request_max_attempts = request_max_attempts
        self._retry_base_delay_seconds = retry_base_delay_seconds
        self._default_options = default_options or TranscriptionOptions()
        self._sleep = sleep

    async def submit(
        self,
        audio: AudioHandle | str,
        options: TranscriptionOptions | None = None,
    ) -> str:
        resolved_options = options or self._default_options
        if isinstance(audio, AudioHandle):
            audio_url = await self._upload(audio)
        else:
            audio_url = audio

        body = {"audio_url": audio_url, **resolved_options.as_request_fields()}
        payload = await self._call(
            "POST",
            f"{self._base_url}/transcript",
            body=json.dumps(body).encode("utf-8"),
            content_type="application/json",
            action="submit",
        )
        job_id = coerce_nonempty_string(payload.get("id"))
        if job_id is None:
            raise TranscriptionFailedError("transcription submit response carried no job id")
        LOGGER.info("transcription submitted job_id=%s", job_id)
        return job_id

    async def get_status(self, job_id: str) -> dict[str, Any]:
        return await self._call(
            "GET",
            f"{self._base_url}/transcript/{job_id}",
            body=None,
            content_type=None,
            action="poll",
        )

    async def wait(
        self,
        job_id: str,
        on_progress: ProgressCallback | None = None,
    ) -> TranscriptResult:
        for poll in range(1, self._poll_max_attempts + 1):
            payload = await self.get_status(job_id)
            status = (coerce_nonempty_string(payload.get("status")) or "unknown").lower()

            progress = JobProgress(
                job_id=job_id,
                status=status,
                progress=_estimate_progress(status, poll, self._poll_max_attempts),
                poll=poll,
                max_polls=self._poll_max_attempts,
                message=f"Transcribing: {status}",
            )
            await _notify(on_progress, progress)

            if status == "completed":
                LOGGER.info("transcription completed job_id=%s polls=%s", job_id, poll)
                return _parse_transcript(job_id, payload)
            if status == "error":
                provider_message = coerce_nonempty_string(payload.get("error"))
                raise TranscriptionFailedError(
                    f"transcription job {job_id} failed: {provider_message or 'no detail'}",
                    provider_message=provider_message,
                )
            if status not in PENDING_JOB_STATUSES:
                LOGGER.warning(
                    "transcription unexpected status job_id=%s status=%s poll=%s",
                    job_id,
                    status,
                    poll,
                )

            if poll < self._poll_max_attempts:
                await self._sleep(self._poll_interval_seconds)

        raise TranscriptionTimeoutError(
            f"transcription job {job_id} not finished after {self._poll_max_attempts} polls"
        )

    async def _upload(self, audio: AudioHandle) -> str:
        data = await asyncio.to_thread(audio.path.read_bytes)
        payload = await self._call(
            "POST",
            f"{self._base_url}/upload",
            body=data,
            content_type="application/octet-stream",
            action="upload",
        )
        upload_url = coerce_nonempty_string(payload.get("upload_url"))
        if upload_url is None:
            raise TranscriptionFailedError("audio upload response carried no upload_url")
        return upload_url

    async def _call(
        self,
        method: str,
        url: str,
        *,
        body: bytes | None,
        content_type: str | None,
        action: str,
    ) -> dict[str, Any]:
        if self._api_key is None:
            raise TranscriptionFailedError(
                "Transcription API key is missing. Set VIDEO2DOC_ASSEMBLYAI_API_KEY."
            )
        api_key = self._api_key

        async def attempt() -> dict[str, Any]:
            status_code, payload = await asyncio.to_thread(
                _request_json,
                method,
                url,
                api_key=api_key,
                timeout_seconds=self._http_timeout_seconds,
                body=body,
                content_type=content_type,
            )
            _raise_for_status(status_code, payload, action=action)
            return payload

        return await with_retry(
            attempt,
            max_attempts=self._request_max_attempts,
            base_delay_seconds=self._retry_base_delay_seconds,
            should_retry=is_transient_error,
            sleep=self._sleep,
            operation_name=f"transcription.{action}",
        )


async def _notify(callback: ProgressCallback | None, progress: JobProgress) -> None:
    if callback is None:
        return
    result = callback(progress)
    if result is not None:
        await result


def _estimate_progress(status: str, poll: int, max_polls: int) -> int:
    if status == "completed":
        return 100
    if status == "queued":
        return _QUEUED_PROGRESS
    span = _PROCESSING_PROGRESS_CEILING - _PROCESSING_PROGRESS_FLOOR
    return _PROCESSING_PROGRESS_FLOOR + int(span * min(poll, max_polls) / max_polls)


def _raise_for_status(status_code: int, payload: dict[str, Any], *, action: str) -> None:
    if status_code < 400:
        return
    detail = coerce_nonempty_string(payload.get("error")) or f"status {status_code}"
    message = f"transcription {action} failed (status {status_code}): {detail}"
    if status_code == 429:
        raise TranscriptionRateLimitedError(message)
    if status_code >= 500:
        raise TranscriptionUnavailableError(message)
    raise TranscriptionFailedError(message, provider_message=detail)


def _parse_transcript(job_id: str, payload: dict[str, Any]) -> TranscriptResult:
    text = coerce_nonempty_string(payload.get("text"))
    if text is None:
        raise TranscriptionFailedError(f"transcription job {job_id} completed without text")

    words = as_list(payload.get("words"))
    word_count = len(words) if words else len(text.split())

    highlights_result = as_dict(payload.get("auto_highlights_result"))
    return TranscriptResult(
        job_id=job_id,
        text=text,
        confidence=_coerce_confidence(payload.get("confidence")),
        audio_duration_seconds=_coerce_seconds(payload.get("audio_duration")),
        word_count=word_count,
        language_code=coerce_nonempty_string(payload.get("language_code")),
        chapters=_parse_chapters(payload.get("chapters")),
        highlights=_parse_highlights(highlights_result.get("results")),
        entities=_parse_entities(payload.get("entities")),
    )


def _parse_chapters(raw_value: object) -> list[Chapter]:
    chapters: list[Chapter] = []
    for raw_item in as_list(raw_value):
        item = as_dict(raw_item)
        title = coerce_nonempty_string(item.get("headline")) or coerce_nonempty_string(
            item.get("gist")
        )
        start = _milliseconds_to_seconds(item.get("start"))
        end = _milliseconds_to_seconds(item.get("end"))
        if title is None or start is None or end is None:
            continue
        chapters.append(
            Chapter(
                title=title.strip(),
                start=start,
                end=end,
                summary=coerce_nonempty_string(item.get("summary")),
            )
        )
    chapters.sort(key=lambda chapter: chapter.start)
    return chapters


def _parse_highlights(raw_value: object) -> list[Highlight]:
    highlights: list[Highlight] = []
    for raw_item in as_list(raw_value):
        item = as_dict(raw_item)
        text = coerce_nonempty_string(item.get("text"))
        if text is None:
            continue
        timestamps = [as_dict(entry) for entry in as_list(item.get("timestamps"))]
        first = timestamps[0] if timestamps else {}
        count = item.get("count")
        rank = item.get("rank")
        highlights.append(
            Highlight(
                text=text.strip(),
                count=count if isinstance(count, int) and not isinstance(count, bool) else 1,
                rank=float(rank) if isinstance(rank, int | float) else None,
                start=_milliseconds_to_seconds(first.get("start")),
                end=_milliseconds_to_seconds(first.get("end")),
            )
        )
    return highlights


def _parse_entities(raw_value: object) -> list[Entity]:
    entities: list[Entity] = []
    for raw_item in as_list(raw_value):
        item = as_dict(raw_item)
        text = coerce_nonempty_string(item.get("text"))
        entity_type = coerce_nonempty_string(item.get("entity_type"))
        if text is None or entity_type is None:
            continue
        entities.append(
            Entity(
                text=text.strip(),
                entity_type=entity_type,
                start=_milliseconds_to_seconds(item.get("start")),
                end=_milliseconds_to_seconds(item.get("end")),
            )
        )
    return entities


def _request_json(
    method: str,
    url: str,
    *,
    api_key: str,
    timeout_seconds: float,
    body: bytes | None,
    content_type: str | None,
) -> tuple[int, dict[str, Any]]:
    headers = {
        "authorization": api_key,
        "accept": "application/json",
        "user-agent": "video2doc/1.0",
    }
    if content_type is not None:
        headers["content-type"] = content_type
    request = Request(url, data=body, headers=headers, method=method)

    status_code = 0
    raw_body = ""
    try:
        with urlopen(request, timeout=timeout_seconds) as response:
            status_code = int(response.getcode() or 0)
            raw_body = response.read().decode("utf-8", errors="replace")
    except HTTPError as exc:
        status_code = int(exc.code)
        raw_body = exc.read().decode("utf-8", errors="replace")
    except (URLError, TimeoutError, OSError) as exc:
        raise TranscriptionUnavailableError(f"transcription request failed: {exc}") from exc

    return status_code, parse_json_dict(raw_body)


def _milliseconds_to_seconds(raw_value: object) -> float | None:
    if isinstance(raw_value, bool) or not isinstance(raw_value, int | float):
        return None
    return round(float(raw_value) / 1000.0, 3)


def _coerce_seconds(raw_value: object) -> int | None:
    if isinstance(raw_value, bool) or not isinstance(raw_value, int | float):
        return None
    return int(round(float(raw_value)))


def _coerce_confidence(raw_value: object) -> float | None:
    if isinstance(raw_value, bool) or not isinstance(raw_value, int | float):
        return None
    return max(0.0, min(1.0, float(raw_value)))
