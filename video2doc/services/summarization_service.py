from __future__ import annotations

import asyncio
import json
import logging
import math
from dataclasses import dataclass, field
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from video2doc.errors import (
    SummarizationFailedError,
    SummarizationParseError,
    SummarizationRateLimitedError,
)
from video2doc.models.document_contracts import Sentiment, StyleConfig
from video2doc.services.provider_payloads import (
    as_dict,
    as_list,
    coerce_nonempty_string,
    parse_json_dict,
)

LOGGER = logging.getLogger("video2doc.summarization")

_SYSTEM_PROMPT = (
    "You are a professional document generator. You turn video transcriptions into "
    "well-structured documents and always answer with a single JSON object."
)
_SKILL_LEVEL_GUIDANCE: dict[str, str] = {
    "beginner": "Assume no prior knowledge; define terms and explain each step.",
    "intermediate": "Assume working familiarity with the basics; focus on practical detail.",
    "advanced": "Assume expert readers; be concise and emphasise nuance and trade-offs.",
}
_OUTPUT_TYPE_GUIDANCE: dict[str, str] = {
    "tutorial": "Structure it as a step-by-step tutorial the reader can follow along.",
    "guide": "Structure it as a guide organised by topic with actionable advice.",
    "reference": "Structure it as reference material that is easy to scan and look up.",
}


@dataclass(frozen=True)
class GeneratedDocument:
    content: str
    summary: str
    key_points: list[str]
    sentiment: Sentiment | None
    topics: list[str]
    word_count: int
    estimated_reading_minutes: int
    token_usage: dict[str, int] = field(default_factory=lambda: dict[str, int]())


class _GenerationMetadata(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    word_count: int = Field(alias="wordCount", ge=0)
    estimated_reading_time: float = Field(alias="estimatedReadingTime", ge=0)


class _GenerationPayload(BaseModel):
    """The JSON object the model must answer with.

    Everything except ``sentiment`` and ``topics`` is required; a response
    missing any of it is rejected rather than patched up.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    content: str
    summary: str
    key_points: list[str] = Field(alias="keyPoints")
    sentiment: Sentiment | None = None
    topics: list[str] = Field(default_factory=lambda: list[str]())
    metadata: _GenerationMetadata

    @field_validator("content", "summary")
    @classmethod
    def _reject_blank_text(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("must not be blank")
        return stripped

    @field_validator("key_points")
    @classmethod
    def _require_key_points(cls, value: list[str]) -> list[str]:
        cleaned = _clean_strings(value)
        if not cleaned:
            raise ValueError("at least one key point is required")
        return cleaned

    @field_validator("sentiment", mode="before")
    @classmethod
    def _normalize_sentiment(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower() or None
        return value


class SummarizationClient:
    """Turns a transcript into a styled document with one structured request.

    Rate-limit responses raise :class:`SummarizationRateLimitedError`; the
    caller owns the retry policy.
    """

    def __init__(
        self,
        *,
        api_key: str | None,
        base_url: str,
        model: str = "gpt-4-turbo-preview",
        temperature: float = 0.7,
        max_tokens: int = 4000,
        http_timeout_seconds: float = 120.0,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._http_timeout_seconds = http_timeout_seconds

    async def generate(
        self,
        transcript: str,
        style: StyleConfig | None = None,
        *,
        include_analysis: bool = True,
    ) -> GeneratedDocument:
        if not transcript.strip():
            raise SummarizationFailedError("cannot generate a document from an empty transcript")
        if self._api_key is None:
            raise SummarizationFailedError(
                "Text generation API key is missing. Set VIDEO2DOC_OPENAI_API_KEY."
            )

        resolved_style = style or StyleConfig()
        body = {
            "model": self._model,
            "messages": [
                {"role": "system", "content": _SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": build_prompt(
                        transcript,
                        resolved_style,
                        include_analysis=include_analysis,
                    ),
                },
            ],
            "response_format": {"type": "json_object"},
            "temperature": self._temperature,
            "max_tokens": self._max_tokens,
        }

        status_code, payload, retry_after = await asyncio.to_thread(
            _post_json,
            f"{self._base_url}/chat/completions",
            api_key=self._api_key,
            timeout_seconds=self._http_timeout_seconds,
            body=body,
        )
        _raise_for_status(status_code, payload, retry_after_seconds=retry_after)

        document = parse_generation_response(payload, include_analysis=include_analysis)
        LOGGER.info(
            "document generated model=%s word_count=%s key_points=%s",
            self._model,
            document.word_count,
            len(document.key_points),
        )
        return document


def build_prompt(transcript: str, style: StyleConfig, *, include_analysis: bool) -> str:
    analysis_fields = (
        '  "sentiment": "positive" | "negative" | "neutral" | "mixed",\n'
        '  "topics": ["Topic 1", "Topic 2", ...],\n'
        if include_analysis
        else ""
    )
    return (
        f"Process the following transcription and write a {style.format} document "
        f"in a {style.tone} tone for {style.skill_level} readers.\n"
        f"{_OUTPUT_TYPE_GUIDANCE[style.output_type]}\n"
        f"{_SKILL_LEVEL_GUIDANCE[style.skill_level]}\n\n"
        "Requirements:\n"
        "- Include a concise summary of the content.\n"
        "- Extract and list the key points.\n"
        f"- Write the document body as {style.format}.\n\n"
        "Answer with a JSON object with exactly this structure:\n"
        "{\n"
        '  "content": "The main document content",\n'
        '  "summary": "A brief summary of the content",\n'
        '  "keyPoints": ["Key point 1", "Key point 2", ...],\n'
        f"{analysis_fields}"
        '  "metadata": {"wordCount": number, "estimatedReadingTime": number}\n'
        "}\n\n"
        f"Transcription:\n{transcript}"
    )


def parse_generation_response(
    payload: dict[str, Any],
    *,
    include_analysis: bool = True,
) -> GeneratedDocument:
    choices = as_list(payload.get("choices"))
    if not choices:
        raise SummarizationParseError("generation response carried no choices")
    first_choice = as_dict(choices[0])
    if first_choice.get("finish_reason") == "content_filter":
        raise SummarizationFailedError("generation stopped by the provider's content filter")

    message = as_dict(first_choice.get("message"))
    raw_content = message.get("content")
    if not isinstance(raw_content, str) or not raw_content.strip():
        raise SummarizationParseError("generation response carried no message content")

    try:
        parsed = _GenerationPayload.model_validate_json(raw_content)
    except ValidationError as exc:
        raise SummarizationParseError(f"generation response is malformed: {exc}") from exc

    return GeneratedDocument(
        content=parsed.content,
        summary=parsed.summary,
        key_points=parsed.key_points,
        sentiment=parsed.sentiment if include_analysis else None,
        topics=_clean_strings(parsed.topics) if include_analysis else [],
        word_count=parsed.metadata.word_count,
        estimated_reading_minutes=math.ceil(parsed.metadata.estimated_reading_time),
        token_usage=_extract_usage(payload),
    )


def _raise_for_status(
    status_code: int,
    payload: dict[str, Any],
    *,
    retry_after_seconds: int | None,
) -> None:
    if status_code < 400:
        return
    error = as_dict(payload.get("error"))
    detail = coerce_nonempty_string(error.get("message")) or f"status {status_code}"
    error_code = coerce_nonempty_string(error.get("code"))
    if status_code == 429 and error_code != "insufficient_quota":
        raise SummarizationRateLimitedError(
            f"generation rate limited: {detail}",
            retry_after_seconds=retry_after_seconds,
        )
    raise SummarizationFailedError(f"generation failed (status {status_code}): {detail}")


def _post_json(
    url: str,
    *,
    api_key: str,
    timeout_seconds: float,
    body: dict[str, Any],
) -> tuple[int, dict[str, Any], int | None]:
    request = Request(
        url,
        data=json.dumps(body).encode("utf-8"),
        headers={
            "authorization": f"Bearer {api_key}",
            "content-type": "application/json",
            "accept": "application/json",
            "user-agent": "video2doc/1.0",
        },
        method="POST",
    )

    status_code = 0
    raw_body = ""
    response_headers: Any = None
    try:
        with urlopen(request, timeout=timeout_seconds) as response:
            status_code = int(response.getcode() or 0)
            raw_body = response.read().decode("utf-8", errors="replace")
            response_headers = response.headers
    except HTTPError as exc:
        status_code = int(exc.code)
        raw_body = exc.read().decode("utf-8", errors="replace")
        response_headers = exc.headers
    except (URLError, TimeoutError, OSError) as exc:
        raise SummarizationFailedError(f"generation request failed: {exc}") from exc

    return status_code, parse_json_dict(raw_body), _parse_retry_after(response_headers)


def _parse_retry_after(headers: Any) -> int | None:
    if headers is None or not hasattr(headers, "get"):
        return None
    raw_value = headers.get("retry-after")
    if not isinstance(raw_value, str):
        return None
    try:
        return max(0, int(float(raw_value.strip())))
    except ValueError:
        return None


def _extract_usage(payload: dict[str, Any]) -> dict[str, int]:
    usage = as_dict(payload.get("usage"))
    tokens: dict[str, int] = {}
    for key in ("prompt_tokens", "completion_tokens", "total_tokens"):
        value = usage.get(key)
        if isinstance(value, int) and not isinstance(value, bool):
            tokens[key] = value
    return tokens


def _clean_strings(values: list[str]) -> list[str]:
    return [value.strip() for value in values if value.strip()]



def is_rate_limited(exc: BaseException) -> bool:
    return isinstance(exc, SummarizationRateLimitedError)
