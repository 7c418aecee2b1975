from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest

from video2doc.errors import (
    SummarizationFailedError,
    SummarizationParseError,
    SummarizationRateLimitedError,
)
from video2doc.models.document_contracts import StyleConfig
from video2doc.services import summarization_service
from video2doc.services.summarization_service import (
    SummarizationClient,
    build_prompt,
    is_rate_limited,
    parse_generation_response,
)


def _completion(document: dict[str, Any] | str, *, finish_reason: str = "stop") -> dict[str, Any]:
    content = document if isinstance(document, str) else json.dumps(document)
    return {
        "choices": [{"finish_reason": finish_reason, "message": {"content": content}}],
        "usage": {"prompt_tokens": 900, "completion_tokens": 300, "total_tokens": 1200},
    }


GENERATED: dict[str, Any] = {
    "content": "# Leek Soup\n\nChop, simmer, blend.",
    "summary": "How to cook leek soup.",
    "keyPoints": ["Chop leeks", " ", "Simmer"],
    "sentiment": "Positive",
    "topics": ["cooking", "soup"],
    "metadata": {"wordCount": 6, "estimatedReadingTime": 1},
}


def _client() -> SummarizationClient:
    return SummarizationClient(api_key="test-key", base_url="https://llm.test/v1/", model="m-1")


def test_parse_generation_response_reads_structured_document() -> None:
    document = parse_generation_response(_completion(GENERATED))

    assert document.content.startswith("# Leek Soup")
    assert document.summary == "How to cook leek soup."
    assert document.key_points == ["Chop leeks", "Simmer"]
    assert document.sentiment == "positive"
    assert document.topics == ["cooking", "soup"]
    assert document.word_count == 6
    assert document.estimated_reading_minutes == 1
    assert document.token_usage["total_tokens"] == 1200


def test_parse_generation_response_without_analysis_drops_fields() -> None:
    document = parse_generation_response(_completion(GENERATED), include_analysis=False)

    assert document.sentiment is None
    assert document.topics == []


def _generated_with(**overrides: Any) -> dict[str, Any]:
    document = {**GENERATED, **overrides}
    return {key: value for key, value in document.items() if value is not None}


@pytest.mark.parametrize(
    "payload",
    [
        {"choices": []},
        _completion("not json at all"),
        _completion(""),
        _completion({"content": "only content"}),
        _completion(_generated_with(content=None)),
        _completion(_generated_with(content="   ")),
        _completion(_generated_with(summary=None)),
        _completion(_generated_with(summary="")),
        _completion(_generated_with(keyPoints=None)),
        _completion(_generated_with(keyPoints=[])),
        _completion(_generated_with(keyPoints=["  ", ""])),
        _completion(_generated_with(metadata=None)),
        _completion(_generated_with(metadata={"wordCount": 6})),
        _completion(_generated_with(metadata={"estimatedReadingTime": 1})),
        _completion(_generated_with(metadata={"wordCount": -1, "estimatedReadingTime": 1})),
        _completion(_generated_with(sentiment="ecstatic")),
    ],
)
def test_parse_generation_response_rejects_malformed_payloads(payload: dict[str, Any]) -> None:
    with pytest.raises(SummarizationParseError):
        parse_generation_response(payload)


def test_parse_generation_response_allows_missing_analysis_fields() -> None:
    generated = _generated_with(
        sentiment=None,
        topics=None,
        metadata={"wordCount": 450, "estimatedReadingTime": 2.25},
    )

    document = parse_generation_response(_completion(generated))

    assert document.sentiment is None
    assert document.topics == []
    assert document.word_count == 450
    assert document.estimated_reading_minutes == 3


def test_parse_generation_response_content_filter_is_failure() -> None:
    with pytest.raises(SummarizationFailedError) as exc_info:
        parse_generation_response(_completion(GENERATED, finish_reason="content_filter"))

    assert not isinstance(exc_info.value, SummarizationParseError)


def test_build_prompt_reflects_style() -> None:
    style = StyleConfig(format="html", tone="casual", skill_level="beginner", output_type="guide")

    prompt = build_prompt("the transcript", style, include_analysis=False)

    assert "html document" in prompt
    assert "casual tone" in prompt
    assert "beginner readers" in prompt
    assert "guide organised by topic" in prompt
    assert '"sentiment"' not in prompt
    assert prompt.endswith("Transcription:\nthe transcript")


def test_generate_posts_chat_completion(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, Any] = {}

    def _fake_post_json(
        url: str,
        *,
        api_key: str,
        timeout_seconds: float,
        body: dict[str, Any],
    ) -> tuple[int, dict[str, Any], int | None]:
        captured["url"] = url
        captured["api_key"] = api_key
        captured["body"] = body
        return 200, _completion(GENERATED), None

    monkeypatch.setattr(summarization_service, "_post_json", _fake_post_json)

    document = asyncio.run(_client().generate("the transcript", StyleConfig(tone="technical")))

    assert document.summary == "How to cook leek soup."
    assert captured["url"] == "https://llm.test/v1/chat/completions"
    assert captured["api_key"] == "test-key"
    assert captured["body"]["model"] == "m-1"
    assert captured["body"]["response_format"] == {"type": "json_object"}
    assert "technical tone" in captured["body"]["messages"][1]["content"]


def test_generate_maps_rate_limit(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        summarization_service,
        "_post_json",
        lambda url, **_: (429, {"error": {"message": "Rate limit reached"}}, 7),
    )

    with pytest.raises(SummarizationRateLimitedError) as exc_info:
        asyncio.run(_client().generate("the transcript"))

    assert exc_info.value.retry_after_seconds == 7
    assert is_rate_limited(exc_info.value) is True


@pytest.mark.parametrize(
    ("status_code", "payload"),
    [
        (429, {"error": {"message": "quota", "code": "insufficient_quota"}}),
        (500, {"error": {"message": "server error"}}),
        (400, {}),
    ],
)
def test_generate_maps_other_failures(
    monkeypatch: pytest.MonkeyPatch,
    status_code: int,
    payload: dict[str, Any],
) -> None:
    monkeypatch.setattr(
        summarization_service,
        "_post_json",
        lambda url, **_: (status_code, payload, None),
    )

    with pytest.raises(SummarizationFailedError) as exc_info:
        asyncio.run(_client().generate("the transcript"))

    assert is_rate_limited(exc_info.value) is False


def test_generate_rejects_empty_transcript_and_missing_key() -> None:
    with pytest.raises(SummarizationFailedError):
        asyncio.run(_client().generate("   "))

    keyless = SummarizationClient(api_key=None, base_url="https://llm.test/v1")
    with pytest.raises(SummarizationFailedError):
        asyncio.run(keyless.generate("the transcript"))
