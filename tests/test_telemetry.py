from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from video2doc.telemetry import TelemetryClient, build_telemetry_client


class _CaptureSink:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        self.events.append((event_name, dict(attributes)))


def test_telemetry_client_replaces_document_text_with_its_size() -> None:
    sink = _CaptureSink()
    client = TelemetryClient(enabled=True, sink=sink)

    client.emit(
        "document.pipeline.failed",
        document_id="doc_123",
        transcript="very long transcript text",
        content="# generated",
        key_points=["a", "b", "c"],
        provider_message="audio unreadable at 00:31",
        api_key="secret",
        progress=40,
    )

    assert len(sink.events) == 1
    event_name, attributes = sink.events[0]
    assert event_name == "document.pipeline.failed"
    assert attributes["document_id"] == "doc_123"
    assert attributes["progress"] == 40
    assert attributes["transcript"] == "[redacted 25 chars]"
    assert attributes["content"] == "[redacted 11 chars]"
    assert attributes["key_points"] == "[redacted 3 items]"
    assert attributes["provider_message"] == "[redacted 25 chars]"
    assert attributes["api_key"] == "[redacted]"


def test_telemetry_client_drops_attributes_outside_the_vocabulary() -> None:
    sink = _CaptureSink()
    client = TelemetryClient(enabled=True, sink=sink)

    client.emit(
        "document.pipeline.stage",
        stage="trans  cribing\n",
        document_id="d" * 300,
        progress="forty",
        video_url="https://youtu.be/dQw4w9WgXcQ",
        extra={"k": 1},
    )

    _, attributes = sink.events[0]
    assert attributes["stage"] == "trans cribing"
    assert attributes["document_id"].endswith("...")
    assert len(attributes["document_id"]) == 123
    assert "progress" not in attributes
    assert "video_url" not in attributes
    assert "extra" not in attributes
    assert attributes["dropped_attributes"] == 3


def test_telemetry_client_skips_unknown_events() -> None:
    sink = _CaptureSink()
    client = TelemetryClient(enabled=True, sink=sink)

    client.emit("document.pipeline.exploded", document_id="doc_1")

    assert sink.events == []


def test_disabled_telemetry_client_does_not_emit() -> None:
    sink = _CaptureSink()
    client = TelemetryClient(enabled=False, sink=sink)

    client.emit("document.pipeline.started", document_id="doc_1")
    assert sink.events == []


def test_build_telemetry_client_sinks() -> None:
    assert build_telemetry_client(enabled=True, sink="none").enabled is False
    assert build_telemetry_client(enabled=False, sink="log").enabled is False
    assert build_telemetry_client(enabled=True, sink="log").enabled is True
