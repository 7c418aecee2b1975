from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from video2doc.errors import (
    InvalidVideoReferenceError,
    MediaAcquisitionFailedError,
    MediaQuotaOrAuthExhaustedError,
    VideoDurationUnknownError,
)
from video2doc.services import media_service
from video2doc.services.media_service import (
    AudioHandle,
    MediaAcquisitionService,
    parse_video_reference,
)


def _service(tmp_path: Path, *, api_key: str | None = "test-key") -> MediaAcquisitionService:
    return MediaAcquisitionService(
        api_key=api_key,
        api_base_url="https://youtube.test/v3/",
        http_timeout_seconds=5.0,
        audio_dir=tmp_path / "audio",
    )


@pytest.mark.parametrize(
    "url",
    [
        "https://www.youtube.com/watch?v=dQw4w9WgXcQ",
        "https://youtube.com/watch?v=dQw4w9WgXcQ&t=42s",
        "https://m.youtube.com/watch?v=dQw4w9WgXcQ",
        "https://music.youtube.com/watch?v=dQw4w9WgXcQ",
        "https://youtu.be/dQw4w9WgXcQ",
        "https://youtu.be/dQw4w9WgXcQ?si=abc",
        "https://www.youtube.com/embed/dQw4w9WgXcQ",
        "https://www.youtube.com/shorts/dQw4w9WgXcQ",
        "https://www.youtube.com/live/dQw4w9WgXcQ",
        "www.youtube.com/watch?v=dQw4w9WgXcQ",
        "  https://youtu.be/dQw4w9WgXcQ  ",
    ],
)
def test_parse_video_reference_accepts_known_link_shapes(url: str) -> None:
    assert parse_video_reference(url) == "dQw4w9WgXcQ"


@pytest.mark.parametrize(
    "url",
    [
        "https://example.com/not-a-video",
        "https://www.youtube.com/watch?v=short",
        "https://www.youtube.com/channel/UC1234567890",
        "https://youtu.be/",
        "https://vimeo.com/123456",
        "",
    ],
)
def test_parse_video_reference_rejects_other_links(url: str) -> None:
    with pytest.raises(InvalidVideoReferenceError):
        parse_video_reference(url)


def test_iso8601_duration_parsing() -> None:
    parse = media_service._parse_iso8601_duration_seconds  # pyright: ignore[reportPrivateUsage]

    assert parse("PT8M20S") == 500
    assert parse("PT1H") == 3600
    assert parse("P1DT2S") == 86402
    assert parse("8 minutes") is None
    assert parse(None) is None


def test_fetch_video_info_reads_snippet_and_duration(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    captured: dict[str, Any] = {}

    def _fake_fetch_json(
        *,
        url: str,
        timeout_seconds: float,
        params: dict[str, str] | None = None,
    ) -> tuple[int, dict[str, Any]]:
        captured["url"] = url
        captured["params"] = params
        return 200, {
            "items": [
                {
                    "snippet": {"title": " Soup Basics ", "channelTitle": "Test Cooking"},
                    "contentDetails": {"duration": "PT8M20S"},
                }
            ]
        }

    monkeypatch.setattr(media_service, "_fetch_json", _fake_fetch_json)

    info = _service(tmp_path).fetch_video_info("dQw4w9WgXcQ")

    assert info.title == "Soup Basics"
    assert info.duration_seconds == 500
    assert info.channel_title == "Test Cooking"
    assert captured["url"] == "https://youtube.test/v3/videos"
    assert captured["params"]["id"] == "dQw4w9WgXcQ"
    assert captured["params"]["part"] == "snippet,contentDetails"


def test_fetch_video_info_maps_forbidden_to_quota_or_auth(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    calls = 0

    def _fake_fetch_json(**_: Any) -> tuple[int, dict[str, Any]]:
        nonlocal calls
        calls += 1
        return 403, {"error": {"message": "quotaExceeded"}}

    monkeypatch.setattr(media_service, "_fetch_json", _fake_fetch_json)

    with pytest.raises(MediaQuotaOrAuthExhaustedError):
        _service(tmp_path).fetch_video_info("dQw4w9WgXcQ")
    assert calls == 1


def test_fetch_video_info_unknown_video(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(media_service, "_fetch_json", lambda **_: (200, {"items": []}))

    with pytest.raises(MediaAcquisitionFailedError):
        _service(tmp_path).fetch_video_info("dQw4w9WgXcQ")


@pytest.mark.parametrize("content_details", [{}, {"duration": "P0D"}, {"duration": "soon"}])
def test_fetch_video_info_refuses_unknown_duration(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    content_details: dict[str, Any],
) -> None:
    item = {"snippet": {"title": "Live now"}, "contentDetails": content_details}
    monkeypatch.setattr(media_service, "_fetch_json", lambda **_: (200, {"items": [item]}))

    with pytest.raises(VideoDurationUnknownError):
        _service(tmp_path).fetch_video_info("dQw4w9WgXcQ")


def test_fetch_video_info_requires_api_key(tmp_path: Path) -> None:
    with pytest.raises(MediaAcquisitionFailedError):
        _service(tmp_path, api_key=None).fetch_video_info("dQw4w9WgXcQ")


def test_download_audio_returns_releasable_handle(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def _fake_download(url: str, *, target_dir: Path, audio_format: str) -> Path:
        assert url == "https://www.youtube.com/watch?v=dQw4w9WgXcQ"
        audio_path = target_dir / "dQw4w9WgXcQ.m4a"
        audio_path.write_bytes(b"audio")
        return audio_path

    monkeypatch.setattr(media_service, "_download_with_yt_dlp", _fake_download)

    handle = _service(tmp_path).download_audio("dQw4w9WgXcQ")
    assert handle.path.exists()
    scratch_dir = handle.path.parent

    handle.release()
    handle.release()

    assert handle.released is True
    assert not handle.path.exists()
    assert not scratch_dir.exists()


def test_download_audio_failure_removes_scratch_directory(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def _failing_download(url: str, *, target_dir: Path, audio_format: str) -> Path:
        (target_dir / "partial.part").write_bytes(b"half")
        raise MediaAcquisitionFailedError(f"audio download failed for {url}")

    monkeypatch.setattr(media_service, "_download_with_yt_dlp", _failing_download)

    with pytest.raises(MediaAcquisitionFailedError):
        _service(tmp_path).download_audio("dQw4w9WgXcQ")

    assert list((tmp_path / "audio").iterdir()) == []


def test_resolve_combines_info_and_audio(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        media_service,
        "_fetch_json",
        lambda **_: (
            200,
            {"items": [{"snippet": {"title": "Clip"}, "contentDetails": {"duration": "PT30S"}}]},
        ),
    )

    def _fake_download(url: str, *, target_dir: Path, audio_format: str) -> Path:
        audio_path = target_dir / "clip.webm"
        audio_path.write_bytes(b"audio")
        return audio_path

    monkeypatch.setattr(media_service, "_download_with_yt_dlp", _fake_download)

    resolved = _service(tmp_path).resolve("https://youtu.be/dQw4w9WgXcQ")
    try:
        assert resolved.video_id == "dQw4w9WgXcQ"
        assert resolved.title == "Clip"
        assert resolved.duration_seconds == 30
        assert resolved.channel_title is None
        assert resolved.audio.path.exists()
    finally:
        resolved.audio.release()


def test_audio_handle_release_tolerates_missing_file(tmp_path: Path) -> None:
    handle = AudioHandle(tmp_path / "never-written.m4a")

    handle.release()

    assert handle.released is True
