from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient

from video2doc.repositories.account_repository import AccountRepository
from video2doc.repositories.common import month_key
from video2doc.repositories.database import Database
from video2doc.repositories.usage_repository import UsageRepository
from video2doc.services import media_service, summarization_service, transcription_service

VIDEO_URL = "https://youtu.be/dQw4w9WgXcQ"
ACCOUNT_HEADERS = {"X-Account-ID": "acct_1"}


@pytest.fixture(autouse=True)
def _fake_providers(monkeypatch: pytest.MonkeyPatch) -> None:  # pyright: ignore[reportUnusedFunction]
    def _fetch_json(**_: Any) -> tuple[int, dict[str, Any]]:
        return 200, {
            "items": [
                {
                    "snippet": {"title": "Leek Soup", "channelTitle": "Test Cooking"},
                    "contentDetails": {"duration": "PT5M"},
                }
            ]
        }

    def _download(url: str, *, target_dir: Path, audio_format: str) -> Path:
        audio_path = target_dir / "dQw4w9WgXcQ.m4a"
        audio_path.write_bytes(b"audio")
        return audio_path

    def _request_json(method: str, url: str, **_: Any) -> tuple[int, dict[str, Any]]:
        if url.endswith("/upload"):
            return 200, {"upload_url": "https://cdn.test/upload/1"}
        if method == "POST":
            return 200, {"id": "tx_1", "status": "queued"}
        return 200, {
            "id": "tx_1",
            "status": "completed",
            "text": "Chop the leeks and simmer them in stock.",
            "confidence": 0.9,
            "audio_duration": 300,
        }

    def _post_json(url: str, **_: Any) -> tuple[int, dict[str, Any], int | None]:
        document = {
            "content": "# Leek Soup\n\nChop and simmer.",
            "summary": "Soup in two steps.",
            "keyPoints": ["Chop", "Simmer"],
            "metadata": {"wordCount": 5, "estimatedReadingTime": 1},
        }
        return 200, {"choices": [{"message": {"content": json.dumps(document)}}]}, None

    monkeypatch.setattr(media_service, "_fetch_json", _fetch_json)
    monkeypatch.setattr(media_service, "_download_with_yt_dlp", _download)
    monkeypatch.setattr(transcription_service, "_request_json", _request_json)
    monkeypatch.setattr(summarization_service, "_post_json", _post_json)


def _create_document(client: TestClient, video_url: str = VIDEO_URL) -> dict[str, Any]:
    response = client.post(
        "/documents",
        json={"video_url": video_url, "style": {"tone": "casual"}},
        headers=ACCOUNT_HEADERS,
    )
    assert response.status_code == 201
    return response.json()


def test_health_endpoint_echoes_request_id(client: TestClient) -> None:
    response = client.get("/health", headers={"X-Request-ID": "req-42"})

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    assert response.headers["X-Request-ID"] == "req-42"


def test_account_header_is_required(client: TestClient) -> None:
    response = client.post("/documents", json={"video_url": VIDEO_URL})

    assert response.status_code == 401


def test_create_document_starts_pending(client: TestClient) -> None:
    body = _create_document(client)

    assert body["status"] == "pending"
    assert body["user_id"] == "acct_1"
    assert body["source_reference"] == VIDEO_URL
    assert body["content"] is None
    assert body["metadata"]["kind"] == "video"
    assert body["metadata"]["style"]["tone"] == "casual"


def test_create_document_rejects_unknown_style(client: TestClient) -> None:
    response = client.post(
        "/documents",
        json={"video_url": VIDEO_URL, "style": {"tone": "sarcastic"}},
        headers=ACCOUNT_HEADERS,
    )

    assert response.status_code == 422


def test_process_document_runs_pipeline_in_background(client: TestClient) -> None:
    created = _create_document(client)
    document_id = created["id"]

    accepted = client.post(
        f"/documents/{document_id}/process",
        json={"video_url": VIDEO_URL},
        headers=ACCOUNT_HEADERS,
    )
    assert accepted.status_code == 202
    assert accepted.json()["document_id"] == document_id

    document = client.get(f"/documents/{document_id}", headers=ACCOUNT_HEADERS).json()
    assert document["status"] == "completed"
    assert document["content"].startswith("# Leek Soup")
    assert document["title"] == "Leek Soup"
    assert document["error_message"] is None
    assert document["metadata"]["transcript"] == "Chop the leeks and simmer them in stock."
    assert document["metadata"]["duration_seconds"] == 300

    job = client.get(f"/documents/{document_id}/job", headers=ACCOUNT_HEADERS).json()
    assert job["provider_job_id"] == "tx_1"
    assert job["status"] == "completed"
    assert job["progress"] == 100

    usage = client.get("/usage", headers=ACCOUNT_HEADERS).json()
    assert usage["tier"] == "free"
    assert usage["documents_processed"] == 1
    assert usage["total_video_duration_seconds"] == 300
    assert usage["remaining_documents"] == 4

    listed = client.get("/documents", headers=ACCOUNT_HEADERS).json()
    assert [item["id"] for item in listed] == [document_id]

    repeat = client.post(
        f"/documents/{document_id}/process",
        json={"video_url": VIDEO_URL},
        headers=ACCOUNT_HEADERS,
    )
    assert repeat.status_code == 409


def test_process_invalid_reference_returns_422(client: TestClient) -> None:
    created = _create_document(client, "https://example.com/not-a-video")

    response = client.post(
        f"/documents/{created['id']}/process",
        json={"video_url": "https://example.com/not-a-video"},
        headers=ACCOUNT_HEADERS,
    )

    assert response.status_code == 422
    assert response.json()["detail"]["code"] == "invalid_video_reference"
    document = client.get(f"/documents/{created['id']}", headers=ACCOUNT_HEADERS).json()
    assert document["status"] == "error"


def test_process_live_stream_without_duration_returns_422(
    client: TestClient,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    live_item = {"snippet": {"title": "Live now"}, "contentDetails": {"duration": "P0D"}}
    monkeypatch.setattr(media_service, "_fetch_json", lambda **_: (200, {"items": [live_item]}))
    created = _create_document(client)

    response = client.post(
        f"/documents/{created['id']}/process",
        json={"video_url": VIDEO_URL},
        headers=ACCOUNT_HEADERS,
    )

    assert response.status_code == 422
    assert response.json()["detail"]["code"] == "video_duration_unknown"
    document = client.get(f"/documents/{created['id']}", headers=ACCOUNT_HEADERS).json()
    assert document["status"] == "error"


def test_process_over_quota_returns_402_and_keeps_pending(
    client: TestClient,
    data_dir: Path,
) -> None:
    db = Database(data_dir / "state.db")
    usage = UsageRepository(db)
    for _ in range(5):
        usage.increment(user_id="acct_1", month=month_key(), duration_seconds=10)
    created = _create_document(client)

    response = client.post(
        f"/documents/{created['id']}/process",
        json={"video_url": VIDEO_URL},
        headers=ACCOUNT_HEADERS,
    )

    assert response.status_code == 402
    detail = response.json()["detail"]
    assert detail["code"] == "quota_exceeded"
    assert "Document limit reached" in detail["message"]
    document = client.get(f"/documents/{created['id']}", headers=ACCOUNT_HEADERS).json()
    assert document["status"] == "pending"


def test_documents_are_scoped_to_their_account(client: TestClient) -> None:
    created = _create_document(client)
    other = {"X-Account-ID": "acct_2"}

    assert client.get(f"/documents/{created['id']}", headers=other).status_code == 404
    assert client.get(f"/documents/{created['id']}/job", headers=other).status_code == 404
    response = client.post(
        f"/documents/{created['id']}/process",
        json={"video_url": VIDEO_URL},
        headers=other,
    )
    assert response.status_code == 404
    assert client.get("/documents", headers=other).json() == []


def test_job_endpoint_returns_404_before_processing(client: TestClient) -> None:
    created = _create_document(client)

    response = client.get(f"/documents/{created['id']}/job", headers=ACCOUNT_HEADERS)

    assert response.status_code == 404


def test_usage_reports_unlimited_tier(client: TestClient, data_dir: Path) -> None:
    AccountRepository(Database(data_dir / "state.db")).set_tier("acct_1", "enterprise")

    usage = client.get("/usage", headers=ACCOUNT_HEADERS).json()

    assert usage["tier"] == "enterprise"
    assert usage["documents_per_month"] is None
    assert usage["remaining_documents"] is None
    assert usage["max_video_duration_seconds"] is None
    assert usage["features"]["api_access"] is True
