from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from video2doc.dependencies import reset_cached_dependencies
from video2doc.main import create_app


@pytest.fixture(autouse=True)
def _provider_env_defaults(monkeypatch: pytest.MonkeyPatch) -> None:  # pyright: ignore[reportUnusedFunction]
    monkeypatch.setenv("VIDEO2DOC_YOUTUBE_API_KEY", "test-youtube-key")
    monkeypatch.setenv("VIDEO2DOC_ASSEMBLYAI_API_KEY", "test-assemblyai-key")
    monkeypatch.setenv("VIDEO2DOC_OPENAI_API_KEY", "test-openai-key")
    monkeypatch.setenv("VIDEO2DOC_TELEMETRY_SINK", "none")


@pytest.fixture
def data_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    runtime_dir = tmp_path / "runtime-data"
    runtime_dir.mkdir(parents=True, exist_ok=True)
    monkeypatch.setenv("VIDEO2DOC_DATA_DIR", str(runtime_dir))
    monkeypatch.setenv("VIDEO2DOC_TRANSCRIPTION_POLL_INTERVAL_SECONDS", "0")
    monkeypatch.setenv("VIDEO2DOC_TRANSCRIPTION_RETRY_BASE_DELAY_SECONDS", "0")
    monkeypatch.setenv("VIDEO2DOC_SUMMARIZATION_RETRY_BASE_DELAY_SECONDS", "0")
    return runtime_dir


@pytest.fixture
def client(data_dir: Path) -> Iterator[TestClient]:
    reset_cached_dependencies()

    app = create_app()
    with TestClient(app) as test_client:
        yield test_client

    reset_cached_dependencies()
