from __future__ import annotations

import logging
import re
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.parse import parse_qs, urlencode, urlparse
from urllib.request import Request, urlopen

import yt_dlp
from yt_dlp.utils import DownloadError

from video2doc.errors import (
    InvalidVideoReferenceError,
    MediaAcquisitionFailedError,
    MediaQuotaOrAuthExhaustedError,
    VideoDurationUnknownError,
)
from video2doc.services.provider_payloads import (
    as_dict,
    as_list,
    coerce_nonempty_string,
    parse_json_dict,
)

LOGGER = logging.getLogger("video2doc.media")

VIDEO_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{11}$")
ISO8601_DURATION_PATTERN = re.compile(
    r"^P(?:(?P<days>\d+)D)?(?:T(?:(?P<hours>\d+)H)?(?:(?P<minutes>\d+)M)?(?:(?P<seconds>\d+)S)?)?$"
)
_WATCH_HOSTS: frozenset[str] = frozenset(
    {
        "youtube.com",
        "www.youtube.com",
        "m.youtube.com",
        "music.youtube.com",
        "youtube-nocookie.com",
        "www.youtube-nocookie.com",
    }
)
_SHORT_LINK_HOSTS: frozenset[str] = frozenset({"youtu.be", "www.youtu.be"})
_PATH_ID_PREFIXES: frozenset[str] = frozenset({"embed", "shorts", "live", "v"})


@dataclass(frozen=True)
class VideoInfo:
    video_id: str
    title: str
    duration_seconds: int
    channel_title: str | None


class AudioHandle:
    """A downloaded audio file owned by one pipeline run.

    ``release`` deletes the file and its scratch directory and may be called
    any number of times.
    """

    def __init__(self, path: Path, *, scratch_dir: Path | None = None) -> None:
        self._path = path
        self._scratch_dir = scratch_dir
        self._released = False

    @property
    def path(self) -> Path:
        return self._path

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        self._path.unlink(missing_ok=True)
        if self._scratch_dir is not None and self._scratch_dir.exists():
            shutil.rmtree(self._scratch_dir, ignore_errors=True)
        LOGGER.debug("audio released path=%s", self._path)


@dataclass(frozen=True)
class ResolvedMedia:
    info: VideoInfo
    audio: AudioHandle

    @property
    def video_id(self) -> str:
        return self.info.video_id

    @property
    def title(self) -> str:
        return self.info.title

    @property
    def duration_seconds(self) -> int:
        return self.info.duration_seconds

    @property
    def channel_title(self) -> str | None:
        return self.info.channel_title


class MediaAcquisitionService:
    def __init__(
        self,
        *,
        api_key: str | None,
        api_base_url: str,
        http_timeout_seconds: float,
        audio_dir: Path,
        audio_format: str = "bestaudio/best",
    ) -> None:
        self._api_key = api_key
        self._api_base_url = api_base_url.rstrip("/")
        self._http_timeout_seconds = http_timeout_seconds
        self._audio_dir = audio_dir
        self._audio_format = audio_format

    def parse_video_reference(self, video_url: str) -> str:
        return parse_video_reference(video_url)

    def fetch_video_info(self, video_id: str) -> VideoInfo:
        if self._api_key is None:
            raise MediaAcquisitionFailedError(
                "Video metadata API key is missing. Set VIDEO2DOC_YOUTUBE_API_KEY."
            )

        status_code, payload = _fetch_json(
            url=f"{self._api_base_url}/videos",
            timeout_seconds=self._http_timeout_seconds,
            params={"part": "snippet,contentDetails", "id": video_id, "key": self._api_key},
        )
        if status_code == 403:
            raise MediaQuotaOrAuthExhaustedError(
                f"video metadata request refused (status 403): {_extract_api_error(payload)}"
            )
        if status_code >= 400:
            raise MediaAcquisitionFailedError(
                f"video metadata request failed (status {status_code}): "
                f"{_extract_api_error(payload)}"
            )

        items = as_list(payload.get("items"))
        if not items:
            raise MediaAcquisitionFailedError(f"video not found: {video_id}")

        item = as_dict(items[0])
        snippet = as_dict(item.get("snippet"))
        content_details = as_dict(item.get("contentDetails"))

        title = coerce_nonempty_string(snippet.get("title")) or video_id
        duration_seconds = _parse_iso8601_duration_seconds(content_details.get("duration"))
        if not duration_seconds:
            # Live streams and premieres report no duration or P0D.
            raise VideoDurationUnknownError(
                f"video duration missing or unparseable for {video_id}: "
                f"{content_details.get('duration')!r}"
            )

        info = VideoInfo(
            video_id=video_id,
            title=title.strip(),
            duration_seconds=duration_seconds,
            channel_title=coerce_nonempty_string(snippet.get("channelTitle")),
        )
        LOGGER.info(
            "video info fetched video_id=%s duration_seconds=%s",
            info.video_id,
            info.duration_seconds,
        )
        return info

    def download_audio(self, video_id: str) -> AudioHandle:
        self._audio_dir.mkdir(parents=True, exist_ok=True)
        scratch_dir = Path(tempfile.mkdtemp(prefix=f"{video_id}-", dir=self._audio_dir))
        try:
            audio_path = _download_with_yt_dlp(
                canonical_watch_url(video_id),
                target_dir=scratch_dir,
                audio_format=self._audio_format,
            )
        except Exception:
            shutil.rmtree(scratch_dir, ignore_errors=True)
            raise
        LOGGER.info("audio downloaded video_id=%s path=%s", video_id, audio_path)
        return AudioHandle(audio_path, scratch_dir=scratch_dir)

    def resolve(self, video_url: str) -> ResolvedMedia:
        video_id = self.parse_video_reference(video_url)
        info = self.fetch_video_info(video_id)
        audio = self.download_audio(video_id)
        return ResolvedMedia(info=info, audio=audio)


def parse_video_reference(video_url: str) -> str:
    """Extract the canonical video id from watch, short, embed, shorts or live links."""
    raw = video_url.strip()
    if not raw:
        raise InvalidVideoReferenceError("empty video reference")
    if not re.match(r"^https?://", raw, flags=re.IGNORECASE):
        raw = f"https://{raw}"

    parsed = urlparse(raw)
    host = (parsed.hostname or "").lower()
    path_parts = [part for part in parsed.path.split("/") if part]

    candidate: str | None = None
    if host in _SHORT_LINK_HOSTS and path_parts:
        candidate = path_parts[0]
    elif host in _WATCH_HOSTS:
        if path_parts[:1] == ["watch"]:
            values = parse_qs(parsed.query).get("v", [])
            candidate = values[0] if values else None
        elif len(path_parts) >= 2 and path_parts[0] in _PATH_ID_PREFIXES:
            candidate = path_parts[1]

    if candidate is None or VIDEO_ID_PATTERN.match(candidate) is None:
        raise InvalidVideoReferenceError(f"unsupported video reference: {video_url}")
    return candidate


def canonical_watch_url(video_id: str) -> str:
    return f"https://www.youtube.com/watch?v={video_id}"


def _download_with_yt_dlp(url: str, *, target_dir: Path, audio_format: str) -> Path:
    ydl_opts: dict[str, Any] = {
        "format": audio_format,
        "outtmpl": str(target_dir / "%(id)s.%(ext)s"),
        "noplaylist": True,
        "quiet": True,
        "no_warnings": True,
        "noprogress": True,
    }
    try:
        with yt_dlp.YoutubeDL(ydl_opts) as ydl:
            info = ydl.extract_info(url, download=True)
            if info is None:
                raise MediaAcquisitionFailedError(f"yt-dlp returned no info for {url}")
            info_dict = as_dict(info)
            downloads = as_list(info_dict.get("requested_downloads"))
            first_download = as_dict(downloads[0]) if downloads else {}
            raw_path = first_download.get("filepath") or first_download.get("_filename")
            if not isinstance(raw_path, str) or not raw_path:
                raw_path = ydl.prepare_filename(info)
    except DownloadError as exc:
        raise MediaAcquisitionFailedError(f"audio download failed for {url}: {exc}") from exc
    except OSError as exc:
        raise MediaAcquisitionFailedError(f"audio could not be written for {url}: {exc}") from exc

    audio_path = Path(raw_path)
    if not audio_path.exists():
        raise MediaAcquisitionFailedError(f"downloaded audio missing on disk: {audio_path}")
    return audio_path


def _fetch_json(
    *,
    url: str,
    timeout_seconds: float,
    params: dict[str, str] | None = None,
) -> tuple[int, dict[str, Any]]:
    query = urlencode(params or {})
    request_url = f"{url}?{query}" if query else url
    request = Request(
        request_url,
        headers={"accept": "application/json", "user-agent": "video2doc/1.0"},
        method="GET",
    )

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
        raise MediaAcquisitionFailedError(f"video metadata request failed: {exc}") from exc

    return status_code, parse_json_dict(raw_body)


def _extract_api_error(payload: dict[str, Any]) -> str:
    error = as_dict(payload.get("error"))
    message = coerce_nonempty_string(error.get("message"))
    if message is not None:
        return message
    return "no error message"


def _parse_iso8601_duration_seconds(raw_value: object) -> int | None:
    if not isinstance(raw_value, str):
        return None
    matched = ISO8601_DURATION_PATTERN.match(raw_value.strip())
    if matched is None:
        return None

    days = int(matched.group("days") or 0)
    hours = int(matched.group("hours") or 0)
    minutes = int(matched.group("minutes") or 0)
    seconds = int(matched.group("seconds") or 0)
    return days * 86_400 + hours * 3_600 + minutes * 60 + seconds
