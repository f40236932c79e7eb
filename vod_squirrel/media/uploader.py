"""
Uploads a finished video to YouTube with the resumable upload protocol.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncIterator

import aiofiles
import aiohttp

from vod_squirrel import __version__
from vod_squirrel.exceptions import UploadError
from vod_squirrel.models.video import VideoInfo
from vod_squirrel.utils.formatting import truncate_string

log = logging.getLogger(__name__)

UPLOAD_URL = "https://www.googleapis.com/upload/youtube/v3/videos"
TITLE_MAX_LENGTH = 85
PROJECT_URL = "https://github.com/angeloanan/vod-squirrel"


@dataclass(frozen=True)
class VideoDetail:
    title: str
    description: str


def build_video_detail(video: VideoInfo) -> VideoDetail:
    """Builds the upload title and description for an archived VOD."""
    streamed = video.created_at
    title = f"[{streamed.date().isoformat()}] {truncate_string(video.title, TITLE_MAX_LENGTH)}"
    description = (
        f"Original stream title: {video.title}\n"
        f"Streamed {streamed.isoformat()} @ https://twitch.tv/{video.owner.login}\n"
        f"Game: {video.game_name}"
    )
    return VideoDetail(title=title, description=description)


class YouTubeUploader:
    """Runs one resumable upload per call to `upload`."""

    CHUNK_SIZE = 1024 * 1024

    def __init__(
        self,
        oauth_token: str,
        privacy_status: str = "unlisted",
        session: Any | None = None,
    ):
        self._oauth_token = oauth_token
        self.privacy_status = privacy_status
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> Any:
        if self._session is None or getattr(self._session, "closed", False):
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=None, sock_connect=30)
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()

    def _metadata(self, detail: VideoDetail) -> dict:
        return {
            "snippet": {
                "title": detail.title,
                "description": (
                    f"{detail.description}\n\nAutomatically archived using "
                    f"VOD Squirrel {__version__}: {PROJECT_URL}"
                ),
            },
            "status": {
                "privacyStatus": self.privacy_status,
                "selfDeclaredMadeForKids": False,
            },
        }

    async def _read_chunks(self, path: Path) -> AsyncIterator[bytes]:
        async with aiofiles.open(path, "rb") as f:
            while chunk := await f.read(self.CHUNK_SIZE):
                yield chunk

    async def upload(self, path: Path, detail: VideoDetail) -> dict:
        """
        Uploads `path` and returns the created video resource.

        Raises:
            UploadError: If the upload could not be initialized or completed.
        """
        session = await self._get_session()
        file_size = os.path.getsize(path)
        auth = {"Authorization": f"Bearer {self._oauth_token}"}

        try:
            async with session.post(
                UPLOAD_URL,
                params={"uploadType": "resumable", "part": "snippet,status"},
                headers={
                    **auth,
                    "X-Upload-Content-Length": str(file_size),
                    "X-Upload-Content-Type": "video/*",
                },
                json=self._metadata(detail),
            ) as r:
                if not 200 <= r.status < 300:
                    body = await r.text()
                    log.error(f"[red]Unable to initialize YouTube upload: {body}[/red]")
                    raise UploadError(
                        f"Unable to initialize YouTube upload (HTTP {r.status})."
                    )
                upload_url = r.headers.get("Location")
            if not upload_url:
                raise UploadError("YouTube did not return an upload location.")

            log.info(f"Uploading {path.name} ({file_size} bytes) to YouTube...")
            async with session.put(
                upload_url,
                headers={**auth, "Content-Length": str(file_size)},
                data=self._read_chunks(path),
            ) as r:
                if not 200 <= r.status < 300:
                    body = await r.text()
                    raise UploadError(f"YouTube upload failed (HTTP {r.status}): {body}")
                result = await r.json(content_type=None)
        except aiohttp.ClientError as e:
            raise UploadError(f"YouTube upload failed: {e!r}") from e

        log.info(f"Video successfully uploaded (id: {result.get('id', 'unknown')})")
        return result
