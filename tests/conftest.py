"""
In-process stand-ins for the network collaborators used across the tests.
"""

import asyncio
import json
from collections import namedtuple
from datetime import datetime, timezone
from pathlib import Path

import aiohttp
import pytest

from vod_squirrel.exceptions import SessionConnectionError
from vod_squirrel.models.session import RegistrationReport, SubscriptionResult
from vod_squirrel.models.video import VideoInfo

WSMessage = namedtuple("WSMessage", ["type", "data", "extra"])

HANG = object()


# HTTP


class FakeContent:
    def __init__(self, chunks, chunk_delay):
        self._chunks = chunks
        self._chunk_delay = chunk_delay

    async def iter_chunked(self, _size):
        for chunk in self._chunks:
            if self._chunk_delay:
                await asyncio.sleep(self._chunk_delay)
            yield chunk


class FakeResponse:
    def __init__(
        self,
        status=200,
        body=b"",
        chunks=None,
        chunk_delay=0.0,
        headers=None,
        json_body=None,
        on_exit=None,
    ):
        self.status = status
        self._body = body
        self.headers = headers or {}
        self._json_body = json_body
        self.content = FakeContent(chunks if chunks is not None else [body], chunk_delay)
        self._on_exit = on_exit

    def raise_for_status(self):
        if self.status >= 400:
            raise aiohttp.ClientConnectionError(f"HTTP {self.status}")

    async def text(self):
        if isinstance(self._body, bytes):
            return self._body.decode()
        return self._body

    async def json(self, content_type="application/json"):
        if self._json_body is not None:
            return self._json_body
        return json.loads(await self.text())

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        if self._on_exit:
            self._on_exit()
        return False


class FakeSegmentSession:
    """
    Serves segment bodies by URL with configurable latency and failures.

    `failures[url]` is the number of initial requests that fail; -1 fails
    every request.
    """

    def __init__(self, bodies, delays=None, failures=None, chunks=1, chunk_delay=0.0):
        self.bodies = bodies
        self.delays = delays or {}
        self.failures = dict(failures or {})
        self.chunks = chunks
        self.chunk_delay = chunk_delay
        self.requests: list[str] = []
        self.completed: list[str] = []
        self.active = 0
        self.peak_active = 0
        self.closed = False

    def get(self, url, allow_redirects=True):
        return _SegmentRequest(self, url)


class _SegmentRequest:
    def __init__(self, session, url):
        self.session = session
        self.url = url

    async def __aenter__(self):
        s = self.session
        s.requests.append(self.url)
        s.active += 1
        s.peak_active = max(s.peak_active, s.active)
        try:
            await asyncio.sleep(s.delays.get(self.url, 0))
            remaining = s.failures.get(self.url, 0)
            if remaining:
                if remaining > 0:
                    s.failures[self.url] = remaining - 1
                raise aiohttp.ClientConnectionError(f"Connection reset for {self.url}")
        except BaseException:
            s.active -= 1
            raise
        body = s.bodies[self.url]
        size = max(1, len(body) // s.chunks)
        parts = [body[i : i + size] for i in range(0, len(body), size)]
        return FakeResponse(body=body, chunks=parts, chunk_delay=s.chunk_delay)

    async def __aexit__(self, exc_type, *exc):
        s = self.session
        s.active -= 1
        if exc_type is None:
            s.completed.append(self.url)
        return False


class _FailingRequest:
    def __init__(self, error):
        self.error = error

    async def __aenter__(self):
        raise self.error

    async def __aexit__(self, *exc):
        return False


class FailingSession:
    """Every request fails before a response arrives."""

    def __init__(self, error):
        self.error = error
        self.closed = False

    def post(self, url, json=None, headers=None):
        return _FailingRequest(self.error)

    def get(self, url, params=None):
        return _FailingRequest(self.error)


class FakeHelixSession:
    """Answers subscription POSTs with a status chosen per broadcaster id."""

    def __init__(self, statuses=None, errors=None):
        self.statuses = statuses or {}
        self.errors = errors or {}
        self.requests: list[dict] = []
        self.closed = False

    def post(self, url, json=None, headers=None):
        self.requests.append({"url": url, "json": json, "headers": headers})
        subject = int(json["condition"]["broadcaster_user_id"])
        if subject in self.errors:
            raise self.errors[subject]
        status = self.statuses.get(subject, 202)
        body = "{}" if status < 400 else '{"error":"Internal Server Error"}'
        return FakeResponse(status=status, body=body)

    async def close(self):
        self.closed = True


# Websocket


def frame(message_type=None, **payload) -> str:
    metadata = {"message_id": "m", "message_timestamp": "2024-01-01T00:00:00Z"}
    if message_type:
        metadata["message_type"] = message_type
    return json.dumps({"metadata": metadata, "payload": payload})


def welcome(session_id, keepalive=None) -> str:
    session = {"id": session_id, "status": "connected"}
    if keepalive:
        session["keepalive_timeout_seconds"] = keepalive
    return frame("session_welcome", session=session)


def keepalive() -> str:
    return frame("session_keepalive")


def notification(subject_id) -> str:
    return frame(
        "notification",
        subscription={"type": "stream.offline", "status": "enabled"},
        event={"broadcaster_user_id": str(subject_id)},
    )


def reconnect(url) -> str:
    return frame(
        "session_reconnect",
        session={"id": "ignored", "status": "reconnecting", "reconnect_url": url},
    )


def close_message(code, reason=""):
    return WSMessage(aiohttp.WSMsgType.CLOSE, code, reason)


class FakeWebSocket:
    """Plays a script of frames; HANG blocks until the socket is closed."""

    def __init__(self, script, frame_delay=0.01):
        self.script = list(script)
        self.frame_delay = frame_delay
        self.closed = False
        self.close_code = None
        self.received = 0
        self._closed_event = asyncio.Event()

    async def receive(self):
        if self.frame_delay:
            await asyncio.sleep(self.frame_delay)
        if not self.script or self.script[0] is HANG:
            await self._closed_event.wait()
            return WSMessage(aiohttp.WSMsgType.CLOSED, None, None)
        item = self.script.pop(0)
        self.received += 1
        if isinstance(item, str):
            return WSMessage(aiohttp.WSMsgType.TEXT, item, None)
        return item

    async def close(self):
        self.closed = True
        self._closed_event.set()


class FakeConnector:
    """Hands out prepared sockets (or raises prepared errors) in order."""

    def __init__(self, sockets):
        self.sockets = list(sockets)
        self.urls: list[str] = []
        self.opened: list[FakeWebSocket] = []
        self.previous_closed_at_connect: list[bool] = []
        self.closed = False

    async def connect(self, url):
        self.urls.append(url)
        self.previous_closed_at_connect.append(all(ws.closed for ws in self.opened))
        if not self.sockets:
            raise SessionConnectionError(f"No more sockets for {url}")
        item = self.sockets.pop(0)
        if isinstance(item, Exception):
            raise item
        self.opened.append(item)
        return item

    async def close(self):
        self.closed = True


class FakeRegistrar:
    def __init__(self, failing=()):
        self.failing = set(failing)
        self.calls: list[tuple[str, list[int]]] = []
        self.closed = False

    async def register(self, session_id, subject_ids):
        subject_ids = list(subject_ids)
        self.calls.append((session_id, subject_ids))
        report = RegistrationReport(session_id=session_id)
        for sid in subject_ids:
            ok = sid not in self.failing
            report.results[sid] = SubscriptionResult(
                subject_id=sid, ok=ok, status=202 if ok else 500
            )
        return report

    async def close(self):
        self.closed = True


# Models


def make_video(video_id="123456", title="Speedrun marathon", login="squirrel"):
    return VideoInfo.model_validate(
        {
            "id": video_id,
            "title": title,
            "description": None,
            "createdAt": datetime(2024, 5, 17, 20, 0, tzinfo=timezone.utc).isoformat(),
            "lengthSeconds": 3600,
            "viewCount": 42,
            "status": "RECORDED",
            "game": {"displayName": "Celeste"},
            "owner": {"login": login, "displayName": login.title()},
        }
    )


MASTER_PLAYLIST = """#EXTM3U
#EXT-X-MEDIA:TYPE=VIDEO,GROUP-ID="chunked",NAME="1080p60 (source)",AUTOSELECT=YES,DEFAULT=YES
#EXT-X-STREAM-INF:BANDWIDTH=8000000,RESOLUTION=1920x1080,CODECS="avc1.64002A,mp4a.40.2",VIDEO="chunked"
https://cdn.example.com/abc/chunked/index-dvr.m3u8
#EXT-X-MEDIA:TYPE=VIDEO,GROUP-ID="720p60",NAME="720p60",AUTOSELECT=YES,DEFAULT=YES
#EXT-X-STREAM-INF:BANDWIDTH=3000000,RESOLUTION=1280x720,CODECS="avc1.4D401F,mp4a.40.2",VIDEO="720p60"
https://cdn.example.com/abc/720p60/index-dvr.m3u8
"""

MEDIA_URL = "https://cdn.example.com/abc/chunked/index-dvr.m3u8"

MEDIA_PLAYLIST = """#EXTM3U
#EXT-X-VERSION:3
#EXT-X-TARGETDURATION:10
#EXT-X-PLAYLIST-TYPE:EVENT
#EXTINF:10.000,
0.ts
#EXTINF:10.000,
1-muted.ts
#EXTINF:10.000,
2.ts
#EXT-X-ENDLIST
"""


@pytest.fixture
def segment_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "segments"
    directory.mkdir()
    return directory
