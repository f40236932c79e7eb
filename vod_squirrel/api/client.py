"""
Async client for the parts of the Twitch GraphQL API and the video CDN needed to
resolve a VOD into a media playlist.
"""

import asyncio
import logging
from typing import Any

import aiohttp
import m3u8

from vod_squirrel import __version__
from vod_squirrel.exceptions import PlaylistError, TwitchAPIError, VideoUnavailableError
from vod_squirrel.models.config import PUBLIC_GQL_CLIENT_ID
from vod_squirrel.models.video import VideoInfo

from .playlist import list_variants, parse_master_playlist, parse_media_playlist
from .rate_limiter import AdaptiveRateLimiter

log = logging.getLogger(__name__)

VIDEO_FIELDS = """
    id
    title
    description
    createdAt
    lengthSeconds
    viewCount
    status
    game { displayName }
    owner { login, displayName }
"""

VIDEO_INFO_QUERY = f"""
query VideoInfo($id: ID) {{
    video(id: $id) {{ {VIDEO_FIELDS} }}
}}
"""

LATEST_CHANNEL_VIDEO_QUERY = f"""
query LatestChannelVideo($id: ID, $type: BroadcastType = ARCHIVE, $limit: Int = 10) {{
    user(id: $id) {{
        videos(first: $limit, type: $type) {{
            edges {{ node {{ {VIDEO_FIELDS} }} }}
        }}
    }}
}}
"""

PLAYBACK_ACCESS_TOKEN_QUERY = """
query GetPlaybackAccessToken($id: ID!) {
    videoPlaybackAccessToken(
        id: $id
        params: {platform: "web", playerBackend: "mediaplayer", playerType: "embed"}
    ) {
        value
        signature
        __typename
    }
}
"""


class TwitchAPIClient:
    """
    Resolves VOD metadata, CDN tokens and playlists.

    GraphQL calls share one rate limiter; playlist downloads go to the CDN
    directly and are not rate limited.
    """

    GQL_URL = "https://gql.twitch.tv/gql"
    USHER_URL = "https://usher.ttvnw.net/vod/{video_id}.m3u8"

    def __init__(
        self,
        client_id: str = PUBLIC_GQL_CLIENT_ID,
        session: Any | None = None,
        rate_limiter: AdaptiveRateLimiter | None = None,
    ):
        """
        Args:
            client_id: The public web client ID sent as `Client-ID`.
            session: An aiohttp-compatible session; one is created on demand.
            rate_limiter: Shared limiter for GraphQL calls.
        """
        self.client_id = client_id
        self._session = session
        self._owns_session = session is None
        self._rate_limiter = rate_limiter or AdaptiveRateLimiter()

    async def _get_session(self) -> Any:
        if self._session is None or getattr(self._session, "closed", False):
            self._session = aiohttp.ClientSession(
                headers={
                    "Client-ID": self.client_id,
                    "User-Agent": f"vod-squirrel/{__version__}",
                },
                timeout=aiohttp.ClientTimeout(total=60, connect=15, sock_read=30),
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Gracefully closes the aiohttp session."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()

    async def gql(
        self, query: str, variables: dict[str, Any], oauth_token: str | None = None
    ) -> dict[str, Any]:
        """
        Runs one GraphQL query and returns its `data` object.

        Raises:
            TwitchAPIError: On a network failure, a non-success status or an
                `errors` payload.
        """
        session = await self._get_session()
        await self._rate_limiter.acquire()

        headers = {"Client-ID": self.client_id}
        if oauth_token:
            headers["Authorization"] = f"Bearer {oauth_token}"

        try:
            async with session.post(
                self.GQL_URL,
                json={"query": query, "variables": variables},
                headers=headers,
            ) as r:
                if r.status == 429:
                    await self._rate_limiter.on_429()
                    raise TwitchAPIError("Rate limited by the GraphQL API.", status=429)
                if not 200 <= r.status < 300:
                    raise TwitchAPIError(
                        f"GraphQL request failed with HTTP {r.status}.", status=r.status
                    )
                body = await r.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TwitchAPIError(f"GraphQL request failed: {e!r}") from e

        if not isinstance(body, dict):
            raise TwitchAPIError("GraphQL response is not a JSON object.")
        if body.get("errors"):
            messages = "; ".join(
                str(err.get("message", err)) if isinstance(err, dict) else str(err)
                for err in body["errors"]
            )
            raise TwitchAPIError(f"GraphQL error: {messages}")
        return body.get("data") or {}

    async def get_video_info(self, video_id: int) -> VideoInfo | None:
        """Returns the VOD's metadata, or None if the video does not exist."""
        data = await self.gql(VIDEO_INFO_QUERY, {"id": str(video_id)})
        video = data.get("video")
        return VideoInfo.model_validate(video) if video else None

    async def list_channel_videos(self, channel_id: int) -> list[VideoInfo] | None:
        """
        Returns up to 10 past broadcasts of a channel, newest first.

        Returns None if the channel does not exist.
        """
        data = await self.gql(LATEST_CHANNEL_VIDEO_QUERY, {"id": str(channel_id)})
        user = data.get("user")
        if user is None:
            return None
        edges = (user.get("videos") or {}).get("edges") or []
        return [VideoInfo.model_validate(edge["node"]) for edge in edges]

    async def get_video_cdn_tokens(
        self, video_id: int, oauth_token: str | None = None
    ) -> tuple[str, str]:
        """
        Fetches the access token used to open a VOD's master playlist.

        Args:
            video_id: The VOD to open.
            oauth_token: Optional user token, needed for subscriber-only VODs.

        Returns:
            (token_value, token_signature)

        Raises:
            VideoUnavailableError: If no playback token is granted.
        """
        data = await self.gql(
            PLAYBACK_ACCESS_TOKEN_QUERY, {"id": str(video_id)}, oauth_token=oauth_token
        )
        token = data.get("videoPlaybackAccessToken")
        if (
            not isinstance(token, dict)
            or not token.get("value")
            or not token.get("signature")
        ):
            raise VideoUnavailableError(
                f"`videoPlaybackAccessToken` does not exist for video {video_id}. "
                "The VOD might be private!"
            )
        return token["value"], token["signature"]

    async def _get_text(self, url: str, params: dict[str, str] | None = None) -> str:
        session = await self._get_session()
        try:
            async with session.get(url, params=params) as r:
                if not 200 <= r.status < 300:
                    raise PlaylistError(f"Fetching '{url}' failed with HTTP {r.status}.")
                return await r.text()
        except aiohttp.ClientError as e:
            raise PlaylistError(f"Fetching '{url}' failed: {e!r}") from e

    async def get_video_playlist_file(
        self, video_id: int, token_value: str, token_signature: str
    ) -> m3u8.M3U8:
        """
        Fetches the VOD's master playlist.

        Call `get_video_cdn_tokens` first to obtain the token pair.
        """
        url = self.USHER_URL.format(video_id=video_id)
        body = await self._get_text(
            url,
            params={
                "sig": token_signature,
                "token": token_value,
                "allow_source": "true",
                "allow_audio_only": "true",
                "platform": "web",
                "player_backend": "mediaplayer",
                "playlist_include_framerate": "true",
                "supported_codecs": "av1,h265,h264",
            },
        )
        playlist = parse_master_playlist(body, url)
        log.info(
            "Available VOD quality: "
            + ", ".join(v.resolution or "Unknown resolution" for v in list_variants(playlist))
        )
        return playlist

    async def get_video_media(self, uri: str) -> m3u8.M3U8:
        """Fetches the media playlist of one quality variant."""
        body = await self._get_text(uri)
        return parse_media_playlist(body, uri)
