"""
The main orchestrator: resolves a VOD into segments, downloads them, joins them
and optionally uploads the result. Also drives channel monitoring.
"""

import asyncio
import logging
import shutil
from contextlib import aclosing
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, Iterable

from vod_squirrel.api.client import TwitchAPIClient
from vod_squirrel.api.playlist import build_segments, select_variant
from vod_squirrel.core.cancellation import CancellationBroadcaster
from vod_squirrel.core.coordinator import SegmentedDownloadCoordinator
from vod_squirrel.events.session import EventSession
from vod_squirrel.exceptions import (
    ConfigurationError,
    IncompleteDownloadError,
    VideoUnavailableError,
    VodSquirrelError,
)
from vod_squirrel.media.ffmpeg import concat_segments
from vod_squirrel.media.uploader import YouTubeUploader, build_video_detail
from vod_squirrel.models.config import AppConfig
from vod_squirrel.models.segment import PartialFailure, Segment
from vod_squirrel.models.stats import JobStats
from vod_squirrel.models.video import VideoInfo
from vod_squirrel.utils.path import create_dir, job_directory

log = logging.getLogger(__name__)

Concatenator = Callable[[list[Path], Path], Awaitable[Path]]


@dataclass
class ArchiveOutcome:
    """What happened to one VOD."""

    video: VideoInfo
    work_dir: Path
    output_path: Path | None = None
    stats: JobStats = field(default_factory=JobStats)
    upload: dict | None = None
    cancelled: bool = False


class Orchestrator:
    """Coordinates the API client, the segment coordinator, ffmpeg and the uploader."""

    def __init__(
        self,
        config: AppConfig,
        api_client: TwitchAPIClient,
        coordinator: SegmentedDownloadCoordinator,
        cancellation: CancellationBroadcaster,
        uploader: YouTubeUploader | None = None,
        concatenate: Concatenator = concat_segments,
    ):
        self.config = config
        self.api_client = api_client
        self.coordinator = coordinator
        self.cancellation = cancellation
        self.uploader = uploader
        self._concatenate = concatenate
        self._archived_ids: set[str] = set()

    async def resolve(self, video_id: int) -> tuple[VideoInfo, list[Segment], Path]:
        """
        Looks up a VOD and lays out its segments in a working directory.

        Raises:
            VideoUnavailableError: If the VOD does not exist or is private.
            PlaylistError: If a playlist cannot be fetched or parsed.
        """
        video = await self.api_client.get_video_info(video_id)
        if video is None:
            raise VideoUnavailableError(f"VOD {video_id} is inaccessible!")
        log.info(f"VOD title: {video.title}")
        log.info(f"VOD author: {video.owner.display_name} ({video.owner.login})")
        log.info(f"VOD date: {video.created_at}")

        token_value, token_signature = await self.api_client.get_video_cdn_tokens(
            video_id,
            oauth_token=self.config.twitch_access_token or None,
        )
        master = await self.api_client.get_video_playlist_file(
            video_id, token_value, token_signature
        )
        variant = select_variant(master)
        log.info(f"Highest quality media uri: {variant.uri}")
        media = await self.api_client.get_video_media(variant.uri)

        work_dir = job_directory(self.config.work_root, video_id)
        if create_dir(work_dir):
            log.warning(
                "[yellow]Folder already exists. Was there an uncompleted download?[/yellow]"
            )
        segments = build_segments(media, variant.uri, work_dir)
        log.info(f"Found {len(segments)} segments to download!")
        return video, segments, work_dir

    async def download_video(self, video_id: int) -> ArchiveOutcome:
        """
        Downloads and concatenates one VOD into `<work_dir>/<video_id>.mp4`.

        Returns an outcome with `cancelled=True` (and no output) when
        cancellation stopped the download.

        Raises:
            IncompleteDownloadError: If segments failed for any other reason.
        """
        video, segments, work_dir = await self.resolve(video_id)
        outcome = ArchiveOutcome(video=video, work_dir=work_dir)

        job = self.coordinator.build_job(
            segments, self.config.parallelism, description=f"VOD {video_id}"
        )
        result = await self.coordinator.run(job)
        outcome.stats = self.coordinator.stats

        if isinstance(result, PartialFailure):
            if result.cancelled:
                outcome.cancelled = True
                return outcome
            raise IncompleteDownloadError(
                list(result.failed_indices), completed=len(result.completed)
            )

        if self.cancellation.is_cancelled():
            outcome.cancelled = True
            return outcome

        log.info("Concatenating video chunks now")
        outcome.output_path = await self._concatenate(
            result, work_dir / f"{video_id}.mp4"
        )
        log.info(f"Final file path: {outcome.output_path}")
        return outcome

    async def save_video(self, video_id: int, destination: Path) -> ArchiveOutcome:
        """Downloads one VOD and moves the result to `destination`."""
        outcome = await self.download_video(video_id)
        if outcome.output_path is None:
            return outcome

        destination.parent.mkdir(parents=True, exist_ok=True)
        outcome.output_path = Path(
            await asyncio.to_thread(shutil.move, outcome.output_path, destination)
        )
        await self.cleanup(outcome.work_dir)
        return outcome

    async def archive_video(self, video_id: int) -> ArchiveOutcome:
        """
        Downloads one VOD and uploads it to YouTube.

        Raises:
            ConfigurationError: If no uploader is configured.
        """
        if self.uploader is None:
            raise ConfigurationError(
                "Archiving requires a YouTube uploader. "
                "Set 'youtube_oauth_token' in the config or OAUTH_TOKEN."
            )

        outcome = await self.download_video(video_id)
        if outcome.output_path is None:
            return outcome

        log.info("Uploading video to YouTube...")
        outcome.upload = await self.uploader.upload(
            outcome.output_path, build_video_detail(outcome.video)
        )
        await self.cleanup(outcome.work_dir)
        log.info("All done successfully!")
        return outcome

    async def cleanup(self, work_dir: Path) -> None:
        if not self.config.cleanup:
            return
        log.info("Cleaning up processing remnants")
        await asyncio.to_thread(shutil.rmtree, work_dir, ignore_errors=True)

    async def archive_latest(self, channel_id: int) -> ArchiveOutcome | None:
        """Archives the newest past broadcast of a channel, once per video."""
        videos = await self.api_client.list_channel_videos(channel_id)
        if not videos:
            log.warning(f"[yellow]Channel {channel_id} has no past broadcasts.[/yellow]")
            return None

        latest = videos[0]
        if latest.id in self._archived_ids:
            log.info(f"VOD {latest.id} was already archived. Skipping.")
            return None

        log.info(f"Archiving VOD ID: {latest.id} from {latest.owner.display_name}")
        outcome = await self.archive_video(latest.numeric_id)
        # Only uploaded VODs count; a failed or cancelled archive is retried
        if outcome.upload is not None:
            self._archived_ids.add(latest.id)
        return outcome

    async def monitor(
        self, channel_ids: Iterable[int], event_session: EventSession
    ) -> list[ArchiveOutcome]:
        """
        Archives each channel's latest VOD whenever it goes offline.

        Runs until cancelled. Archives run one at a time; a failed archive is
        logged and monitoring continues.
        """
        event_session.subscribe(channel_ids)
        archive_slot = asyncio.Semaphore(1)
        tasks: set[asyncio.Task] = set()
        outcomes: list[ArchiveOutcome] = []

        async def _archive(channel_id: int) -> None:
            async with archive_slot:
                if self.cancellation.is_cancelled():
                    return
                try:
                    outcome = await self.archive_latest(channel_id)
                except VodSquirrelError as e:
                    log.error(f"[red]✗ Archiving channel {channel_id} failed: {e}[/red]")
                    return
                if outcome is not None:
                    outcomes.append(outcome)

        def _on_archive_done(task: asyncio.Task) -> None:
            tasks.discard(task)
            if not task.cancelled() and (exc := task.exception()):
                log.error(f"[red]✗ Archive task crashed: {exc!r}[/red]", exc_info=exc)

        async with aclosing(event_session.connect()) as notifications:
            async for notification in notifications:
                log.info(f"Channel {notification.subject_id} went offline.")
                task = asyncio.create_task(_archive(notification.subject_id))
                tasks.add(task)
                task.add_done_callback(_on_archive_done)

        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        return outcomes
