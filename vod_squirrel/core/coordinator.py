"""
Downloads the segments of a job with bounded parallelism and returns them in
playlist order, regardless of the order in which transfers complete.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING, AsyncIterator

from vod_squirrel.core.cancellation import CancellationBroadcaster
from vod_squirrel.exceptions import OperationCancelled, SegmentTransferError
from vod_squirrel.media.downloader import SegmentFetcher
from vod_squirrel.models.segment import (
    DownloadJob,
    JobResult,
    PartialFailure,
    Segment,
    SegmentState,
)
from vod_squirrel.models.stats import JobStats

if TYPE_CHECKING:
    from vod_squirrel.cli.progress_manager import ProgressManager

log = logging.getLogger(__name__)

CANCELLED_REASON = "cancelled"


class SegmentedDownloadCoordinator:
    """
    Runs one DownloadJob at a time under a counting permit pool.

    Each segment gets its own task. A task holds a permit only while its
    transfer is in flight, and gives it back on every exit path, so a failing
    or cancelled transfer can never starve the pool.
    """

    def __init__(
        self,
        fetcher: SegmentFetcher,
        cancellation: CancellationBroadcaster,
        progress_manager: "ProgressManager | None" = None,
        resume: bool = True,
    ):
        """
        Args:
            fetcher: Transfers a single segment to disk.
            cancellation: Default cancellation handle for jobs built here.
            progress_manager: Optional Rich display to report progress to.
            resume: Treat already-complete local files as downloaded.
        """
        self.fetcher = fetcher
        self.cancellation = cancellation
        self.progress_manager = progress_manager
        self.resume = resume
        self.stats = JobStats()
        self._in_flight = 0

    @property
    def peak_in_flight(self) -> int:
        return self.stats.peak_in_flight

    @property
    def in_flight(self) -> int:
        return self._in_flight

    def build_job(
        self, segments: list[Segment], concurrency_limit: int, description: str = ""
    ) -> DownloadJob:
        return DownloadJob(
            segments=segments,
            concurrency_limit=concurrency_limit,
            cancellation=self.cancellation,
            description=description,
        )

    async def run(self, job: DownloadJob) -> JobResult:
        """
        Downloads every segment of `job`.

        Returns:
            The local paths ordered by segment index when every segment is DONE,
            otherwise a PartialFailure. A cancelled job always yields a
            PartialFailure with `cancelled=True`.
        """
        self.stats = JobStats(segments_total=len(job.segments))
        self.fetcher.stats = self.stats
        self._in_flight = 0
        permits = asyncio.Semaphore(job.concurrency_limit)

        if self.progress_manager:
            self.progress_manager.start_job(
                job.description or "Downloading segments", len(job.segments)
            )

        log.info(
            f"Downloading {len(job.segments)} segments with parallelism "
            f"{job.concurrency_limit}"
        )
        tasks = [
            asyncio.create_task(self._run_segment(segment, permits, job.cancellation))
            for segment in job.segments
        ]
        await asyncio.gather(*tasks)

        return self._collect(job)

    def _collect(self, job: DownloadJob) -> JobResult:
        ordered = job.ordered()
        failed = tuple(s for s in ordered if s.state is not SegmentState.DONE)
        if not failed:
            log.info("Done downloading all segments!")
            return [segment.local_path for segment in ordered]

        completed = tuple(s for s in ordered if s.state is SegmentState.DONE)
        cancelled = job.cancellation.is_cancelled() and any(
            s.error == CANCELLED_REASON for s in failed
        )
        if cancelled:
            log.info(
                f"[yellow]Download cancelled: {len(completed)} of "
                f"{len(ordered)} segments completed.[/yellow]"
            )
        else:
            log.error(
                f"[red]✗ {len(failed)} of {len(ordered)} segments failed after "
                f"exhausting retries.[/red]"
            )
        return PartialFailure(completed=completed, failed=failed, cancelled=cancelled)

    @asynccontextmanager
    async def _hold_permit(
        self, permits: asyncio.Semaphore, cancellation: CancellationBroadcaster
    ) -> AsyncIterator[None]:
        """Acquires a permit unless cancelled first, and always releases it."""
        await cancellation.guard(permits.acquire())
        try:
            yield
        finally:
            permits.release()

    async def _run_segment(
        self,
        segment: Segment,
        permits: asyncio.Semaphore,
        cancellation: CancellationBroadcaster,
    ) -> None:
        if self.resume and await self._is_complete_on_disk(segment.local_path):
            segment.state = SegmentState.DONE
            self.stats.segments_resumed += 1
            log.debug(f"Segment '{segment.local_path.name}' already on disk.")
            self._report_finished(segment, was_active=False)
            return

        if cancellation.is_cancelled():
            segment.mark_failed(CANCELLED_REASON)
            return

        try:
            async with self._hold_permit(permits, cancellation):
                if cancellation.is_cancelled():
                    raise OperationCancelled()
                await self._transfer(segment, cancellation)
        except OperationCancelled:
            segment.mark_failed(CANCELLED_REASON)
            log.debug(f"Segment {segment.index} cancelled.")
        except SegmentTransferError as e:
            segment.mark_failed(str(e))
            self.stats.segments_failed += 1
            log.warning(f"[yellow]Segment {segment.index} failed: {e}[/yellow]")
        except OSError as e:
            segment.mark_failed(f"Local I/O error: {e}")
            self.stats.segments_failed += 1
            log.error(f"[red]Could not write segment {segment.index}: {e}[/red]")
        finally:
            if segment.attempts:
                self._report_finished(segment, was_active=True)

    async def _transfer(
        self, segment: Segment, cancellation: CancellationBroadcaster
    ) -> None:
        segment.state = SegmentState.IN_FLIGHT
        segment.attempts += 1
        self._in_flight += 1
        self.stats.peak_in_flight = max(self.stats.peak_in_flight, self._in_flight)
        if self.progress_manager:
            self.progress_manager.segment_started()
        try:
            segment.size_bytes = await self.fetcher.fetch(
                segment.source_uri, segment.local_path, cancellation
            )
            segment.state = SegmentState.DONE
            self.stats.segments_downloaded += 1
            log.debug(f"Done downloading {segment.local_path.name}!")
        finally:
            self._in_flight -= 1

    def _report_finished(self, segment: Segment, was_active: bool) -> None:
        if self.progress_manager:
            self.progress_manager.segment_finished(
                success=segment.state is SegmentState.DONE,
                was_active=was_active,
                speed_bps=self.stats.current_speed_bps,
            )

    @staticmethod
    async def _is_complete_on_disk(path: Path) -> bool:
        def _check() -> bool:
            return path.is_file() and path.stat().st_size > 0

        return await asyncio.to_thread(_check)
