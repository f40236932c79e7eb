"""
Handles the low-level streaming of HLS segments over HTTP to local files,
with bounded retries and cooperative cancellation.
"""

import asyncio
import logging
import os
from pathlib import Path
from typing import Any

import aiofiles
import aiohttp

from vod_squirrel.core.cancellation import CancellationBroadcaster
from vod_squirrel.exceptions import OperationCancelled, SegmentTransferError
from vod_squirrel.models.stats import JobStats

log = logging.getLogger(__name__)

_connection_pool: aiohttp.ClientSession | None = None
_pool_lock = asyncio.Lock()

PARTIAL_SUFFIX = ".part"


async def get_connection_pool(max_workers: int = 20) -> aiohttp.ClientSession:
    """
    Gets or creates a shared aiohttp ClientSession for segment downloads.

    This function ensures that only one connection pool is created for the
    lifetime of the application run.

    Args:
        max_workers: Maximum concurrent connections (should match parallelism).
    """
    global _connection_pool
    async with _pool_lock:
        if _connection_pool and not _connection_pool.closed:
            return _connection_pool

        connector = aiohttp.TCPConnector(
            limit=max_workers * 2,  # Total connections
            limit_per_host=max_workers,  # Per-host (video CDN)
            ttl_dns_cache=600,  # 10 minutes
            keepalive_timeout=30,
            enable_cleanup_closed=True,
            force_close=False,
        )
        timeout = aiohttp.ClientTimeout(total=None, sock_connect=15, sock_read=90)
        _connection_pool = aiohttp.ClientSession(connector=connector, timeout=timeout)
        log.debug(f"Created download pool with limit_per_host={max_workers}")

    return _connection_pool


async def close_connection_pool() -> None:
    """Closes the shared global connection pool."""
    global _connection_pool
    async with _pool_lock:
        if _connection_pool and not _connection_pool.closed:
            await _connection_pool.close()
            _connection_pool = None
            log.debug("Shared downloader connection pool closed.")


def partial_path(destination: Path) -> Path:
    """The path a segment is written to while its body is still streaming."""
    return destination.with_name(destination.name + PARTIAL_SUFFIX)


async def remove_partial(destination: Path) -> None:
    """Removes the in-progress file of a segment, if any."""
    await asyncio.to_thread(partial_path(destination).unlink, missing_ok=True)


class SegmentFetcher:
    """Streams one remote segment to disk with retry logic."""

    CHUNK_SIZE = 262144  # 256 KB

    def __init__(
        self,
        session: Any | None = None,
        max_attempts: int = 3,
        base_delay: float = 1.5,
        timeout: float | None = None,
        max_workers: int = 20,
        stats: JobStats | None = None,
    ):
        """
        Args:
            session: An aiohttp-compatible session. Defaults to the shared pool.
            max_attempts: Attempts per segment before giving up.
            base_delay: Backoff before the second attempt, doubled afterwards.
            timeout: Optional limit for one attempt; a timeout uses up an attempt.
            max_workers: Size hint for the shared connection pool.
            stats: Optional job statistics to feed with received bytes.
        """
        self._session = session
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.timeout = timeout
        self.max_workers = max_workers
        self.stats = stats

    async def _get_session(self) -> Any:
        if self._session is not None:
            return self._session
        return await get_connection_pool(self.max_workers)

    async def fetch(
        self,
        url: str,
        destination: Path,
        cancellation: CancellationBroadcaster,
    ) -> int:
        """
        Downloads `url` to `destination`, retrying transient failures.

        The body is written to a '.part' file that is renamed only once the
        transfer is complete, so `destination` never holds a truncated segment.

        Returns:
            The number of bytes written.

        Raises:
            OperationCancelled: If cancellation was requested. The partial file
                has been removed.
            SegmentTransferError: If every attempt failed.
        """
        last_exception: Exception | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await cancellation.guard(
                    self._stream_once(url, destination, cancellation)
                )
            except OperationCancelled:
                await remove_partial(destination)
                raise
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_exception = e
                await remove_partial(destination)
                if self.stats:
                    self.stats.segment_retries += 1
                log.debug(
                    f"Download attempt {attempt}/{self.max_attempts} for "
                    f"'{os.path.basename(destination)}' failed: {e!r}. Retrying..."
                )
                if attempt < self.max_attempts:
                    await cancellation.sleep(self.base_delay * (2 ** (attempt - 1)))
            except OSError:
                await remove_partial(destination)
                raise

        raise SegmentTransferError(url, self.max_attempts, last_exception)

    async def _stream_once(
        self, url: str, destination: Path, cancellation: CancellationBroadcaster
    ) -> int:
        if self.timeout:
            return await asyncio.wait_for(
                self._stream_body(url, destination, cancellation), self.timeout
            )
        return await self._stream_body(url, destination, cancellation)

    async def _stream_body(
        self, url: str, destination: Path, cancellation: CancellationBroadcaster
    ) -> int:
        session = await self._get_session()
        temp_path = partial_path(destination)
        bytes_written = 0

        async with session.get(url, allow_redirects=True) as response:
            response.raise_for_status()

            async with aiofiles.open(temp_path, "wb") as f:
                async for chunk in response.content.iter_chunked(self.CHUNK_SIZE):
                    if cancellation.is_cancelled():
                        raise OperationCancelled()
                    await f.write(chunk)
                    bytes_written += len(chunk)
                    if self.stats:
                        await self.stats.add_bytes(len(chunk))

        await asyncio.to_thread(os.replace, temp_path, destination)
        return bytes_written
