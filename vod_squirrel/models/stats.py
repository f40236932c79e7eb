"""
Dataclass for tracking download job statistics.
"""

import asyncio
import time
from dataclasses import dataclass, field


@dataclass
class JobStats:
    """Tracks statistics for a download job, including real-time speed."""

    segments_total: int = 0
    segments_downloaded: int = 0
    segments_resumed: int = 0
    segments_failed: int = 0
    segment_retries: int = 0
    bytes_downloaded: int = 0
    peak_in_flight: int = 0

    # Real-time speed calculation fields
    current_speed_bps: float = 0.0
    peak_speed_bps: float = 0.0
    _speed_samples: list[float] = field(default_factory=list, repr=False)
    _last_progress_time: float = field(default=0.0, repr=False)
    _last_progress_bytes: int = field(default=0, repr=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    def __post_init__(self):
        self._last_progress_time = time.monotonic()

    async def add_bytes(self, count: int) -> None:
        """Records received bytes and refreshes the speed estimate."""
        async with self._lock:
            self.bytes_downloaded += count
            now = time.monotonic()
            elapsed = now - self._last_progress_time

            # Update speed roughly twice per second
            if elapsed > 0.5:
                bytes_diff = self.bytes_downloaded - self._last_progress_bytes
                if bytes_diff > 0:
                    self._speed_samples.append(bytes_diff / elapsed)
                    # Keep a sliding window of the last 10 speed samples
                    if len(self._speed_samples) > 10:
                        self._speed_samples.pop(0)
                    self.current_speed_bps = sum(self._speed_samples) / len(
                        self._speed_samples
                    )
                    self.peak_speed_bps = max(
                        self.peak_speed_bps, self.current_speed_bps
                    )

                self._last_progress_time = now
                self._last_progress_bytes = self.bytes_downloaded
