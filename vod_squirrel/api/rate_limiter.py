"""
Paces GraphQL requests and slows down when the provider answers with HTTP 429.
"""

import asyncio
import logging
import time

log = logging.getLogger(__name__)

# Seconds without a 429 before the rate starts creeping back up
RECOVERY_QUIET_PERIOD = 300.0


class AdaptiveRateLimiter:
    """
    Spaces calls at least `1 / rate` seconds apart.

    `on_429()` halves the rate (never below `min_rate`); after a quiet period
    the rate recovers slowly towards `max_rate`.
    """

    def __init__(
        self,
        calls_per_second: float = 5.0,
        max_calls_per_second: float = 10.0,
        min_calls_per_second: float = 0.5,
    ):
        self.rate = calls_per_second
        self.max_rate = max_calls_per_second
        self.min_rate = min_calls_per_second
        self._next_slot = 0.0
        self._last_429: float | None = None
        self._lock = asyncio.Lock()

    @property
    def interval(self) -> float:
        return 1.0 / self.rate

    async def on_429(self) -> None:
        async with self._lock:
            self.rate = max(self.min_rate, self.rate / 2)
            self._last_429 = time.monotonic()
            log.warning(
                f"[yellow]Rate limited by Twitch. Slowing down to "
                f"{self.rate:.1f} calls/s[/yellow]"
            )

    async def acquire(self) -> None:
        """Waits until the next call is allowed to start."""
        async with self._lock:
            now = time.monotonic()
            if self._last_429 is None or now - self._last_429 > RECOVERY_QUIET_PERIOD:
                self.rate = min(self.max_rate, self.rate * 1.01)

            wait = self._next_slot - now
            if wait > 0:
                await asyncio.sleep(wait)
            self._next_slot = max(now, self._next_slot) + self.interval
