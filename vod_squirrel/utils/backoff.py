"""
Provides the reconnect pacing used by the event session, so that a flapping
connection can never turn into a reconnect storm.
"""

import logging
import time

from vod_squirrel.core.cancellation import CancellationBroadcaster

log = logging.getLogger(__name__)


class ReconnectBackoff:
    """
    Spaces out connection attempts.

    Every attempt after the first waits until at least `cooldown` seconds have
    passed since the previous attempt. Consecutive failures add an exponential
    delay on top, capped at `max_delay`. `reset()` is called once a connection
    reaches a usable state.
    """

    def __init__(
        self, cooldown: float = 1.0, base_delay: float = 1.0, max_delay: float = 60.0
    ):
        """
        Initializes the backoff.

        Args:
            cooldown: Minimum spacing between two connection attempts.
            base_delay: Delay after the first consecutive failure.
            max_delay: Upper bound for the exponential delay.
        """
        self.cooldown = cooldown
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._failures = 0
        self._last_attempt: float | None = None

    @property
    def failures(self) -> int:
        return self._failures

    def next_delay(self) -> float:
        """Seconds to wait before the next attempt may start."""
        if self._last_attempt is None:
            return 0.0

        delay = 0.0
        if self._failures:
            delay = min(self.max_delay, self.base_delay * (2 ** (self._failures - 1)))

        since_last = time.monotonic() - self._last_attempt
        return max(delay, self.cooldown - since_last, 0.0)

    async def wait(self, cancellation: CancellationBroadcaster) -> None:
        """
        Waits out the current delay and records the attempt.

        Raises:
            OperationCancelled: If cancellation is requested while waiting.
        """
        delay = self.next_delay()
        if delay > 0:
            log.debug(f"Waiting {delay:.1f}s before reconnecting.")
        await cancellation.sleep(delay)
        self._last_attempt = time.monotonic()

    def record_failure(self) -> None:
        self._failures += 1
        if self._failures > 1:
            log.warning(
                f"[yellow]{self._failures} consecutive connection failures; "
                f"backing off.[/yellow]"
            )

    def reset(self) -> None:
        self._failures = 0
