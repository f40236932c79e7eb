"""
A process-wide cancellation signal shared by the event session, the segment
coordinator and the orchestrator.
"""

import asyncio
import logging
import signal
from typing import Any, Awaitable, TypeVar

from vod_squirrel.exceptions import OperationCancelled

log = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationBroadcaster:
    """
    Single-writer, many-reader cancellation flag.

    Once `cancel()` has been called the broadcaster stays cancelled for the rest
    of its lifetime. Every suspension point in the application races its work
    against `wait()` (usually through `guard()`), so cancellation is observed
    promptly without forcibly killing tasks.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        """Requests cancellation. Calling this more than once is harmless."""
        if self._event.is_set():
            return
        log.debug("Cancellation requested.")
        self._event.set()

    def is_cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        """Suspends the caller until cancellation is requested."""
        await self._event.wait()

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """
        Runs an awaitable until it completes or cancellation is requested.

        If both finish in the same step the completed result wins, so work that
        already succeeded (e.g. an acquired permit) is never lost.

        Raises:
            OperationCancelled: If cancellation was requested first. The
                awaitable's task is cancelled before this is raised.
        """
        work = asyncio.ensure_future(awaitable)
        if self.is_cancelled():
            work.cancel()
            await asyncio.gather(work, return_exceptions=True)
            raise OperationCancelled()

        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait(
                {work, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            waiter.cancel()
            if not work.done():
                work.cancel()

        if work in done:
            return work.result()

        await asyncio.gather(work, return_exceptions=True)
        raise OperationCancelled()

    async def sleep(self, delay: float) -> None:
        """Sleeps for `delay` seconds, raising OperationCancelled if cancelled."""
        if delay <= 0:
            if self.is_cancelled():
                raise OperationCancelled()
            return
        await self.guard(asyncio.sleep(delay))

    def install_signal_handlers(self, *signals: Any) -> None:
        """
        Routes SIGINT/SIGTERM (or the given signals) to `cancel()`.

        Must be called from within a running event loop.
        """
        loop = asyncio.get_running_loop()
        targets = signals or (signal.SIGINT, signal.SIGTERM)
        for sig in targets:
            try:
                loop.add_signal_handler(sig, self._on_signal, sig)
            except (NotImplementedError, RuntimeError):
                # Windows event loops do not support add_signal_handler
                signal.signal(
                    sig,
                    lambda signum, _frame: loop.call_soon_threadsafe(
                        self._on_signal, signum
                    ),
                )

    def _on_signal(self, signum: int) -> None:
        if not self.is_cancelled():
            log.info(
                f"[yellow]Caught signal {signal.Signals(signum).name}, "
                "finishing in-flight work...[/yellow]"
            )
        self.cancel()
