"""
A long-lived Twitch EventSub websocket session.

The session keeps exactly one socket open at a time, follows provider-directed
reconnects, replaces connections that go silent, and makes sure every
monitored channel is subscribed on whatever session identity is current.
"""

import asyncio
import inspect
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Iterable

import aiohttp

from vod_squirrel import __version__
from vod_squirrel.core.cancellation import CancellationBroadcaster
from vod_squirrel.events.messages import classify_frame
from vod_squirrel.events.registration import SubscriptionRegistrar
from vod_squirrel.exceptions import (
    OperationCancelled,
    PoisonedConnection,
    ProtocolError,
    SessionConnectionError,
    SessionTerminatedError,
)
from vod_squirrel.models.events import (
    Closed,
    Keepalive,
    Notification,
    NotificationEvent,
    Reconnect,
    Revocation,
    Unrecognized,
    Welcome,
)
from vod_squirrel.models.session import (
    RegistrationReport,
    Session,
    SessionIdentityCell,
    SessionState,
)
from vod_squirrel.utils.backoff import ReconnectBackoff

log = logging.getLogger(__name__)

DEFAULT_EVENTSUB_URL = "wss://eventsub.wss.twitch.tv/ws?keepalive_timeout_seconds=30"
KEEPALIVE_GRACE_SECONDS = 10

CLOSE_REASONS = {
    4000: "internal server error",
    4001: "client sent inbound traffic",
    4002: "client failed ping-pong",
    4003: "connection unused",
    4004: "reconnect grace time expired",
    4005: "network timeout",
    4006: "network error",
    4007: "invalid reconnect",
}

RegistrationCallback = Callable[[RegistrationReport], Awaitable[None] | None]


class WebSocketConnector:
    """Opens EventSub websocket connections with aiohttp."""

    def __init__(self, session: aiohttp.ClientSession | None = None):
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={"User-Agent": f"vod-squirrel/{__version__}"},
                timeout=aiohttp.ClientTimeout(total=None, sock_connect=15),
            )
            self._owns_session = True
        return self._session

    async def connect(self, url: str) -> aiohttp.ClientWebSocketResponse:
        """
        Raises:
            SessionConnectionError: If the connection or upgrade fails.
        """
        session = await self._get_session()
        try:
            return await session.ws_connect(url, autoping=True, heartbeat=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            raise SessionConnectionError(f"Connecting to {url} failed: {e!r}") from e

    async def close(self) -> None:
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()


class EventSession:
    """
    Owns the EventSub connection and turns it into a stream of notifications.

    Usage:
        session = EventSession(cancellation, registrar=registrar)
        session.subscribe([42, 99])
        async with contextlib.aclosing(session.connect()) as notifications:
            async for notification in notifications:
                ...

    Registration runs in a separate task per connection generation. It waits
    for that generation's session id and registers the subjects unless they
    are already registered under the same id, so a provider-directed
    reconnect (same id) issues no duplicate calls while a fresh session
    (new id) is subscribed again.
    """

    def __init__(
        self,
        cancellation: CancellationBroadcaster,
        registrar: SubscriptionRegistrar | None = None,
        connector: Any | None = None,
        default_url: str = DEFAULT_EVENTSUB_URL,
        keepalive_timeout: float = 40.0,
        backoff: ReconnectBackoff | None = None,
        max_welcome_failures: int = 5,
        max_reconnect_attempts: int | None = None,
        on_registered: RegistrationCallback | None = None,
    ):
        """
        Args:
            cancellation: Shared cancellation signal; ends the stream when set.
            registrar: Performs the subscription HTTP calls.
            connector: Opens websocket connections (`connect(url)`).
            default_url: Endpoint used for fresh sessions.
            keepalive_timeout: Silence after which a connection is replaced,
                unless the welcome announces its own keepalive interval.
            backoff: Paces reconnect attempts.
            max_welcome_failures: Consecutive welcome violations tolerated
                before the session gives up.
            max_reconnect_attempts: Consecutive failed connections tolerated
                before the session gives up; None retries forever.
            on_registered: Called with every registration report.
        """
        self._cancellation = cancellation
        self._registrar = registrar
        self._connector = connector or WebSocketConnector()
        self.default_url = default_url
        self.keepalive_timeout = keepalive_timeout
        self._backoff = backoff or ReconnectBackoff()
        self.max_welcome_failures = max_welcome_failures
        self.max_reconnect_attempts = max_reconnect_attempts
        self._on_registered = on_registered

        self.session = Session(connection_url=default_url)
        self.registration_reports: list[RegistrationReport] = []
        self._subjects: list[int] = []
        self._registered_session_id: str | None = None
        self._registration_tasks: set[asyncio.Task] = set()
        self._keepalive_deadline = keepalive_timeout
        self._welcome_failures = 0

    @property
    def state(self) -> SessionState:
        return self.session.state

    @property
    def session_id(self) -> str | None:
        return self.session.session_id

    @property
    def connection_generation(self) -> int:
        return self.session.connection_generation

    def subscribe(self, subject_ids: Iterable[int]) -> None:
        """
        Sets the subjects to register on every new session identity.

        On a READY session, subjects not yet subscribed are registered on the
        current identity right away.
        """
        subjects = list(dict.fromkeys(int(sid) for sid in subject_ids))
        added = [sid for sid in subjects if sid not in self._subjects]
        self._subjects = subjects

        cell = self.session.identity
        if (
            added
            and self._registrar is not None
            and self.state is SessionState.READY
            and cell.is_set()
        ):
            # Claimed here so the generation's own task cannot register twice
            pending = added if cell.value == self._registered_session_id else subjects
            self._registered_session_id = cell.value
            self._track(self._register_added(cell, pending))

    async def register(
        self, session_id: str, subject_ids: Iterable[int]
    ) -> RegistrationReport:
        """
        Registers subscriptions for `subject_ids` on `session_id`.

        Raises:
            RuntimeError: If the session is not READY under `session_id`.
        """
        if self.state is not SessionState.READY or self.session_id != session_id:
            raise RuntimeError(
                f"Cannot register subscriptions while the session is {self.state.value}."
            )
        if self._registrar is None:
            raise RuntimeError("No subscription registrar configured.")
        return await self._registrar.register(session_id, subject_ids)

    async def connect(self, url: str | None = None) -> AsyncIterator[Notification]:
        """
        Connects and yields notifications until cancelled.

        Reconnects are handled internally and never end the stream.

        Raises:
            ProtocolError: If too many consecutive connections failed to
                deliver a valid welcome.
            SessionTerminatedError: If `max_reconnect_attempts` was exhausted.
        """
        next_url = url or self.default_url
        redirected = False
        try:
            while not self._cancellation.is_cancelled():
                try:
                    await self._backoff.wait(self._cancellation)
                except OperationCancelled:
                    break

                cell = self.session.begin_generation(next_url, redirected)
                self._keepalive_deadline = self.keepalive_timeout
                self._spawn_registration(cell)
                log.info(
                    "(re-)Connecting to Twitch EventSub via WebSocket "
                    f"(generation {cell.generation})"
                )

                try:
                    ws = await self._cancellation.guard(
                        self._connector.connect(next_url)
                    )
                except OperationCancelled:
                    break
                except SessionConnectionError as e:
                    log.warning(f"[yellow]{e}[/yellow]")
                    self._record_connection_failure()
                    self._cancel_registrations()
                    next_url, redirected = self.default_url, False
                    continue

                try:
                    while True:
                        try:
                            event = await self._next_event(ws)
                        except PoisonedConnection as e:
                            log.warning(f"[yellow]{e} Reconnecting.[/yellow]")
                            self._record_connection_failure()
                            next_url, redirected = self.default_url, False
                            break
                        except ProtocolError as e:
                            if self.state is SessionState.READY:
                                log.error(f"[red]{e} Skipping frame.[/red]")
                                continue
                            self._record_welcome_failure(str(e))
                            next_url, redirected = self.default_url, False
                            break

                        if event is None:
                            continue

                        if self.state is not SessionState.READY:
                            if isinstance(event, Welcome):
                                self._on_welcome(cell, event)
                                continue
                            if isinstance(event, Closed):
                                self._log_close(event)
                                self._record_connection_failure()
                            else:
                                self._record_welcome_failure(
                                    f"Expected a welcome message, got {type(event).__name__}."
                                )
                            next_url, redirected = self.default_url, False
                            break

                        if isinstance(event, Notification):
                            log.info(
                                f"Received notification for broadcaster {event.subject_id}"
                            )
                            yield event
                        elif isinstance(event, Keepalive):
                            pass
                        elif isinstance(event, Reconnect):
                            log.info("Provider requested a reconnect.")
                            next_url, redirected = event.new_url, True
                            break
                        elif isinstance(event, Closed):
                            self._log_close(event)
                            self._record_connection_failure()
                            next_url, redirected = self.default_url, False
                            break
                        elif isinstance(event, Revocation):
                            log.warning(
                                f"[yellow]Subscription for broadcaster "
                                f"{event.subject_id} was revoked ({event.status}).[/yellow]"
                            )
                        elif isinstance(event, Welcome):
                            log.debug("Ignoring repeated welcome on a ready session.")
                        elif isinstance(event, Unrecognized):
                            log.warning(
                                f"Unhandled message type: {event.message_type or 'missing'}"
                            )
                except OperationCancelled:
                    break
                finally:
                    await self._close_socket(ws)
                    if not redirected:
                        self._cancel_registrations()
        finally:
            self.session.state = SessionState.TERMINATED
            self._cancel_registrations()
            log.info("EventSub session terminated.")

    async def _next_event(self, ws: Any) -> NotificationEvent | None:
        """
        Waits for the next frame, racing it against the keepalive deadline.

        Returns None for frames that carry no event (binary, ping/pong).
        """
        try:
            msg = await self._cancellation.guard(
                asyncio.wait_for(ws.receive(), self._keepalive_deadline)
            )
        except asyncio.TimeoutError as e:
            raise PoisonedConnection(
                f"Didn't get any message for {self._keepalive_deadline:.0f}s. "
                "Connection is effectively poisoned!"
            ) from e

        if msg.type == aiohttp.WSMsgType.TEXT:
            return classify_frame(msg.data)
        if msg.type in (
            aiohttp.WSMsgType.CLOSE,
            aiohttp.WSMsgType.CLOSING,
            aiohttp.WSMsgType.CLOSED,
        ):
            code = msg.data if isinstance(msg.data, int) else ws.close_code
            return Closed(code=code, reason=msg.extra or "")
        if msg.type == aiohttp.WSMsgType.ERROR:
            return Closed(code=None, reason=repr(msg.data))
        return None

    def _on_welcome(self, cell: SessionIdentityCell, event: Welcome) -> None:
        cell.set(event.session_id)
        self.session.state = SessionState.READY
        self._welcome_failures = 0
        self._backoff.reset()
        if event.keepalive_timeout_seconds:
            self._keepalive_deadline = (
                event.keepalive_timeout_seconds + KEEPALIVE_GRACE_SECONDS
            )
        log.info(f"EventSub Session ID: {event.session_id}")

    def _record_welcome_failure(self, reason: str) -> None:
        self._welcome_failures += 1
        self._backoff.record_failure()
        log.error(
            f"[red]Protocol error before welcome: {reason} "
            f"({self._welcome_failures}/{self.max_welcome_failures})[/red]"
        )
        if self._welcome_failures >= self.max_welcome_failures:
            raise ProtocolError(
                f"No valid welcome after {self._welcome_failures} connections: {reason}"
            )

    def _record_connection_failure(self) -> None:
        self._backoff.record_failure()
        if (
            self.max_reconnect_attempts is not None
            and self._backoff.failures > self.max_reconnect_attempts
        ):
            raise SessionTerminatedError(
                f"Gave up after {self._backoff.failures} consecutive connection failures."
            )

    @staticmethod
    def _log_close(event: Closed) -> None:
        description = CLOSE_REASONS.get(event.code, event.reason or "no reason given")
        log.error(f"[red]Twitch closed WS connection: {event.code} {description}[/red]")

    async def _close_socket(self, ws: Any) -> None:
        try:
            await ws.close()
        except (aiohttp.ClientError, OSError) as e:
            log.debug(f"Error while closing websocket: {e!r}")

    def _spawn_registration(self, cell: SessionIdentityCell) -> None:
        if self._registrar is None:
            return
        self._track(self._register_when_welcomed(cell))

    def _track(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._registration_tasks.add(task)
        task.add_done_callback(self._on_registration_done)

    async def _register_when_welcomed(self, cell: SessionIdentityCell) -> None:
        session_id = await cell.wait()
        if session_id == self._registered_session_id:
            log.info("Session identity survived the reconnect; subscriptions kept.")
            return
        if self.state is not SessionState.READY or self.session.identity is not cell:
            return
        if not self._subjects:
            return

        self._registered_session_id = session_id
        await self._publish(await self.register(session_id, self._subjects))

    async def _register_added(self, cell: SessionIdentityCell, subjects: list[int]) -> None:
        if self.state is not SessionState.READY or self.session.identity is not cell:
            return
        await self._publish(await self.register(cell.value, subjects))

    async def _publish(self, report: RegistrationReport) -> None:
        self.registration_reports.append(report)
        if self._on_registered:
            result = self._on_registered(report)
            if inspect.isawaitable(result):
                await result

    def _on_registration_done(self, task: asyncio.Task) -> None:
        self._registration_tasks.discard(task)
        if task.cancelled():
            return
        if exc := task.exception():
            log.error(f"[red]Subscription registration failed: {exc!r}[/red]")

    def _cancel_registrations(self) -> None:
        for task in list(self._registration_tasks):
            task.cancel()

    async def aclose(self) -> None:
        """Releases the connector and registrar sessions."""
        self._cancel_registrations()
        await self._connector.close()
        if self._registrar is not None:
            await self._registrar.close()
