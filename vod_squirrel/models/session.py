"""
State carried by an EventSub session and the subscriptions registered on it.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

SUBSCRIPTION_TYPE_STREAM_OFFLINE = "stream.offline"


class SessionState(Enum):
    AWAITING_WELCOME = "awaiting_welcome"
    READY = "ready"
    RECONNECTING = "reconnecting"
    TERMINATED = "terminated"


class SessionIdentityCell:
    """
    Write-once holder for the session id of one connection generation.

    The receive loop assigns the id when the welcome arrives; the registration
    task waits on `wait()` instead of polling. A fresh cell is created for every
    connection generation.
    """

    def __init__(self, generation: int):
        self.generation = generation
        self._value: str | None = None
        self._assigned = asyncio.Event()

    @property
    def value(self) -> str | None:
        return self._value

    def is_set(self) -> bool:
        return self._assigned.is_set()

    def set(self, session_id: str) -> None:
        if self._assigned.is_set():
            raise RuntimeError(
                f"Session id for generation {self.generation} is already assigned."
            )
        self._value = session_id
        self._assigned.set()

    async def wait(self) -> str:
        await self._assigned.wait()
        return self._value


@dataclass
class Session:
    """The single live EventSub session owned by an EventSession."""

    connection_url: str
    connection_generation: int = 0
    state: SessionState = SessionState.AWAITING_WELCOME
    identity: SessionIdentityCell = field(
        default_factory=lambda: SessionIdentityCell(0), repr=False
    )

    @property
    def session_id(self) -> str | None:
        return self.identity.value

    def begin_generation(self, url: str, redirected: bool) -> SessionIdentityCell:
        """Starts a new connection generation with a fresh identity cell."""
        self.connection_generation += 1
        self.connection_url = url
        self.state = (
            SessionState.RECONNECTING if redirected else SessionState.AWAITING_WELCOME
        )
        self.identity = SessionIdentityCell(self.connection_generation)
        return self.identity


@dataclass(frozen=True)
class Subscription:
    """Interest in one subject's events, bound to a transport session."""

    subject_id: int
    transport_session_id: str
    kind: str = SUBSCRIPTION_TYPE_STREAM_OFFLINE
    version: str = "1"

    def to_request_body(self) -> dict[str, Any]:
        return {
            "type": self.kind,
            "version": self.version,
            "condition": {"broadcaster_user_id": str(self.subject_id)},
            "transport": {
                "method": "websocket",
                "session_id": self.transport_session_id,
            },
        }


@dataclass(frozen=True)
class SubscriptionResult:
    subject_id: int
    ok: bool
    status: int | None = None
    error: str | None = None


@dataclass
class RegistrationReport:
    """Per-subject outcome of registering a batch of subscriptions."""

    session_id: str
    results: dict[int, SubscriptionResult] = field(default_factory=dict)

    def __getitem__(self, subject_id: int) -> SubscriptionResult:
        return self.results[subject_id]

    @property
    def succeeded(self) -> list[int]:
        return [sid for sid, result in self.results.items() if result.ok]

    @property
    def failed(self) -> list[SubscriptionResult]:
        return [result for result in self.results.values() if not result.ok]
