"""
Classified EventSub frames. Every inbound websocket message becomes exactly one
of these variants.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class Welcome:
    session_id: str
    keepalive_timeout_seconds: int | None = None


@dataclass(frozen=True)
class Keepalive:
    pass


@dataclass(frozen=True)
class Notification:
    subject_id: int
    subscription_type: str | None = None


@dataclass(frozen=True)
class Reconnect:
    new_url: str


@dataclass(frozen=True)
class Revocation:
    subject_id: int | None
    status: str


@dataclass(frozen=True)
class Closed:
    code: int | None
    reason: str = ""


@dataclass(frozen=True)
class Unrecognized:
    raw: str
    message_type: str | None = None


NotificationEvent = (
    Welcome | Keepalive | Notification | Reconnect | Revocation | Closed | Unrecognized
)
