"""
Classifies raw EventSub websocket frames into typed events.

Frames are validated with lenient pydantic models (unknown fields ignored,
every field optional) and then matched explicitly on `metadata.message_type`.
Anything that does not match a known shape becomes `Unrecognized`; a known
type that lacks its required field raises ProtocolError.
"""

import json
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError

from vod_squirrel.exceptions import ProtocolError
from vod_squirrel.models.events import (
    Keepalive,
    Notification,
    NotificationEvent,
    Reconnect,
    Revocation,
    Unrecognized,
    Welcome,
)

MESSAGE_WELCOME = "session_welcome"
MESSAGE_KEEPALIVE = "session_keepalive"
MESSAGE_NOTIFICATION = "notification"
MESSAGE_RECONNECT = "session_reconnect"
MESSAGE_REVOCATION = "revocation"


class _Lenient(BaseModel):
    model_config = ConfigDict(extra="ignore")


class FrameMetadata(_Lenient):
    message_id: str | None = None
    message_type: str | None = None
    message_timestamp: str | None = None
    subscription_type: str | None = None


class FrameSession(_Lenient):
    id: str | None = None
    status: str | None = None
    keepalive_timeout_seconds: int | None = None
    reconnect_url: str | None = None


class FrameSubscription(_Lenient):
    id: str | None = None
    type: str | None = None
    status: str | None = None
    condition: dict[str, Any] | None = None


class FrameEvent(_Lenient):
    broadcaster_user_id: str | None = None
    broadcaster_user_login: str | None = None


class FramePayload(_Lenient):
    session: FrameSession | None = None
    subscription: FrameSubscription | None = None
    event: FrameEvent | None = None


class Frame(_Lenient):
    metadata: FrameMetadata = FrameMetadata()
    payload: FramePayload = FramePayload()


def parse_frame(raw: str) -> Frame:
    """
    Parses a text frame into a Frame model.

    Raises:
        ProtocolError: If the frame is not a JSON object of the expected shape.
    """
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"Frame is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ProtocolError("Frame is not a JSON object.")
    try:
        return Frame.model_validate(data)
    except ValidationError as e:
        raise ProtocolError(f"Frame has an unexpected shape: {e}") from e


def _parse_subject_id(value: str | None, context: str) -> int:
    if value is None:
        raise ProtocolError(f"{context} does not contain broadcaster_user_id.")
    try:
        return int(value)
    except ValueError as e:
        raise ProtocolError(f"{context} has a non-numeric subject id: {value!r}") from e


def classify_frame(raw: str) -> NotificationEvent:
    """
    Turns one text frame into a NotificationEvent.

    Raises:
        ProtocolError: If the frame cannot be parsed, or a recognized message
            type is missing the field it is defined by.
    """
    frame = parse_frame(raw)
    message_type = frame.metadata.message_type
    payload = frame.payload
    session = payload.session

    if message_type == MESSAGE_KEEPALIVE:
        return Keepalive()

    if message_type == MESSAGE_NOTIFICATION:
        event = payload.event
        subject_id = _parse_subject_id(
            event.broadcaster_user_id if event else None, "Notification message"
        )
        return Notification(
            subject_id=subject_id,
            subscription_type=frame.metadata.subscription_type
            or (payload.subscription.type if payload.subscription else None),
        )

    if message_type == MESSAGE_RECONNECT:
        if not session or not session.reconnect_url:
            raise ProtocolError("Reconnect message does not contain reconnect_url.")
        return Reconnect(new_url=session.reconnect_url)

    if message_type == MESSAGE_REVOCATION:
        subscription = payload.subscription
        condition = (subscription.condition or {}) if subscription else {}
        subject = condition.get("broadcaster_user_id")
        return Revocation(
            subject_id=int(subject) if str(subject).isdigit() else None,
            status=(subscription.status if subscription else None) or "unknown",
        )

    if message_type == MESSAGE_WELCOME:
        if not session or not session.id:
            raise ProtocolError("Welcome message does not contain a session id.")
        return Welcome(
            session_id=session.id,
            keepalive_timeout_seconds=session.keepalive_timeout_seconds,
        )

    # A welcome is also recognized by the presence of a session id alone
    if session and session.id:
        return Welcome(
            session_id=session.id,
            keepalive_timeout_seconds=session.keepalive_timeout_seconds,
        )

    return Unrecognized(raw=raw, message_type=message_type)
