"""EventSub websocket session, frame classification and subscription registration."""

from vod_squirrel.events.registration import SubscriptionRegistrar
from vod_squirrel.events.session import EventSession, WebSocketConnector

__all__ = ["EventSession", "SubscriptionRegistrar", "WebSocketConnector"]
