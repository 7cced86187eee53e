"""Transport layer for the Clawatch connector.

Components:
- ws: WebSocket connection management
- ws_client: WebSocket message iteration and text send
"""

from .ws import connect_websocket
from .ws_client import ClawatchWsClient, ClawatchWsMessage, ClawatchWsMessageType

__all__ = [
    "ClawatchWsClient",
    "ClawatchWsMessage",
    "ClawatchWsMessageType",
    "connect_websocket",
]
