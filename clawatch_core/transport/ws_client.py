"""WebSocket client wrapper for the Clawatch relay."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from websockets.asyncio.client import ClientConnection
from websockets.exceptions import ConnectionClosed
from websockets.protocol import State

from ..errors import ClawatchConnectionError
from .ws import connect_websocket

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


class ClawatchWsMessageType(Enum):
    """Normalized WebSocket message types."""

    TEXT = "text"
    CLOSED = "closed"
    ERROR = "error"


@dataclass(frozen=True)
class ClawatchWsMessage:
    """Normalized WebSocket message payload."""

    type: ClawatchWsMessageType
    data: str | None = None


class ClawatchWsClient:
    """Wrapper around the websockets library for the Clawatch relay."""

    def __init__(self) -> None:
        self._ws: ClientConnection | None = None

    async def connect(self, url: str, *, timeout: float = 15.0) -> None:
        """Connect to the relay websocket."""
        self._ws = await connect_websocket(url, timeout=timeout)

    async def close(self) -> None:
        """Close the websocket connection."""
        if self._ws is not None:
            await self._ws.close()

    @property
    def is_open(self) -> bool:
        """True while the underlying connection reports OPEN."""
        return self._ws is not None and self._ws.state is State.OPEN

    async def send_text(self, text: str) -> None:
        """Send a text frame."""
        if self._ws is None:
            raise ClawatchConnectionError("WebSocket is not connected")
        try:
            await self._ws.send(text)
        except ConnectionClosed as err:
            raise ClawatchConnectionError("WebSocket closed during send") from err

    def __aiter__(self) -> AsyncIterator[ClawatchWsMessage]:
        if self._ws is None:
            raise ClawatchConnectionError("WebSocket is not connected")
        return self._iter_messages()

    async def _iter_messages(self) -> AsyncIterator[ClawatchWsMessage]:
        if self._ws is None:
            raise ClawatchConnectionError("WebSocket is not connected")

        try:
            async for msg in self._ws:
                normalized = self._normalize_message(msg)
                if normalized is None:
                    continue
                yield normalized
        except ConnectionClosed:
            yield ClawatchWsMessage(type=ClawatchWsMessageType.CLOSED)
        except Exception:
            yield ClawatchWsMessage(type=ClawatchWsMessageType.ERROR)
        else:
            # Normal iteration completion means the peer closed gracefully.
            yield ClawatchWsMessage(type=ClawatchWsMessageType.CLOSED)

    @staticmethod
    def _normalize_message(msg: Any) -> ClawatchWsMessage | None:
        """Keep text frames; the relay protocol has no binary frames."""
        if isinstance(msg, (bytes, bytearray, memoryview)):
            return None
        if isinstance(msg, str):
            return ClawatchWsMessage(ClawatchWsMessageType.TEXT, msg)
        return ClawatchWsMessage(ClawatchWsMessageType.TEXT, str(msg))
