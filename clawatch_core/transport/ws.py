"""Opening the relay WebSocket."""

from __future__ import annotations

import asyncio

import websockets
from websockets.asyncio.client import ClientConnection
from websockets.exceptions import (
    InvalidHandshake,
    InvalidURI,
    WebSocketException,
)

from ..config import CLIENT_ID, PLUGIN_VERSION
from ..errors import (
    ClawatchConnectionError,
    ClawatchHandshakeError,
    ClawatchTimeout,
)

# Relay frames are small JSON objects; anything larger closes the socket (1009).
MAX_FRAME_SIZE = 1024 * 1024
USER_AGENT = f"{CLIENT_ID}/{PLUGIN_VERSION}"


async def connect_websocket(
    url: str,
    *,
    ping_interval: float | None = None,
    timeout: float = 15.0,
    max_size: int | None = MAX_FRAME_SIZE,
    user_agent: str = USER_AGENT,
) -> ClientConnection:
    """Open a WebSocket to the relay.

    Keepalive is the connector's ``ping`` frame, so library pings are off
    by default.

    Args:
        url: ws:// or wss:// relay endpoint
        ping_interval: Interval for library ping frames (None disables)
        timeout: Connection timeout
        max_size: Largest accepted inbound message in bytes
        user_agent: User-Agent header sent with the upgrade request

    Raises:
        ClawatchHandshakeError: Bad URL or rejected upgrade.
        ClawatchTimeout: No upgrade within ``timeout``.
        ClawatchConnectionError: Network failure.
    """
    if not url.startswith(("ws://", "wss://")):
        raise ClawatchHandshakeError(f"Relay URL must be ws:// or wss://: {url}")
    try:
        return await asyncio.wait_for(
            websockets.connect(
                url,
                ping_interval=ping_interval,
                close_timeout=5,
                max_size=max_size,
                user_agent_header=user_agent,
            ),
            timeout=timeout,
        )
    except TimeoutError as err:
        raise ClawatchTimeout("WebSocket connection timeout") from err
    except (InvalidHandshake, InvalidURI) as err:
        raise ClawatchHandshakeError(f"WebSocket handshake failed: {err}") from err
    except (OSError, WebSocketException) as err:
        raise ClawatchConnectionError(f"WebSocket connection failed: {err}") from err
