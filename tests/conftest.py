"""Pytest configuration and fixtures for clawatch_core tests."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from clawatch_core.errors import ClawatchConnectionError
from clawatch_core.transport.ws_client import ClawatchWsMessage, ClawatchWsMessageType

IMEI = "860000035452456"
OTHER_IMEI = "860000035452457"


@pytest.fixture
def mock_session() -> MagicMock:
    """Create a mock aiohttp ClientSession."""
    import aiohttp

    return MagicMock(spec=aiohttp.ClientSession)


@pytest.fixture
def mock_response() -> AsyncMock:
    """Create a mock aiohttp ClientResponse."""
    response = AsyncMock()
    response.__aenter__.return_value = response
    response.__aexit__.return_value = None
    return response


class AsyncLineStream:
    """Stand-in for ``ClientResponse.content``: iterates raw byte lines."""

    def __init__(self, lines: list[bytes]) -> None:
        self._lines = list(lines)

    def __aiter__(self):
        return self

    async def __anext__(self) -> bytes:
        if not self._lines:
            raise StopAsyncIteration
        return self._lines.pop(0)


def create_mock_response(
    status: int = 200,
    json_data: Any = None,
    text_data: str | None = None,
    stream_lines: list[str] | None = None,
) -> AsyncMock:
    """Create a configured mock response.

    Args:
        status: HTTP status code
        json_data: Data to return from json() call
        text_data: Data to return from text() call
        stream_lines: Lines to yield from the streamed body

    Returns:
        Configured AsyncMock response
    """
    response = AsyncMock()
    response.status = status

    if json_data is not None:
        response.json.return_value = json_data
    if text_data is not None:
        response.text.return_value = text_data
    if stream_lines is not None:
        response.content = AsyncLineStream(
            [f"{line}\n".encode() for line in stream_lines]
        )

    response.__aenter__.return_value = response
    response.__aexit__.return_value = None

    return response


class FakeWsClient:
    """In-memory relay transport with the ClawatchWsClient interface.

    ``auto_register`` answers the register frame with a registered frame
    carrying ``watches``; ``auto_error`` answers it with an error frame.
    """

    def __init__(
        self,
        *,
        auto_register: bool = True,
        watches: list[dict[str, Any]] | None = None,
        auto_error: dict[str, Any] | None = None,
        connect_error: Exception | None = None,
        connect_delay: float = 0.0,
        close_delay: float = 0.0,
    ) -> None:
        self.auto_register = auto_register
        self.watches = [{"imei": IMEI}] if watches is None else watches
        self.auto_error = auto_error
        self.connect_error = connect_error
        self.connect_delay = connect_delay
        self.close_delay = close_delay
        self.url: str | None = None
        self.sent: list[str] = []
        self.is_open = False
        self.close_calls = 0
        self._inbox: asyncio.Queue[ClawatchWsMessage] = asyncio.Queue()

    async def connect(self, url: str, *, timeout: float = 15.0) -> None:
        self.url = url
        if self.connect_delay:
            await asyncio.sleep(self.connect_delay)
        if self.connect_error is not None:
            raise self.connect_error
        self.is_open = True

    async def close(self) -> None:
        self.close_calls += 1
        if self.close_delay:
            # The closing handshake keeps the socket open meanwhile.
            await asyncio.sleep(self.close_delay)
        if self.is_open:
            self.is_open = False
            self._inbox.put_nowait(ClawatchWsMessage(ClawatchWsMessageType.CLOSED))

    async def send_text(self, text: str) -> None:
        if not self.is_open:
            raise ClawatchConnectionError("WebSocket closed during send")
        self.sent.append(text)
        frame = json.loads(text)
        if frame.get("type") != "register":
            return
        if self.auto_error is not None:
            self.push({"type": "error", **self.auto_error})
        elif self.auto_register:
            self.push({"type": "registered", "watches": self.watches})

    def push(self, frame: dict[str, Any] | str) -> None:
        """Deliver a frame from the relay."""
        text = frame if isinstance(frame, str) else json.dumps(frame)
        self._inbox.put_nowait(ClawatchWsMessage(ClawatchWsMessageType.TEXT, text))

    def drop(self) -> None:
        """Simulate the relay dropping the connection."""
        self.is_open = False
        self._inbox.put_nowait(ClawatchWsMessage(ClawatchWsMessageType.CLOSED))

    def fail(self) -> None:
        """Simulate a transport error that leaves the socket open."""
        self._inbox.put_nowait(ClawatchWsMessage(ClawatchWsMessageType.ERROR))

    def sent_frames(self, frame_type: str | None = None) -> list[dict[str, Any]]:
        frames = [json.loads(text) for text in self.sent]
        if frame_type is None:
            return frames
        return [f for f in frames if f.get("type") == frame_type]

    def __aiter__(self):
        return self

    async def __anext__(self) -> ClawatchWsMessage:
        msg = await self._inbox.get()
        if msg.type is ClawatchWsMessageType.CLOSED:
            # Later reads end the iteration.
            self._inbox.put_nowait(msg)
        return msg


class FakeWsFactory:
    """Callable replacing the ClawatchWsClient class; records each instance."""

    def __init__(self, **defaults: Any) -> None:
        self.defaults = defaults
        self.instances: list[FakeWsClient] = []
        self.plans: list[dict[str, Any]] = []

    def plan(self, **overrides: Any) -> None:
        """Queue per-instance overrides for the next created client."""
        self.plans.append(overrides)

    def __call__(self) -> FakeWsClient:
        options = {**self.defaults, **(self.plans.pop(0) if self.plans else {})}
        client = FakeWsClient(**options)
        self.instances.append(client)
        return client

    @property
    def latest(self) -> FakeWsClient:
        return self.instances[-1]

    @property
    def open_count(self) -> int:
        return sum(1 for c in self.instances if c.is_open)


@pytest.fixture
def ws_factory(monkeypatch: pytest.MonkeyPatch) -> FakeWsFactory:
    """Patch the connector's transport class with a recording fake."""
    factory = FakeWsFactory()
    monkeypatch.setattr("clawatch_core.connector.ClawatchWsClient", factory)
    return factory


async def wait_for_condition(
    predicate: Callable[[], bool], timeout: float = 2.0, interval: float = 0.005
) -> None:
    """Poll until predicate() is true or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("Condition not met before timeout")
        await asyncio.sleep(interval)
