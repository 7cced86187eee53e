"""Connector: one relay connection and the wire protocol on top of it.

A connector instance owns at most one transport connection for its whole
life. It handles:
- Opening the transport and the register/registered handshake
- Frame decode and dispatch to callbacks
- Application-level ping heartbeat
- Handing unplanned closes to a reconnect hook after a backoff delay

All state transitions happen on a single owner task that consumes one event
queue (decoded text, heartbeat ticks, transport close). A reader task feeds
the queue from the socket and a writer task drains outbound frames in order,
so ``send()`` never suspends the caller.

The reconnect hook is supplied by the session runtime, which replaces the
whole connector on every reconnect. Backoff state therefore lives in a
``ReconnectBackoff`` that outlives individual connectors.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .config import CLIENT_ID, PLUGIN_VERSION
from .errors import (
    ClawatchAuthError,
    ClawatchClientError,
    ClawatchConnectionError,
    ClawatchTimeout,
    FrameDecodeError,
)
from .frames import (
    ControlAckFrame,
    ErrorFrame,
    Frame,
    MessageFrame,
    PingFrame,
    PongFrame,
    RegisteredFrame,
    UnboundFrame,
    UnknownFrame,
    WatchInfo,
)
from .protocol import build_register, decode_frame, encode_frame
from .transport.ws_client import ClawatchWsClient, ClawatchWsMessageType

_LOGGER = logging.getLogger(__name__)

CONNECT_TIMEOUT = 15.0
PING_INTERVAL = 45.0
BACKOFF_BASE = 1.0
BACKOFF_MAX = 5 * 60.0

FATAL_ERROR_CODES = frozenset({"invalid_token", "unauthorized"})


class ConnectorState(Enum):
    """Lifecycle of a single connection."""

    IDLE = "idle"
    CONNECTING = "connecting"
    AWAITING_REGISTRATION = "awaiting_registration"
    READY = "ready"
    CLOSING = "closing"
    RECONNECTING = "reconnecting"


def compute_backoff(attempt: int, base: float, maximum: float) -> float:
    """Delay before reconnect attempt ``attempt`` (0-based)."""
    return min(base * (2**attempt), maximum)


class ReconnectBackoff:
    """Exponential backoff schedule shared across connector instances.

    ``max_attempts`` of 0 means retry forever.
    """

    def __init__(
        self,
        base: float = BACKOFF_BASE,
        maximum: float = BACKOFF_MAX,
        max_attempts: int = 0,
    ) -> None:
        self.base = base
        self.maximum = maximum
        self.max_attempts = max_attempts
        self._attempts = 0

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def exhausted(self) -> bool:
        return self.max_attempts > 0 and self._attempts >= self.max_attempts

    def next_delay(self) -> float | None:
        """Return the next delay and count the attempt, or None when exhausted."""
        if self.exhausted:
            return None
        delay = compute_backoff(self._attempts, self.base, self.maximum)
        self._attempts += 1
        return delay

    def reset(self) -> None:
        self._attempts = 0


def _noop(*_args: Any) -> None:
    return None


@dataclass
class ConnectorCallbacks:
    """Hooks the connector calls from its owner task.

    Callbacks must not block; long work belongs in a separate task.
    """

    on_registered: Callable[[list[WatchInfo]], None] = _noop
    on_error: Callable[[str | None, str, str | None], None] = _noop
    on_message: Callable[[MessageFrame], None] = _noop
    on_unbound: Callable[[str, str | None], None] = _noop
    on_pong: Callable[[], None] = _noop
    on_control_ack: Callable[[str, bool], None] | None = None
    # Called once per unplanned close, after the backoff delay.
    on_reconnect: Callable[[], None] | None = None


class _EventKind(Enum):
    TEXT = "text"
    HEARTBEAT = "heartbeat"
    CLOSED = "closed"


@dataclass(frozen=True, slots=True)
class _Event:
    kind: _EventKind
    data: str | None = None


class Connector:
    """Owns a single relay connection.

    Usage:
        connector = Connector(url, token, ConnectorCallbacks(on_message=...))
        await connector.connect()       # returns once registered
        connector.send(ReplyFrame(id="m1", text="hi", done=True))
        await connector.disconnect()
    """

    def __init__(
        self,
        url: str,
        token: str,
        callbacks: ConnectorCallbacks,
        *,
        backoff: ReconnectBackoff | None = None,
        client_id: str = CLIENT_ID,
        version: str = PLUGIN_VERSION,
        connect_timeout: float = CONNECT_TIMEOUT,
        ping_interval: float = PING_INTERVAL,
    ) -> None:
        self.url = url
        self._token = token
        self._callbacks = callbacks
        self._backoff = backoff if backoff is not None else ReconnectBackoff()
        self._client_id = client_id
        self._version = version
        self._connect_timeout = connect_timeout
        self._ping_interval = ping_interval

        self._state = ConnectorState.IDLE
        self._ws: ClawatchWsClient | None = None
        self._ready: asyncio.Future[None] | None = None
        self._disconnect_requested = False

        self._events: asyncio.Queue[_Event] = asyncio.Queue()
        self._outbox: asyncio.Queue[str] = asyncio.Queue()

        self._reader_task: asyncio.Task[None] | None = None
        self._writer_task: asyncio.Task[None] | None = None
        self._owner_task: asyncio.Task[None] | None = None
        self._ping_task: asyncio.Task[None] | None = None
        self._reconnect_handle: asyncio.TimerHandle | None = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    @property
    def state(self) -> ConnectorState:
        return self._state

    @property
    def backoff(self) -> ReconnectBackoff:
        return self._backoff

    @property
    def reconnect_pending(self) -> bool:
        """True once this connector has scheduled (or fired) its reconnect hook."""
        return self._reconnect_handle is not None

    def is_connected(self) -> bool:
        """True iff the transport reports itself open."""
        return self._ws is not None and self._ws.is_open

    async def connect(self) -> None:
        """Open the transport, register, and wait for the relay's answer.

        Raises:
            ClawatchTimeout: Transport open or registration exceeded the timeout.
            ClawatchAuthError: The relay rejected the token.
            ClawatchConnectionError: Transport failed or closed before registration.
            ClawatchHandshakeError: WebSocket upgrade failed.
        """
        if self._state is not ConnectorState.IDLE or self._disconnect_requested:
            raise ClawatchClientError(
                f"Connector cannot connect from state {self._state.value}"
            )

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._connect_timeout
        ready: asyncio.Future[None] = loop.create_future()
        self._ready = ready
        self._set_state(ConnectorState.CONNECTING)
        _LOGGER.info(
            "[conn] Connecting to %s (attempt #%d)", self.url, self._backoff.attempts + 1
        )

        try:
            ws = ClawatchWsClient()
            try:
                await ws.connect(self.url, timeout=self._connect_timeout)
            except ClawatchClientError as err:
                _LOGGER.warning("[conn] Connection failed: %s", err)
                # A transport that never opened still ends in a close.
                self._handle_transport_closed()
                raise

            if self._disconnect_requested:
                with contextlib.suppress(Exception):
                    await ws.close()
                raise ClawatchConnectionError("Disconnected while connecting")

            self._ws = ws
            self._start_io_tasks(ws)
            self._set_state(ConnectorState.AWAITING_REGISTRATION)
            self.send(
                build_register(self._token, client=self._client_id, version=self._version)
            )
            _LOGGER.debug("[conn] Register sent")

            remaining = max(0.0, deadline - loop.time())
            try:
                await asyncio.wait_for(asyncio.shield(ready), timeout=remaining)
            except TimeoutError as err:
                _LOGGER.warning("[conn] Registration timed out")
                await self._abort_transport()
                raise ClawatchTimeout("WebSocket connection timeout") from err
            except ClawatchAuthError:
                await self._abort_transport()
                raise
        finally:
            if not ready.done():
                ready.cancel()
            elif not ready.cancelled():
                ready.exception()  # mark retrieved

    def send(self, frame: Frame | dict[str, Any]) -> bool:
        """Queue a frame for delivery.

        Best effort: returns False and drops the frame when the transport is
        not open. Never raises, never suspends.
        """
        if not self.is_connected():
            _LOGGER.debug(
                "[conn] Dropping %s frame: transport not open", _frame_type(frame)
            )
            return False
        self._outbox.put_nowait(encode_frame(frame))
        return True

    async def disconnect(self) -> None:
        """Close the connection without triggering the reconnect hook.

        Idempotent and never raises.
        """
        self._disconnect_requested = True
        self._cancel_reconnect()
        self._stop_heartbeat()
        if self._state is not ConnectorState.IDLE:
            self._set_state(ConnectorState.CLOSING)

        ws, self._ws = self._ws, None
        if ws is not None:
            await _close_quietly(ws)

        for task in (self._reader_task, self._writer_task, self._owner_task):
            await _cancel_task(task)
        self._reader_task = self._writer_task = self._owner_task = None

        self._fail_ready(ClawatchConnectionError("Disconnected"))
        self._set_state(ConnectorState.IDLE)

    def schedule_reconnect(self) -> float | None:
        """Arm the reconnect hook after the next backoff delay.

        At most once per connector. Returns the delay, or None when nothing
        was scheduled.
        """
        hook = self._callbacks.on_reconnect
        if (
            hook is None
            or self._disconnect_requested
            or self._reconnect_handle is not None
        ):
            return None

        delay = self._backoff.next_delay()
        if delay is None:
            _LOGGER.error(
                "[conn] Giving up after %d reconnect attempts", self._backoff.attempts
            )
            return None

        _LOGGER.info(
            "[conn] Reconnecting in %.1fs (attempt %d)", delay, self._backoff.attempts
        )
        self._set_state(ConnectorState.RECONNECTING)
        self._reconnect_handle = asyncio.get_running_loop().call_later(
            delay, self._fire_reconnect, hook
        )
        return delay

    # -------------------------------------------------------------------------
    # Internal: State Machine
    # -------------------------------------------------------------------------

    def _set_state(self, state: ConnectorState) -> None:
        if self._state is not state:
            _LOGGER.debug("[conn] State: %s → %s", self._state.value, state.value)
            self._state = state

    def _fail_ready(self, err: Exception) -> None:
        if self._ready is not None and not self._ready.done():
            self._ready.set_exception(err)

    def _handle_transport_closed(self) -> None:
        """Tear down after the transport ended, planned or not."""
        self._stop_heartbeat()
        self._ws = None
        self._fail_ready(ClawatchConnectionError("WebSocket closed before registration"))

        if self._disconnect_requested:
            self._set_state(ConnectorState.IDLE)
            return

        _LOGGER.info("[conn] Connection closed")
        self._set_state(ConnectorState.IDLE)
        self.schedule_reconnect()

    def _fire_reconnect(self, hook: Callable[[], None]) -> None:
        if self._disconnect_requested:
            return
        try:
            hook()
        except Exception:
            _LOGGER.exception("[conn] Reconnect hook failed")

    def _cancel_reconnect(self) -> None:
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()

    async def _abort_transport(self) -> None:
        """Close the socket after a failed handshake; the close stays unplanned."""
        if self._ws is not None:
            await _close_quietly(self._ws)

    # -------------------------------------------------------------------------
    # Internal: IO Tasks
    # -------------------------------------------------------------------------

    def _start_io_tasks(self, ws: ClawatchWsClient) -> None:
        self._reader_task = asyncio.create_task(self._read_loop(ws))
        self._writer_task = asyncio.create_task(self._write_loop())
        self._owner_task = asyncio.create_task(self._process_events())

    async def _read_loop(self, ws: ClawatchWsClient) -> None:
        """Feed transport messages into the event queue until it closes."""
        try:
            async for msg in ws:
                if msg.type is ClawatchWsMessageType.TEXT:
                    self._events.put_nowait(_Event(_EventKind.TEXT, msg.data))
                    continue
                if msg.type is ClawatchWsMessageType.ERROR:
                    _LOGGER.error("[conn] WebSocket error")
                break
        except ClawatchClientError as err:
            _LOGGER.warning("[conn] Client error: %s", err)
        finally:
            self._events.put_nowait(_Event(_EventKind.CLOSED))

    async def _write_loop(self) -> None:
        """Send queued frames in order; drop them once the socket is gone."""
        while True:
            text = await self._outbox.get()
            ws = self._ws
            if ws is None or not ws.is_open:
                _LOGGER.debug("[conn] Dropping queued frame: transport closed")
                continue
            try:
                await ws.send_text(text)
            except ClawatchClientError as err:
                _LOGGER.debug("[conn] Send failed: %s", err)

    async def _process_events(self) -> None:
        """Owner task: the only place connection state changes after open."""
        while True:
            event = await self._events.get()
            if event.kind is _EventKind.CLOSED:
                ws = self._ws
                self._handle_transport_closed()
                # The reader may stop on an error while the socket is still open.
                if ws is not None and ws.is_open:
                    await _close_quietly(ws)
                await _cancel_task(self._writer_task)
                return
            try:
                if event.kind is _EventKind.TEXT:
                    self._handle_text(event.data or "")
                else:
                    self.send(PingFrame())
            except Exception:
                _LOGGER.exception("[conn] Failed to process %s event", event.kind.value)

    # -------------------------------------------------------------------------
    # Internal: Keepalive
    # -------------------------------------------------------------------------

    def _start_heartbeat(self) -> None:
        self._stop_heartbeat()
        self._ping_task = asyncio.create_task(self._heartbeat_loop())

    def _stop_heartbeat(self) -> None:
        if self._ping_task is not None:
            self._ping_task.cancel()
            self._ping_task = None

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self._ping_interval)
            self._events.put_nowait(_Event(_EventKind.HEARTBEAT))

    # -------------------------------------------------------------------------
    # Internal: Protocol Handlers
    # -------------------------------------------------------------------------

    def _handle_text(self, text: str) -> None:
        try:
            frame = decode_frame(text)
        except FrameDecodeError as err:
            _LOGGER.warning("[conn] Invalid frame: %s (%.200s)", err, text)
            self._safe_call(self._callbacks.on_error, "invalid_frame", str(err), None)
            return
        self._dispatch(frame)

    def _dispatch(self, frame: Frame | UnknownFrame) -> None:
        callbacks = self._callbacks
        match frame:
            case RegisteredFrame():
                self._handle_registered(frame)
            case ErrorFrame():
                self._handle_error(frame)
            case PongFrame():
                self._safe_call(callbacks.on_pong)
            case UnboundFrame():
                self._safe_call(callbacks.on_unbound, frame.imei, frame.reason)
            case MessageFrame():
                _LOGGER.debug(
                    "[conn] Received message: id=%s imei=%s text=%.50s",
                    frame.id,
                    frame.imei,
                    frame.text,
                )
                self._safe_call(callbacks.on_message, frame)
            case ControlAckFrame():
                if callbacks.on_control_ack is not None:
                    self._safe_call(callbacks.on_control_ack, frame.id, frame.ok)
            case UnknownFrame():
                _LOGGER.debug("[conn] Unknown frame type: %s", frame.frame_type)
            case _:
                _LOGGER.debug("[conn] Ignoring outbound-only frame: %s", frame.type)

    def _handle_registered(self, frame: RegisteredFrame) -> None:
        watches = list(frame.watches)
        if self._state is ConnectorState.AWAITING_REGISTRATION:
            self._set_state(ConnectorState.READY)
            self._backoff.reset()
            self._start_heartbeat()
            _LOGGER.info("[conn] Registered (%d watches)", len(watches))
        self._safe_call(self._callbacks.on_registered, watches)
        if self._ready is not None and not self._ready.done():
            self._ready.set_result(None)

    def _handle_error(self, frame: ErrorFrame) -> None:
        self._safe_call(self._callbacks.on_error, frame.code, frame.message, frame.id)
        if (
            frame.code in FATAL_ERROR_CODES
            and self._state is ConnectorState.AWAITING_REGISTRATION
        ):
            _LOGGER.error("[conn] Authentication rejected: %s", frame.message)
            self._fail_ready(ClawatchAuthError(frame.message, frame.code))

    @staticmethod
    def _safe_call(callback: Callable[..., Any], *args: Any) -> None:
        try:
            callback(*args)
        except Exception:
            _LOGGER.exception(
                "[conn] Callback %s failed", getattr(callback, "__name__", callback)
            )


def _frame_type(frame: Frame | dict[str, Any]) -> str:
    if isinstance(frame, dict):
        return str(frame.get("type"))
    return frame.type


async def _cancel_task(task: asyncio.Task[Any] | None) -> None:
    if task is None or task.done() or task is asyncio.current_task():
        return
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task


async def _close_quietly(ws: ClawatchWsClient) -> None:
    try:
        await asyncio.wait_for(ws.close(), timeout=2.0)
    except TimeoutError:
        _LOGGER.warning("[conn] WebSocket close timed out")
    except Exception as err:  # closing a broken socket can raise anything
        _LOGGER.debug("[conn] Error closing WebSocket: %s", err)
