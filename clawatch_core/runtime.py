"""Session runtime: a reconnection-transparent relay session.

The runtime wraps one ``Connector`` at a time and adds what the wire
protocol does not know about:
- The paired-watch roster (replaced on registration, trimmed on unbind)
- Session keys that tie a device to an upstream chat session
- Inbound message handling with reply/error correlation
- A connect/disconnect lifecycle that survives socket churn

Usage:
    runtime = SessionRuntime(config, on_inbound_message=handler)
    await runtime.connect()
    runtime.send_push("860000035452456", "Time to stretch")
    await runtime.disconnect()
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

from .config import (
    LEGACY_SESSION_PREFIX,
    ClawatchConfig,
    get_session_key,
    validate_imei,
    websocket_url,
)
from .connector import Connector, ConnectorCallbacks, ReconnectBackoff
from .errors import (
    ClawatchClientError,
    ClawatchConfigError,
    ClawatchConnectionError,
    ClawatchNotConnectedError,
    ClawatchNotPairedError,
)
from .frames import (
    ControlFrame,
    DeviceContext,
    ErrorFrame,
    MessageFrame,
    PushFrame,
    ReplyFrame,
    WatchInfo,
)
from .protocol import new_correlation_id

_LOGGER = logging.getLogger(__name__)

AGENT_ERROR_CODE = "agent_error"

# Grace period for the transport close event before forcing a reconnect.
RECONNECT_FALLBACK_DELAY = 1.0


class InboundMessageHandler(Protocol):
    """Produces reply text for one inbound device message."""

    def __call__(
        self,
        msg_id: str,
        imei: str,
        text: str,
        session_key: str,
        context: DeviceContext | None,
    ) -> Awaitable[str]: ...


@dataclass(frozen=True)
class SessionStatus:
    """Point-in-time view of the session."""

    connected: bool
    watches: list[WatchInfo] = field(default_factory=lambda: [])
    last_error: str | None = None


class SessionRuntime:
    """Single relay session per process, explicitly owned by its creator."""

    def __init__(
        self,
        config: ClawatchConfig,
        on_inbound_message: InboundMessageHandler,
        *,
        reconnect_fallback_delay: float = RECONNECT_FALLBACK_DELAY,
    ) -> None:
        self._config = config
        self._on_inbound_message = on_inbound_message
        self._url = websocket_url(config.api_url)
        self._fallback_delay = reconnect_fallback_delay

        self._backoff = ReconnectBackoff(
            base=config.reconnect_base_delay,
            maximum=config.reconnect_max_delay,
            max_attempts=config.max_reconnect_attempts,
        )
        self._connector: Connector | None = None
        # Bumped whenever the current connector is replaced; stale hooks compare.
        self._generation = 0
        self._disconnecting = False
        self._last_error: str | None = None

        self._paired_watches: list[WatchInfo] = []
        self._session_key_to_imei: dict[str, str] = {}
        self._tasks: set[asyncio.Task[Any]] = set()

        self._roster_callback: Callable[[list[WatchInfo]], None] | None = None
        self._control_ack_callback: Callable[[str, bool], None] | None = None

    # -------------------------------------------------------------------------
    # Public API: Lifecycle
    # -------------------------------------------------------------------------

    @property
    def config(self) -> ClawatchConfig:
        return self._config

    @property
    def backoff(self) -> ReconnectBackoff:
        return self._backoff

    @property
    def last_error(self) -> str | None:
        return self._last_error

    async def connect(self) -> None:
        """Connect and register.

        A failed first attempt is raised to the caller, but background
        retries keep running until ``disconnect()``. Returns without
        connecting when a later ``connect()`` supersedes this one, and raises
        ``ClawatchConnectionError`` when ``disconnect()`` does.
        """
        self._disconnecting = False
        generation = await self._discard_connector()
        if generation != self._generation:
            # A later connect() or disconnect() took over while the old
            # connector was closing.
            if self._disconnecting:
                raise ClawatchConnectionError("Disconnected while connecting")
            return
        await self._do_connect()

    async def disconnect(self) -> None:
        """Stop the session and all retries. Safe to call repeatedly."""
        self._disconnecting = True
        generation = await self._discard_connector()
        if generation != self._generation:
            return
        self._paired_watches = []
        self._session_key_to_imei.clear()
        _LOGGER.info("Clawatch disconnected")

    def is_connected(self) -> bool:
        return self._connector.is_connected() if self._connector else False

    def status(self) -> SessionStatus:
        return SessionStatus(
            connected=self.is_connected(),
            watches=self.get_paired_watches(),
            last_error=self._last_error,
        )

    # -------------------------------------------------------------------------
    # Public API: Callbacks
    # -------------------------------------------------------------------------

    def on_roster_changed(self, callback: Callable[[list[WatchInfo]], None]) -> None:
        """Register callback receiving a roster copy after each change."""
        self._roster_callback = callback

    def on_control_ack(self, callback: Callable[[str, bool], None]) -> None:
        """Register callback for control acknowledgements (id, ok)."""
        self._control_ack_callback = callback

    # -------------------------------------------------------------------------
    # Public API: Roster and Session Keys
    # -------------------------------------------------------------------------

    def get_paired_watches(self) -> list[WatchInfo]:
        return list(self._paired_watches)

    def is_paired(self, imei: str) -> bool:
        return any(w.imei == imei for w in self._paired_watches)

    def get_imei_from_session_key(self, session_key: str) -> str | None:
        return self._session_key_to_imei.get(session_key)

    # -------------------------------------------------------------------------
    # Public API: Outbound
    # -------------------------------------------------------------------------

    def send_push(self, imei: str, text: str) -> str:
        """Push unsolicited text to a paired watch.

        Returns:
            The push correlation id.

        Raises:
            InvalidImeiError: imei is not 15 digits.
            ClawatchNotConnectedError: No open session.
            ClawatchNotPairedError: imei is not in the current roster.
        """
        validate_imei(imei)
        connector = self._connector
        if connector is None or not connector.is_connected():
            raise ClawatchNotConnectedError("Clawatch not connected")
        if not self.is_paired(imei):
            raise ClawatchNotPairedError(f"IMEI {imei} not paired")

        push_id = new_correlation_id("push")
        connector.send(PushFrame(id=push_id, imei=imei, text=text))
        _LOGGER.info("[%s] Push sent: id=%s text=%.50s", imei, push_id, text)
        return push_id

    def send_control(
        self, action: str, imei: str, params: dict[str, Any] | None = None
    ) -> str:
        """Send a control command without waiting for its acknowledgement.

        Returns:
            The control correlation id (match against ``on_control_ack``).
        """
        validate_imei(imei)
        ctrl_id = new_correlation_id("ctrl")
        frame = ControlFrame(id=ctrl_id, action=action, imei=imei, params=params)
        delivered = self._connector.send(frame) if self._connector else False
        if delivered:
            _LOGGER.info("[%s] Control sent: id=%s action=%s", imei, ctrl_id, action)
        else:
            _LOGGER.warning(
                "[%s] Control %s not delivered: not connected", imei, action
            )
        return ctrl_id

    def send_reply(self, msg_id: str, text: str, done: bool = True) -> bool:
        if self._connector is None:
            return False
        return self._connector.send(ReplyFrame(id=msg_id, text=text, done=done))

    # -------------------------------------------------------------------------
    # Internal: Connection Management
    # -------------------------------------------------------------------------

    async def _do_connect(self) -> None:
        token = self._config.api_token
        if not token:
            _LOGGER.error("Clawatch: no apiToken, login first")
            raise ClawatchConfigError(
                "No apiToken. Run: openclaw clawatch login <countryCode> <phoneNumber>"
            )

        self._generation += 1
        generation = self._generation
        connector = Connector(
            self._url,
            token,
            self._connector_callbacks(generation),
            backoff=self._backoff,
            connect_timeout=self._config.connect_timeout,
            ping_interval=self._config.ping_interval,
        )
        self._connector = connector

        try:
            await connector.connect()
        except ClawatchClientError as err:
            self._last_error = str(err) or type(err).__name__
            _LOGGER.error("Clawatch connect() rejected: %s", err)
            if not self._disconnecting and connector is self._connector:
                asyncio.get_running_loop().call_later(
                    self._fallback_delay, self._fallback_reconnect, generation
                )
            raise

        self._last_error = None

    async def _discard_connector(self) -> int:
        """Tear down the current connector before anything replaces it.

        Returns the generation set by this call. Callers compare it after the
        await; a mismatch means another lifecycle call ran in the meantime.
        """
        connector, self._connector = self._connector, None
        self._generation += 1
        generation = self._generation
        if connector is not None:
            await connector.disconnect()
        return generation

    def _connector_callbacks(self, generation: int) -> ConnectorCallbacks:
        return ConnectorCallbacks(
            on_registered=self._handle_registered,
            on_error=self._handle_error,
            on_message=self._handle_inbound_message,
            on_unbound=self._handle_unbound,
            on_control_ack=self._handle_control_ack,
            on_reconnect=lambda: self._spawn(self._attempt_reconnect(generation)),
        )

    async def _attempt_reconnect(self, generation: int) -> None:
        """Replace the connector. No-op for stale generations or after disconnect."""
        if self._disconnecting or generation != self._generation:
            return
        _LOGGER.info("Clawatch: reconnecting after disconnect...")
        discarded = await self._discard_connector()
        if self._disconnecting or discarded != self._generation:
            return
        try:
            await self._do_connect()
        except ClawatchConfigError:
            return
        except ClawatchClientError as err:
            _LOGGER.error("Clawatch reconnect failed: %s", err)

    def _fallback_reconnect(self, generation: int) -> None:
        """Force a retry when a rejected connect() produced no close event."""
        connector = self._connector
        if self._disconnecting or generation != self._generation or connector is None:
            return
        if connector.is_connected() or connector.reconnect_pending:
            return
        _LOGGER.info("Clawatch: manual reconnect after connect() failure")
        connector.schedule_reconnect()

    def _spawn(self, coro: Awaitable[Any]) -> asyncio.Task[Any]:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # -------------------------------------------------------------------------
    # Internal: Connector Callbacks
    # -------------------------------------------------------------------------

    def _handle_registered(self, watches: list[WatchInfo]) -> None:
        self._paired_watches = list(watches)
        _LOGGER.info(
            "Clawatch registered, watches: %s",
            [w.to_dict() for w in self._paired_watches],
        )
        self._notify_roster()

    def _handle_unbound(self, imei: str, reason: str | None) -> None:
        before = len(self._paired_watches)
        self._paired_watches = [w for w in self._paired_watches if w.imei != imei]
        _LOGGER.info("[%s] Watch unbound: reason=%s", imei, reason or "")
        if len(self._paired_watches) != before:
            self._notify_roster()

    def _handle_error(self, code: str | None, message: str, msg_id: str | None) -> None:
        self._last_error = f"[{code or ''}] {message}"
        _LOGGER.error("Clawatch error [%s]: %s", code or "", message)

    def _handle_control_ack(self, ctrl_id: str, ok: bool) -> None:
        _LOGGER.debug("Control ack: id=%s ok=%s", ctrl_id, ok)
        if self._control_ack_callback:
            self._control_ack_callback(ctrl_id, ok)

    def _notify_roster(self) -> None:
        if self._roster_callback:
            self._roster_callback(self.get_paired_watches())

    def _handle_inbound_message(self, frame: MessageFrame) -> None:
        _LOGGER.info("[%s] Inbound: text=%.50s", frame.imei, frame.text)
        session_key = get_session_key(self._config.session_key_prefix, frame.imei)
        self._session_key_to_imei[session_key] = frame.imei
        # Some callers add their own "session:" prefix before looking keys up.
        self._session_key_to_imei[f"{LEGACY_SESSION_PREFIX}{session_key}"] = frame.imei
        self._spawn(self._answer(frame, session_key))

    async def _answer(self, frame: MessageFrame, session_key: str) -> None:
        """Run the handler and send exactly one Reply or Error for the message."""
        try:
            reply_text = await self._on_inbound_message(
                frame.id, frame.imei, frame.text, session_key, frame.context
            )
        except Exception as err:
            message = str(err) or type(err).__name__
            _LOGGER.error(
                "[%s] Message error: id=%s %s", frame.imei, frame.id, message,
                exc_info=True,
            )
            self._send_current(ErrorFrame(id=frame.id, code=AGENT_ERROR_CODE, message=message))
            return

        _LOGGER.info(
            "[%s] Sending reply: id=%s text=%.50s", frame.imei, frame.id, reply_text
        )
        self._send_current(ReplyFrame(id=frame.id, text=reply_text, done=True))

    def _send_current(self, frame: ReplyFrame | ErrorFrame) -> bool:
        # The connector may have been replaced while the handler ran.
        if self._connector is None:
            return False
        return self._connector.send(frame)
