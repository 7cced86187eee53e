"""Agent tools and channel delivery on top of a session runtime.

Each tool takes the runtime explicitly (None when the service is not
running) and returns the short text result shown to the agent. Tool
registration with a host is left to the embedding application.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .config import (
    DEFAULT_SESSION_PREFIX,
    ClawatchConfig,
    is_valid_imei,
    parse_imei_from_session_key,
)
from .errors import ClawatchClientError, ClawatchNotConnectedError

if TYPE_CHECKING:
    from collections.abc import Iterable

    from .runtime import SessionRuntime

_LOGGER = logging.getLogger(__name__)

CHANNEL_ID = "clawatch"
TEXT_CHUNK_LIMIT = 500
INTERIM_MAX_CHARS = 80
PUSH_PREVIEW_CHARS = 50

CONTROL_ACTIONS = ("set_interval", "unpair", "get_config")

NOT_CONNECTED = "Clawatch not connected."
NO_PAIRED_WATCH = "No paired watch."

INTERIM_GUIDANCE = (
    "[Behavior] Before long-running tools (exec, curl, web search, multi-step "
    "flows), call clawatch_interim with a brief, natural message. Keep it short "
    "and conversational. The tool will automatically skip if not a clawatch "
    "session."
)


def _default_imei(runtime: SessionRuntime, imei: str | None) -> str | None:
    if imei:
        return imei
    watches = runtime.get_paired_watches()
    return watches[0].imei if watches else None


def _interval(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())
    if not isinstance(value, int) or value < 1:
        return None
    return value


def control_tool(
    runtime: SessionRuntime | None,
    action: str,
    imei: str | None = None,
    interval_sec: Any = None,
) -> str:
    """Send set_interval, unpair or get_config to a watch.

    The IMEI defaults to the first paired watch.
    """
    if runtime is None:
        return NOT_CONNECTED
    target = _default_imei(runtime, imei)
    if target is None:
        return NO_PAIRED_WATCH
    if action not in CONTROL_ACTIONS:
        return "Unknown action."

    try:
        if action == "set_interval":
            seconds = _interval(interval_sec)
            if seconds is None:
                return "Invalid interval. Use a positive number of seconds."
            runtime.send_control(action, target, {"intervalSec": seconds})
            return f"Interval set to {seconds}s for {target}"
        runtime.send_control(action, target)
    except ClawatchClientError as err:
        return f"Control failed: {err}"

    if action == "unpair":
        return f"Unpaired {target}"
    return f"Config request sent for {target}"


def push_tool(runtime: SessionRuntime | None, text: str, imei: str | None = None) -> str:
    """Push text to a watch, for reminders and scheduled jobs."""
    if runtime is None:
        return NOT_CONNECTED
    target = _default_imei(runtime, imei)
    if target is None:
        return NO_PAIRED_WATCH
    try:
        runtime.send_push(target, text)
    except ClawatchClientError as err:
        return f"Push failed: {err}"
    preview = text[:PUSH_PREVIEW_CHARS]
    if len(text) > PUSH_PREVIEW_CHARS:
        preview += "…"
    return f"Pushed to {target}: {preview}"


def interim_tool(
    runtime: SessionRuntime | None,
    session_key: str,
    message: str | None = None,
    prefix: str = DEFAULT_SESSION_PREFIX,
) -> str:
    """Send a brief status line to the watch behind ``session_key``.

    Only acts on watch sessions whose device is currently paired.
    """
    imei = parse_imei_from_session_key(session_key, prefix)
    if imei is None:
        _LOGGER.debug("Interim skipped: not a watch session (%s)", session_key)
        return "Skipped: not a clawatch session."
    if runtime is None:
        return NOT_CONNECTED
    if not runtime.is_paired(imei):
        _LOGGER.info("[%s] Interim skipped: not paired", imei)
        return f"Skipped: IMEI {imei} not paired."

    text = ((message or "").strip() or "ok")[:INTERIM_MAX_CHARS]
    try:
        runtime.send_push(imei, text)
    except ClawatchClientError as err:
        _LOGGER.error("[%s] Interim push failed: %s", imei, err)
        return f"Interim failed: {err}"
    return f"Sent interim: {text}"


def interim_guidance(config: ClawatchConfig) -> str | None:
    """Context to prepend before an agent run, or None when disabled."""
    if not config.interim_status_enabled:
        return None
    return INTERIM_GUIDANCE


# -------------------------------------------------------------------------
# Channel
# -------------------------------------------------------------------------


@dataclass(frozen=True)
class TargetResolution:
    input: str
    resolved: bool
    id: str | None = None
    note: str | None = None


@dataclass(frozen=True)
class DeliveryResult:
    channel: str
    message_id: str


def resolve_targets(inputs: Iterable[str]) -> list[TargetResolution]:
    """Validate delivery targets; each must be a 15-digit IMEI."""
    results = []
    for raw in inputs:
        imei = raw.strip()
        if is_valid_imei(imei):
            results.append(TargetResolution(input=raw, resolved=True, id=imei))
        else:
            results.append(
                TargetResolution(input=raw, resolved=False, note="IMEI must be 15 digits")
            )
    return results


def allowed_senders(runtime: SessionRuntime | None) -> list[str]:
    """IMEIs of the paired watches; empty when the service is not running."""
    if runtime is None:
        return []
    return [w.imei for w in runtime.get_paired_watches()]


def send_text(
    runtime: SessionRuntime | None,
    to: str,
    text: str,
    media_url: str | None = None,
) -> DeliveryResult:
    """Deliver channel text to a watch as a push.

    Raises:
        ClawatchNotConnectedError: No runtime.
        ClawatchClientError: Media was attached, or the push was rejected.
    """
    if runtime is None:
        raise ClawatchNotConnectedError("Clawatch runtime not available")
    if media_url:
        raise ClawatchClientError("Clawatch does not support media; use text only")
    push_id = runtime.send_push(to, text)
    return DeliveryResult(channel=CHANNEL_ID, message_id=push_id)
