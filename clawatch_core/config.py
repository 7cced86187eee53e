"""Configuration resolution and session-key helpers.

The host framework hands over a loosely typed mapping (camelCase keys, as
stored in its plugin config). ``resolve_config`` turns that into a frozen
``ClawatchConfig``; ``load_config`` does the same for a standalone YAML file.
"""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit

import yaml

from .errors import ClawatchConfigError, InvalidImeiError

PLUGIN_VERSION = "0.1.22"
CLIENT_ID = "openclaw-clawatch"

DEFAULT_SESSION_PREFIX = "clawatch:"
DEFAULT_AGENT_ID = "main"
DEFAULT_API_URL = "wss://api.sg.mempat.com/api/v1/watch/connect"
DEFAULT_GATEWAY_PORT = 18789
API_URL_ENV_KEYS: tuple[str, ...] = ("CLAWATCH_API_URL", "OPENCLAW_CLAWATCH_API_URL")

LEGACY_SESSION_PREFIX = "session:"

_IMEI_RE = re.compile(r"[0-9]{15}")


@dataclass(frozen=True)
class ClawatchConfig:
    """Resolved plugin configuration.

    Attributes:
        enabled: Service master switch.
        api_url: Relay endpoint (ws/wss, or http/https converted on connect).
        device_code: Optional device code from the host config.
        api_token: Bearer credential obtained from login; None when signed off.
        agent_id: Agent identifier forwarded to the chat gateway.
        session_key_prefix: Prefix used to derive per-device session keys.
        tts_system_prompt: System prompt override; empty string disables it.
        interim_status_enabled: Whether interim status guidance is injected.
    """

    enabled: bool = True
    api_url: str = DEFAULT_API_URL
    device_code: str | None = None
    api_token: str | None = None
    agent_id: str = DEFAULT_AGENT_ID
    session_key_prefix: str = DEFAULT_SESSION_PREFIX
    tts_system_prompt: str | None = None
    interim_status_enabled: bool = True

    # Connection tunables
    connect_timeout: float = 15.0
    ping_interval: float = 45.0
    reconnect_base_delay: float = 1.0
    reconnect_max_delay: float = 300.0
    max_reconnect_attempts: int = 0

    @property
    def signed_in(self) -> bool:
        return bool(self.api_token)


@dataclass(frozen=True)
class GatewayConfig:
    """Connection details for the local chat-completion gateway."""

    base_url: str
    token: str
    agent_id: str = DEFAULT_AGENT_ID
    tts_system_prompt: str | None = None


def _str_or_none(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def _number(value: Any, default: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return float(value)


def resolve_config(
    raw: Any, environ: Mapping[str, str] | None = None
) -> ClawatchConfig:
    """Resolve a raw host config mapping into a ClawatchConfig.

    Non-mapping input resolves to defaults. The API URL falls back to the
    first non-empty environment variable in ``API_URL_ENV_KEYS`` and then
    to ``DEFAULT_API_URL``.
    """
    data: Mapping[str, Any] = raw if isinstance(raw, Mapping) else {}
    env = os.environ if environ is None else environ

    api_url = data.get("apiUrl") if isinstance(data.get("apiUrl"), str) else ""
    if not api_url:
        api_url = next((env[k] for k in API_URL_ENV_KEYS if env.get(k)), "")
    if not api_url:
        api_url = DEFAULT_API_URL

    token = _str_or_none(data.get("apiToken")) or None
    agent_id = _str_or_none(data.get("agentId"))
    prefix = _str_or_none(data.get("sessionKeyPrefix"))
    max_attempts = data.get("maxReconnectAttempts", 0)

    return ClawatchConfig(
        enabled=data.get("enabled") is not False,
        api_url=api_url,
        device_code=_str_or_none(data.get("deviceCode")),
        api_token=token,
        agent_id=agent_id if agent_id is not None else DEFAULT_AGENT_ID,
        session_key_prefix=prefix if prefix is not None else DEFAULT_SESSION_PREFIX,
        tts_system_prompt=_str_or_none(data.get("ttsSystemPrompt")),
        interim_status_enabled=data.get("interimStatusEnabled") is not False,
        connect_timeout=_number(data.get("connectTimeout"), 15.0),
        ping_interval=_number(data.get("pingInterval"), 45.0),
        reconnect_base_delay=_number(data.get("reconnectBaseDelay"), 1.0),
        reconnect_max_delay=_number(data.get("reconnectMaxDelay"), 300.0),
        max_reconnect_attempts=(
            max_attempts
            if isinstance(max_attempts, int) and not isinstance(max_attempts, bool)
            else 0
        ),
    )


def load_config(
    path: Path | str, environ: Mapping[str, str] | None = None
) -> ClawatchConfig:
    """Load and resolve configuration from a YAML file."""
    path = Path(path)
    if not path.exists():
        raise ClawatchConfigError(f"Config file not found: {path}")
    try:
        with path.open(encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as err:
        raise ClawatchConfigError(f"Invalid YAML in {path}: {err}") from err
    return resolve_config(data, environ)


def resolve_gateway_config(
    raw_gateway: Any,
    *,
    agent_id: str = DEFAULT_AGENT_ID,
    tts_system_prompt: str | None = None,
) -> GatewayConfig | None:
    """Build the chat gateway config from the host's ``gateway`` section.

    Returns None when the host has no gateway section.
    """
    if not isinstance(raw_gateway, Mapping):
        return None

    remote = raw_gateway.get("remote")
    remote_url = remote.get("url") if isinstance(remote, Mapping) else None
    if isinstance(remote_url, str) and remote_url:
        base_url = remote_url
    else:
        port = raw_gateway.get("port") or DEFAULT_GATEWAY_PORT
        base_url = f"http://127.0.0.1:{port}"

    auth = raw_gateway.get("auth")
    token = ""
    if isinstance(auth, Mapping):
        token = _str_or_none(auth.get("token")) or _str_or_none(auth.get("password")) or ""

    return GatewayConfig(
        base_url=base_url,
        token=token,
        agent_id=agent_id,
        tts_system_prompt=tts_system_prompt,
    )


# -------------------------------------------------------------------------
# Device references
# -------------------------------------------------------------------------


def is_valid_imei(value: Any) -> bool:
    """Return True when value is exactly 15 ASCII digits."""
    return isinstance(value, str) and _IMEI_RE.fullmatch(value) is not None


def validate_imei(value: Any) -> str:
    """Return value unchanged or raise InvalidImeiError."""
    if not is_valid_imei(value):
        raise InvalidImeiError(f"IMEI must be 15 digits, got {value!r}")
    return value


def get_session_key(prefix: str, imei: str) -> str:
    return f"{prefix}{imei}"


def parse_imei_from_session_key(
    session_key: Any, prefix: str = DEFAULT_SESSION_PREFIX
) -> str | None:
    """Recover the IMEI from a session key.

    Accepts ``<prefix><imei>`` and the legacy ``session:<prefix><imei>`` form.
    """
    if not isinstance(session_key, str) or not session_key:
        return None
    pattern = rf"(?:{re.escape(LEGACY_SESSION_PREFIX)})?{re.escape(prefix)}([0-9]{{15}})"
    match = re.fullmatch(pattern, session_key)
    return match.group(1) if match else None


# -------------------------------------------------------------------------
# URLs
# -------------------------------------------------------------------------


def websocket_url(api_url: str) -> str:
    """Convert an http(s) API URL to its ws(s) form; ws URLs pass through."""
    return re.sub(r"^http", "ws", api_url)


def http_base_url(api_url: str) -> str:
    """Return the http(s) origin of the relay for REST calls."""
    parts = urlsplit(api_url)
    if not parts.scheme or not parts.netloc:
        raise ClawatchConfigError(f"Invalid API URL: {api_url!r}")
    scheme = {"ws": "http", "wss": "https"}.get(parts.scheme, parts.scheme)
    return f"{scheme}://{parts.netloc}"
