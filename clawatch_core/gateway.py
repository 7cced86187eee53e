"""Chat-completion client for the local agent gateway.

Inbound watch messages are answered by POSTing to the gateway's
OpenAI-compatible ``chat/completions`` endpoint and concatenating the
streamed deltas. The gateway must have its chat-completions HTTP endpoint
enabled.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import aiohttp

from .config import GatewayConfig
from .errors import (
    ClawatchConnectionError,
    ClawatchResponseError,
    ClawatchTimeout,
)
from .frames import DeviceContext

_LOGGER = logging.getLogger(__name__)

COMPLETION_PATHS = ("/api/v1/chat/completions", "/v1/chat/completions")
MODEL_NAME = "openclaw"

DEFAULT_TTS_PROMPT = (
    "You are replying via a voice-only smartwatch with no screen. "
    "The user hears your response through text-to-speech."
)

PHYSICAL_STATE_PREFIX = (
    "The following is the user's current physical world state (from watch "
    "sensors). Use this context to understand and answer their questions. If "
    "they ask about steps, battery, or health metrics, you may cite these "
    "values.\n\n"
)

_SSE_DATA = "data: "
_SSE_DONE = "data: [DONE]"


def _fmt(value: float) -> str:
    """Render a reading without a trailing ``.0`` for whole numbers."""
    if float(value).is_integer():
        return str(int(value))
    return str(value)


def format_context(context: DeviceContext | None) -> str:
    """Render device telemetry as a system-prompt block.

    Returns an empty string when the context carries nothing.
    """
    if context is None:
        return ""

    lines: list[str] = []
    if context.location is not None:
        lat, lng = context.location.lat, context.location.lng
        lat_dir = "N" if lat >= 0 else "S"
        lng_dir = "E" if lng >= 0 else "W"
        lines.append(
            f"- Location: {abs(lat):.4f}°{lat_dir}, {abs(lng):.4f}°{lng_dir}"
        )
    if context.steps is not None:
        lines.append(f"- Steps today: {_fmt(context.steps.value)}")
    if context.battery is not None:
        lines.append(f"- Battery: {_fmt(context.battery.value)}%")

    health = context.health
    if health is not None:
        if health.heart_rate is not None:
            lines.append(f"- Heart rate: {_fmt(health.heart_rate.value)} bpm")
        if health.temperature is not None:
            lines.append(f"- Temperature: {_fmt(health.temperature.value)}°C")
        if health.oxygen is not None:
            lines.append(f"- Blood oxygen: {_fmt(health.oxygen.value)}%")
        if health.blood_pressure is not None:
            bp = health.blood_pressure
            lines.append(
                f"- Blood pressure: {_fmt(bp.systolic)}/{_fmt(bp.diastolic)} mmHg"
            )

    if not lines:
        return ""
    return PHYSICAL_STATE_PREFIX + "\n".join(lines)


def build_messages(
    user_message: str,
    *,
    tts_system_prompt: str | None = None,
    context: DeviceContext | None = None,
) -> list[dict[str, str]]:
    """Assemble the chat messages: TTS prompt, physical state, user text."""
    system_prompt = (
        DEFAULT_TTS_PROMPT if tts_system_prompt is None else tts_system_prompt
    )
    messages: list[dict[str, str]] = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    physical_state = format_context(context)
    if physical_state:
        messages.append({"role": "system", "content": physical_state})
    messages.append({"role": "user", "content": user_message})
    return messages


def parse_stream_line(line: str) -> str | None:
    """Return the content delta carried by one SSE line, if any."""
    stripped = line.strip()
    if not stripped or stripped == _SSE_DONE or not stripped.startswith(_SSE_DATA):
        return None
    try:
        data = json.loads(stripped[len(_SSE_DATA) :])
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    first = choices[0]
    delta = first.get("delta") if isinstance(first, dict) else None
    content = delta.get("content") if isinstance(delta, dict) else None
    return content if isinstance(content, str) and content else None


class ChatGatewayClient:
    """HTTP client for the gateway's chat-completions endpoint."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        config: GatewayConfig,
        *,
        timeout: float = 120.0,
    ) -> None:
        self._session = session
        self._config = config
        self._timeout = timeout

    def _urls(self) -> list[str]:
        base = self._config.base_url.rstrip("/")
        return [f"{base}{path}" for path in COMPLETION_PATHS]

    def _headers(self, session_key: str) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._config.token}",
            "x-openclaw-session-key": session_key,
            "x-openclaw-agent-id": self._config.agent_id,
        }

    async def complete(
        self,
        session_key: str,
        user_message: str,
        context: DeviceContext | None = None,
    ) -> str:
        """Get the agent's reply for one user message.

        Tries each endpoint path in turn; a 405 moves on to the next path.

        Raises:
            ClawatchResponseError: Non-2xx status, or every path returned 405.
            ClawatchTimeout: The request timed out.
            ClawatchConnectionError: The gateway could not be reached.
        """
        body: dict[str, Any] = {
            "model": MODEL_NAME,
            "messages": build_messages(
                user_message,
                tts_system_prompt=self._config.tts_system_prompt,
                context=context,
            ),
            "stream": True,
        }
        headers = self._headers(session_key)

        last_error: ClawatchResponseError | None = None
        for url in self._urls():
            try:
                async with self._session.post(
                    url,
                    json=body,
                    headers=headers,
                    timeout=aiohttp.ClientTimeout(total=self._timeout),
                ) as resp:
                    if 200 <= resp.status < 300:
                        return await self._read_stream(resp)

                    text = await resp.text()
                    error = ClawatchResponseError(
                        resp.status, f"Gateway error {resp.status} for {url}: {text}"
                    )
                    if resp.status != 405:
                        raise error
                    _LOGGER.debug("Gateway path %s returned 405, trying next", url)
                    last_error = error
            except TimeoutError as err:
                raise ClawatchTimeout("Chat completion request timed out") from err
            except aiohttp.ClientError as err:
                raise ClawatchConnectionError("Chat completion request failed") from err

        raise last_error or ClawatchResponseError(
            405,
            "All endpoint paths returned 405 Method Not Allowed. "
            "Check gateway.http.endpoints.chatCompletions.enabled",
        )

    @staticmethod
    async def _read_stream(resp: aiohttp.ClientResponse) -> str:
        parts: list[str] = []
        async for raw in resp.content:
            line = raw.decode("utf-8", errors="replace")
            delta = parse_stream_line(line)
            if delta:
                parts.append(delta)
        return "".join(parts)
