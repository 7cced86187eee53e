"""Tests for the chat-completion gateway client."""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import aiohttp
import pytest

from clawatch_core.config import GatewayConfig
from clawatch_core.errors import (
    ClawatchConnectionError,
    ClawatchResponseError,
    ClawatchTimeout,
)
from clawatch_core.frames import (
    BloodPressure,
    DeviceContext,
    HealthReadings,
    Location,
    Reading,
)
from clawatch_core.gateway import (
    DEFAULT_TTS_PROMPT,
    PHYSICAL_STATE_PREFIX,
    ChatGatewayClient,
    build_messages,
    format_context,
    parse_stream_line,
)

from .conftest import IMEI, create_mock_response

SESSION_KEY = f"clawatch:{IMEI}"


def sse(*deltas: str) -> list[str]:
    lines = [
        "data: " + json.dumps({"choices": [{"delta": {"content": delta}}]})
        for delta in deltas
    ]
    return [*lines, "", "data: [DONE]"]


@pytest.fixture
def gateway_config() -> GatewayConfig:
    return GatewayConfig(base_url="http://127.0.0.1:18789/", token="gw-token", agent_id="kids")


class TestFormatContext:
    """Tests for format_context()."""

    def test_empty(self):
        assert format_context(None) == ""
        assert format_context(DeviceContext()) == ""
        assert format_context(DeviceContext(health=HealthReadings())) == ""

    def test_all_fields(self):
        context = DeviceContext(
            location=Location(lat=1.35211, lng=103.81984),
            steps=Reading(value=4200),
            battery=Reading(value=81),
            health=HealthReadings(
                heart_rate=Reading(value=72),
                temperature=Reading(value=36.6),
                oxygen=Reading(value=98),
                blood_pressure=BloodPressure(systolic=120, diastolic=80),
            ),
        )
        assert format_context(context) == PHYSICAL_STATE_PREFIX + "\n".join(
            [
                "- Location: 1.3521°N, 103.8198°E",
                "- Steps today: 4200",
                "- Battery: 81%",
                "- Heart rate: 72 bpm",
                "- Temperature: 36.6°C",
                "- Blood oxygen: 98%",
                "- Blood pressure: 120/80 mmHg",
            ]
        )

    def test_southern_western_hemisphere(self):
        context = DeviceContext(location=Location(lat=-33.8688, lng=-70.6693))
        assert format_context(context).endswith("- Location: 33.8688°S, 70.6693°W")

    def test_partial(self):
        context = DeviceContext(battery=Reading(value=15))
        assert format_context(context) == PHYSICAL_STATE_PREFIX + "- Battery: 15%"


class TestBuildMessages:
    """Tests for build_messages()."""

    def test_default_prompt(self):
        assert build_messages("hi") == [
            {"role": "system", "content": DEFAULT_TTS_PROMPT},
            {"role": "user", "content": "hi"},
        ]

    def test_empty_prompt_disables_system(self):
        assert build_messages("hi", tts_system_prompt="") == [
            {"role": "user", "content": "hi"}
        ]

    def test_context_block(self):
        messages = build_messages(
            "hi", tts_system_prompt="Be brief.", context=DeviceContext(steps=Reading(10))
        )
        assert [m["role"] for m in messages] == ["system", "system", "user"]
        assert messages[0]["content"] == "Be brief."
        assert messages[1]["content"].startswith(PHYSICAL_STATE_PREFIX)


class TestParseStreamLine:
    """Tests for parse_stream_line()."""

    @pytest.mark.parametrize(
        "line",
        [
            "",
            "   ",
            "data: [DONE]",
            ": keep-alive",
            "event: message",
            "data: {not json",
            'data: {"choices": []}',
            'data: {"choices": [{"delta": {}}]}',
            'data: {"choices": [{"delta": {"content": ""}}]}',
            "data: 42",
        ],
    )
    def test_ignored(self, line):
        assert parse_stream_line(line) is None

    def test_delta(self):
        assert parse_stream_line('data: {"choices":[{"delta":{"content":"Hi"}}]}\n') == "Hi"


class TestChatGatewayClient:
    """Tests for ChatGatewayClient.complete()."""

    @pytest.mark.asyncio
    async def test_streams_reply(self, mock_session: MagicMock, gateway_config):
        mock_session.post.return_value = create_mock_response(
            stream_lines=sse("It's ", "sunny", " today.")
        )
        client = ChatGatewayClient(mock_session, gateway_config)

        reply = await client.complete(SESSION_KEY, "weather?")

        assert reply == "It's sunny today."
        call = mock_session.post.call_args
        assert call.args[0] == "http://127.0.0.1:18789/api/v1/chat/completions"
        assert call.kwargs["headers"] == {
            "Content-Type": "application/json",
            "Authorization": "Bearer gw-token",
            "x-openclaw-session-key": SESSION_KEY,
            "x-openclaw-agent-id": "kids",
        }
        body = call.kwargs["json"]
        assert body["model"] == "openclaw"
        assert body["stream"] is True
        assert body["messages"][-1] == {"role": "user", "content": "weather?"}

    @pytest.mark.asyncio
    async def test_context_in_request(self, mock_session: MagicMock, gateway_config):
        mock_session.post.return_value = create_mock_response(stream_lines=sse("ok"))
        client = ChatGatewayClient(mock_session, gateway_config)

        await client.complete(SESSION_KEY, "hi", DeviceContext(battery=Reading(50)))

        messages = mock_session.post.call_args.kwargs["json"]["messages"]
        assert messages[1]["content"] == PHYSICAL_STATE_PREFIX + "- Battery: 50%"

    @pytest.mark.asyncio
    async def test_405_falls_back(self, mock_session: MagicMock, gateway_config):
        mock_session.post.side_effect = [
            create_mock_response(status=405, text_data="Method Not Allowed"),
            create_mock_response(stream_lines=sse("fallback")),
        ]
        client = ChatGatewayClient(mock_session, gateway_config)

        assert await client.complete(SESSION_KEY, "hi") == "fallback"
        urls = [c.args[0] for c in mock_session.post.call_args_list]
        assert urls == [
            "http://127.0.0.1:18789/api/v1/chat/completions",
            "http://127.0.0.1:18789/v1/chat/completions",
        ]

    @pytest.mark.asyncio
    async def test_all_405(self, mock_session: MagicMock, gateway_config):
        mock_session.post.side_effect = [
            create_mock_response(status=405, text_data="no"),
            create_mock_response(status=405, text_data="no"),
        ]
        client = ChatGatewayClient(mock_session, gateway_config)

        with pytest.raises(ClawatchResponseError) as exc_info:
            await client.complete(SESSION_KEY, "hi")
        assert exc_info.value.status == 405

    @pytest.mark.asyncio
    async def test_other_error_stops(self, mock_session: MagicMock, gateway_config):
        mock_session.post.return_value = create_mock_response(
            status=401, text_data="Unauthorized"
        )
        client = ChatGatewayClient(mock_session, gateway_config)

        with pytest.raises(ClawatchResponseError, match="Unauthorized") as exc_info:
            await client.complete(SESSION_KEY, "hi")
        assert exc_info.value.status == 401
        assert mock_session.post.call_count == 1

    @pytest.mark.asyncio
    async def test_timeout(self, mock_session: MagicMock, gateway_config):
        mock_session.post.side_effect = TimeoutError()
        client = ChatGatewayClient(mock_session, gateway_config)

        with pytest.raises(ClawatchTimeout):
            await client.complete(SESSION_KEY, "hi")

    @pytest.mark.asyncio
    async def test_connection_error(self, mock_session: MagicMock, gateway_config):
        mock_session.post.side_effect = aiohttp.ClientConnectionError("refused")
        client = ChatGatewayClient(mock_session, gateway_config)

        with pytest.raises(ClawatchConnectionError):
            await client.complete(SESSION_KEY, "hi")
