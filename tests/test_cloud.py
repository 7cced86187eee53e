"""Tests for the cloud sign-in and pairing client."""

from __future__ import annotations

from unittest.mock import MagicMock

import aiohttp
import pytest

from clawatch_core.cloud import ClawatchCloudClient
from clawatch_core.errors import (
    ClawatchConfigError,
    ClawatchConnectionError,
    ClawatchResponseError,
    ClawatchTimeout,
    InvalidImeiError,
)

from .conftest import IMEI, create_mock_response

API_URL = "wss://api.sg.mempat.com/api/v1/watch/connect"
BASE = "https://api.sg.mempat.com"


class TestLogin:
    """Tests for the phone + OTP sign-in flow."""

    @pytest.mark.asyncio
    async def test_request_login(self, mock_session: MagicMock):
        mock_session.post.return_value = create_mock_response(json_data={"session": "s-1"})
        client = ClawatchCloudClient(mock_session, API_URL)

        assert await client.request_login("+65", "87654321") == "s-1"

        call = mock_session.post.call_args
        assert call.args[0] == f"{BASE}/api/v1/watch/login"
        assert call.kwargs["json"] == {"countryCode": "+65", "phoneNumber": "87654321"}
        assert call.kwargs["headers"] is None

    @pytest.mark.asyncio
    async def test_request_login_missing_session(self, mock_session: MagicMock):
        mock_session.post.return_value = create_mock_response(json_data={})
        client = ClawatchCloudClient(mock_session, API_URL)

        with pytest.raises(ClawatchResponseError, match="No session"):
            await client.request_login("+65", "87654321")

    @pytest.mark.asyncio
    async def test_request_login_error_field(self, mock_session: MagicMock):
        mock_session.post.return_value = create_mock_response(
            json_data={"error": "Phone number not registered"}
        )
        client = ClawatchCloudClient(mock_session, API_URL)

        with pytest.raises(ClawatchResponseError, match="not registered"):
            await client.request_login("+65", "87654321")

    @pytest.mark.asyncio
    async def test_request_login_http_error(self, mock_session: MagicMock):
        mock_session.post.return_value = create_mock_response(
            status=500, text_data="Internal"
        )
        client = ClawatchCloudClient(mock_session, API_URL)

        with pytest.raises(ClawatchResponseError) as exc_info:
            await client.request_login("+65", "87654321")
        assert exc_info.value.status == 500
        assert "Login failed" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_confirm_login_stores_token(self, mock_session: MagicMock):
        mock_session.post.side_effect = [
            create_mock_response(json_data={"apiToken": "tok-1"}),
            create_mock_response(json_data={"ok": True}),
        ]
        client = ClawatchCloudClient(mock_session, API_URL)

        assert await client.confirm_login("s-1", "123456") == "tok-1"
        confirm = mock_session.post.call_args_list[0]
        assert confirm.args[0] == f"{BASE}/api/v1/watch/login/confirm"
        assert confirm.kwargs["json"] == {"session": "s-1", "otp": "123456"}

        await client.pair(IMEI)
        pair = mock_session.post.call_args_list[1]
        assert pair.kwargs["headers"] == {"Authorization": "Bearer tok-1"}

    @pytest.mark.asyncio
    async def test_confirm_login_missing_token(self, mock_session: MagicMock):
        mock_session.post.return_value = create_mock_response(json_data={"ok": True})
        client = ClawatchCloudClient(mock_session, API_URL)

        with pytest.raises(ClawatchResponseError, match="No apiToken"):
            await client.confirm_login("s-1", "123456")


class TestPairing:
    """Tests for pair()/unpair()."""

    @pytest.mark.asyncio
    async def test_pair(self, mock_session: MagicMock):
        mock_session.post.return_value = create_mock_response(json_data={})
        client = ClawatchCloudClient(mock_session, API_URL, token="tok")

        await client.pair(IMEI)

        call = mock_session.post.call_args
        assert call.args[0] == f"{BASE}/api/v1/watch/pair"
        assert call.kwargs["json"] == {"imei": IMEI}
        assert call.kwargs["headers"] == {"Authorization": "Bearer tok"}

    @pytest.mark.asyncio
    async def test_pair_invalid_imei(self, mock_session: MagicMock):
        client = ClawatchCloudClient(mock_session, API_URL, token="tok")

        with pytest.raises(InvalidImeiError):
            await client.pair("1234")
        mock_session.post.assert_not_called()

    @pytest.mark.asyncio
    async def test_pair_requires_token(self, mock_session: MagicMock):
        client = ClawatchCloudClient(mock_session, API_URL)

        with pytest.raises(ClawatchConfigError, match="Not signed in"):
            await client.pair(IMEI)
        mock_session.post.assert_not_called()

    @pytest.mark.asyncio
    async def test_unpair(self, mock_session: MagicMock):
        mock_session.post.return_value = create_mock_response(json_data={"ok": True})
        client = ClawatchCloudClient(mock_session, "ws://localhost:8080/connect", token="tok")

        await client.unpair(IMEI)

        call = mock_session.post.call_args
        assert call.args[0] == "http://localhost:8080/api/v1/watch/unpair"
        assert call.kwargs["json"] == {"device_id": IMEI}

    @pytest.mark.asyncio
    async def test_unpair_rejected(self, mock_session: MagicMock):
        mock_session.post.return_value = create_mock_response(
            status=404, text_data='{"error":"not paired"}'
        )
        client = ClawatchCloudClient(mock_session, API_URL, token="tok")

        with pytest.raises(ClawatchResponseError) as exc_info:
            await client.unpair(IMEI)
        assert exc_info.value.status == 404

    @pytest.mark.asyncio
    async def test_timeout(self, mock_session: MagicMock):
        mock_session.post.side_effect = TimeoutError()
        client = ClawatchCloudClient(mock_session, API_URL, token="tok")

        with pytest.raises(ClawatchTimeout):
            await client.unpair(IMEI)

    @pytest.mark.asyncio
    async def test_network_error(self, mock_session: MagicMock):
        mock_session.post.side_effect = aiohttp.ClientConnectionError()
        client = ClawatchCloudClient(mock_session, API_URL, token="tok")

        with pytest.raises(ClawatchConnectionError, match="cannot reach"):
            await client.pair(IMEI)

    def test_invalid_api_url(self, mock_session: MagicMock):
        with pytest.raises(ClawatchConfigError):
            ClawatchCloudClient(mock_session, "relay")
