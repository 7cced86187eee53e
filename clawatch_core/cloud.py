"""HTTP client for the Clawatch cloud account endpoints."""

from __future__ import annotations

from typing import Any

import aiohttp

from .config import http_base_url, validate_imei
from .errors import (
    ClawatchConfigError,
    ClawatchConnectionError,
    ClawatchResponseError,
    ClawatchTimeout,
)

LOGIN_PATH = "/api/v1/watch/login"
LOGIN_CONFIRM_PATH = "/api/v1/watch/login/confirm"
PAIR_PATH = "/api/v1/watch/pair"
UNPAIR_PATH = "/api/v1/watch/unpair"


class ClawatchCloudClient:
    """HTTP client wrapper for sign-in and device pairing.

    The base URL is the origin of the relay URL with ws→http and wss→https.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        api_url: str,
        *,
        token: str | None = None,
    ) -> None:
        self._session = session
        self._base_url = http_base_url(api_url)
        self._token = token

    @property
    def base_url(self) -> str:
        return self._base_url

    def _url(self, path: str) -> str:
        return f"{self._base_url}{path}"

    def _auth_headers(self) -> dict[str, str]:
        if not self._token:
            raise ClawatchConfigError(
                "Not signed in. Run: openclaw clawatch login <countryCode> <phoneNumber>"
            )
        return {"Authorization": f"Bearer {self._token}"}

    async def _post(
        self,
        path: str,
        payload: dict[str, Any],
        *,
        action: str,
        headers: dict[str, str] | None = None,
        timeout: float = 15,
    ) -> dict[str, Any]:
        """POST JSON and return the decoded body.

        Raises:
            ClawatchResponseError: Non-2xx status or an ``error`` field in the body
            ClawatchTimeout: If request times out
            ClawatchConnectionError: If network request fails
        """
        try:
            async with self._session.post(
                self._url(path),
                json=payload,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=timeout),
            ) as resp:
                if not 200 <= resp.status < 300:
                    text = await resp.text()
                    raise ClawatchResponseError(
                        resp.status, f"{action} failed: {resp.status} {text}"
                    )
                data = await resp.json(content_type=None)
        except TimeoutError as err:
            raise ClawatchTimeout(f"{action} request timed out") from err
        except aiohttp.ClientError as err:
            raise ClawatchConnectionError(
                f"{action} request failed: cannot reach cloud API"
            ) from err

        if not isinstance(data, dict):
            data = {}
        if data.get("error"):
            raise ClawatchResponseError(resp.status, str(data["error"]))
        return data

    async def request_login(self, country_code: str, phone_number: str) -> str:
        """Start phone sign-in; the cloud sends an OTP to the phone.

        Returns:
            The login session to pass to ``confirm_login``.
        """
        data = await self._post(
            LOGIN_PATH,
            {"countryCode": country_code, "phoneNumber": phone_number},
            action="Login",
        )
        session = data.get("session")
        if not session:
            raise ClawatchResponseError(200, "No session in response")
        return str(session)

    async def confirm_login(self, session: str, otp: str) -> str:
        """Exchange the login session and OTP for an API token.

        The returned token is also used for later bearer calls on this client.
        """
        data = await self._post(
            LOGIN_CONFIRM_PATH, {"session": session, "otp": otp}, action="Confirm"
        )
        api_token = data.get("apiToken")
        if not api_token:
            raise ClawatchResponseError(200, "No apiToken in response")
        self._token = str(api_token)
        return self._token

    async def pair(self, imei: str) -> None:
        """Pair a watch with the signed-in account.

        Raises:
            InvalidImeiError: imei is not 15 digits
            ClawatchConfigError: No API token
        """
        validate_imei(imei)
        await self._post(
            PAIR_PATH, {"imei": imei}, action="Pair", headers=self._auth_headers()
        )

    async def unpair(self, imei: str) -> None:
        """Unpair a watch directly through the cloud API."""
        validate_imei(imei)
        await self._post(
            UNPAIR_PATH,
            {"device_id": imei},
            action="Unpair",
            headers=self._auth_headers(),
        )
