"""Service object wiring configuration, the chat gateway, and the runtime.

The service is created and owned by the embedding application; there is
no process-wide runtime. Collaborators (tools, channel delivery) get the
runtime from ``service.runtime``.
"""

from __future__ import annotations

import logging

import aiohttp

from .config import ClawatchConfig, GatewayConfig
from .errors import ClawatchClientError
from .frames import DeviceContext
from .gateway import ChatGatewayClient
from .runtime import SessionRuntime

_LOGGER = logging.getLogger(__name__)


class ClawatchService:
    """Starts and stops one relay session.

    Usage:
        service = ClawatchService(config, gateway_config)
        await service.start()
        tools.push_tool(service.runtime, "Dinner is ready")
        await service.stop()
    """

    def __init__(
        self,
        config: ClawatchConfig,
        gateway_config: GatewayConfig | None,
        *,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._config = config
        self._gateway_config = gateway_config
        self._session = session
        self._owns_session = session is None
        self._gateway: ChatGatewayClient | None = None
        self._runtime: SessionRuntime | None = None

    @property
    def runtime(self) -> SessionRuntime | None:
        return self._runtime

    @property
    def running(self) -> bool:
        return self._runtime is not None

    async def start(self) -> None:
        """Create the runtime and attempt the first connection.

        A failed first connection is logged, not raised; the runtime keeps
        retrying in the background.
        """
        if self._runtime is not None:
            return
        if not self._config.enabled or not self._config.api_url:
            _LOGGER.info("Clawatch disabled or no apiUrl")
            return
        if self._gateway_config is None:
            _LOGGER.error("Clawatch: no gateway config")
            return

        if self._session is None:
            self._session = aiohttp.ClientSession()
        self._gateway = ChatGatewayClient(self._session, self._gateway_config)
        self._runtime = SessionRuntime(self._config, self._handle_inbound)

        try:
            await self._runtime.connect()
        except ClawatchClientError as err:
            _LOGGER.error("Clawatch initial connect failed: %s", err)

    async def stop(self) -> None:
        """Disconnect and release the HTTP session. Safe to call repeatedly."""
        runtime, self._runtime = self._runtime, None
        if runtime is not None:
            await runtime.disconnect()
        self._gateway = None
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    async def _handle_inbound(
        self,
        msg_id: str,
        imei: str,
        text: str,
        session_key: str,
        context: DeviceContext | None,
    ) -> str:
        if self._gateway is None:
            raise ClawatchClientError("Chat gateway not available")
        return await self._gateway.complete(session_key, text, context)
