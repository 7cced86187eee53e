"""Relay session connector for Clawatch smartwatches.

Keeps one authenticated WebSocket session to the Clawatch cloud relay,
answers watch messages through the local chat gateway, and pushes text
and control commands to paired watches.
"""

__version__ = "0.1.22"

from .cloud import ClawatchCloudClient
from .config import (
    ClawatchConfig,
    GatewayConfig,
    get_session_key,
    is_valid_imei,
    load_config,
    parse_imei_from_session_key,
    resolve_config,
    resolve_gateway_config,
)
from .connector import Connector, ConnectorCallbacks, ConnectorState, ReconnectBackoff
from .errors import (
    ClawatchAuthError,
    ClawatchClientError,
    ClawatchConfigError,
    ClawatchConnectionError,
    ClawatchHandshakeError,
    ClawatchNotConnectedError,
    ClawatchNotPairedError,
    ClawatchResponseError,
    ClawatchTimeout,
    FrameDecodeError,
    InvalidImeiError,
)
from .frames import DeviceContext, MessageFrame, WatchInfo
from .gateway import ChatGatewayClient, format_context
from .protocol import decode_frame, encode_frame
from .runtime import SessionRuntime, SessionStatus
from .service import ClawatchService

__all__ = [
    "ChatGatewayClient",
    "ClawatchAuthError",
    "ClawatchClientError",
    "ClawatchCloudClient",
    "ClawatchConfig",
    "ClawatchConfigError",
    "ClawatchConnectionError",
    "ClawatchHandshakeError",
    "ClawatchNotConnectedError",
    "ClawatchNotPairedError",
    "ClawatchResponseError",
    "ClawatchService",
    "ClawatchTimeout",
    "Connector",
    "ConnectorCallbacks",
    "ConnectorState",
    "DeviceContext",
    "FrameDecodeError",
    "GatewayConfig",
    "InvalidImeiError",
    "MessageFrame",
    "ReconnectBackoff",
    "SessionRuntime",
    "SessionStatus",
    "WatchInfo",
    "__version__",
    "decode_frame",
    "encode_frame",
    "format_context",
    "get_session_key",
    "is_valid_imei",
    "load_config",
    "parse_imei_from_session_key",
    "resolve_config",
    "resolve_gateway_config",
]
