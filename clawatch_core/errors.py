"""Client error types for Clawatch relay interactions."""

from __future__ import annotations


class ClawatchClientError(Exception):
    """Base error for Clawatch client failures."""


class ClawatchTimeout(ClawatchClientError):
    """Timeout while communicating with the relay."""


class ClawatchConnectionError(ClawatchClientError):
    """Network connection to the relay failed."""


class ClawatchNotConnectedError(ClawatchConnectionError):
    """Operation requires a registered session but none is open."""


class ClawatchHandshakeError(ClawatchClientError):
    """WebSocket handshake or registration failed."""


class ClawatchAuthError(ClawatchHandshakeError):
    """The relay rejected the bearer token."""

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code


class ClawatchResponseError(ClawatchClientError):
    """HTTP response error from the cloud or the chat gateway."""

    def __init__(self, status: int, message: str) -> None:
        super().__init__(message)
        self.status = status


class ClawatchConfigError(ClawatchClientError):
    """Configuration is missing or unusable."""


class FrameDecodeError(ClawatchClientError):
    """A wire payload is not a valid frame."""


class InvalidImeiError(ClawatchClientError, ValueError):
    """A device reference is not a 15-digit IMEI."""


class ClawatchNotPairedError(ClawatchClientError):
    """The device is not in the current paired roster."""
