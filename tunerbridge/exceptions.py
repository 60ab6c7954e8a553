"""
Error taxonomy for TunerBridge.

Fatal errors stop startup, stream errors are mapped to coarse HTTP
responses, and upstream errors are isolated by the caller that triggered
them.
"""

from typing import Any


class TunerBridgeError(Exception):
    """Base class for all TunerBridge errors."""

    status_code: int = 500

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}


# ============ Session / startup (fatal) ============


class SessionError(TunerBridgeError):
    """Session could not be established or used."""


class SessionMissingError(SessionError):
    """No persisted session exists and interactive login is not allowed."""


class SessionCorruptError(SessionError):
    """The persisted session could not be decoded and was removed."""


class SelectionError(SessionError):
    """No viable profile or device could be selected for the account."""


class DeviceUnreachableError(SessionError):
    """The local DVR device did not answer its info endpoint."""


# ============ Upstream ============


class CloudRequestError(TunerBridgeError):
    """A cloud account API call failed or returned a non-2xx status."""

    def __init__(self, message: str, status: int | None = None, body: str = ""):
        super().__init__(message, {"status": status})
        self.status = status
        self.body = body


# ============ Streaming (client facing) ============


class StreamError(TunerBridgeError):
    """A tune request could not be served."""


class ChannelNotFoundError(StreamError):
    status_code = 404


class ChannelConfigError(StreamError):
    """The channel is known but has no internal source URL."""


class TunerCapacityError(StreamError):
    """All tuner slots are in use."""


class PlaybackUnavailableError(StreamError):
    """The device did not return a playback URL for the watch request."""
