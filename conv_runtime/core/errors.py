# conv_runtime/core/errors.py
# -*- coding: utf-8 -*-
"""
conv-runtime — error taxonomy
-----------------------------
Every per-message failure the relay can produce is a RelayError carrying a
stable machine-readable ErrorCode. The protocol state machine turns these into
a single `protocol.error` frame; nothing here is allowed to close a connection.

ConfigurationError is the odd one out: it is raised during startup only and
stops the process from serving traffic.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    """Codes sent to clients in `protocol.error` frames."""

    INVALID_MESSAGE = "INVALID_MESSAGE"
    SESSION_NOT_READY = "SESSION_NOT_READY"
    UPSTREAM_ERROR = "UPSTREAM_ERROR"
    FORBIDDEN = "FORBIDDEN"


class RelayError(Exception):
    """Base class for recoverable, per-message errors."""

    code: ErrorCode = ErrorCode.UPSTREAM_ERROR
    default_message: str = "Request could not be processed."

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class ProtocolViolation(RelayError):
    """Well-formed message that is illegal in the session's current phase."""

    code = ErrorCode.SESSION_NOT_READY
    default_message = "Session has not been started."


class MessageValidationError(RelayError):
    """Message content rejected before any collaborator is called."""

    code = ErrorCode.INVALID_MESSAGE
    default_message = "Message failed validation."


class UpstreamError(RelayError):
    """Store, generation or context collaborator failed."""

    code = ErrorCode.UPSTREAM_ERROR
    default_message = "Upstream service failed; please retry."


class StoreError(UpstreamError):
    """Session store unreachable or returned an error."""


class GenerationError(UpstreamError):
    """Generation service failed, timed out, or returned empty text."""


class ContextResolutionError(UpstreamError):
    """Subject context could not be resolved."""


class Forbidden(RelayError):
    """Debug surface token mismatch."""

    code = ErrorCode.FORBIDDEN
    default_message = "Invalid or missing debug token."


class ConfigurationError(Exception):
    """Required configuration is missing. Fatal at startup."""


class SendError(Exception):
    """An outbound frame could not be written; the peer is gone."""


class DecodeError(RelayError):
    """
    Frame could not be decoded. Returned by the codec as a value rather than
    raised; `session_id` is set when the frame carried a usable one.
    """

    code = ErrorCode.INVALID_MESSAGE
    default_message = "Invalid message."

    def __init__(self, message: Optional[str] = None, *, session_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.session_id = session_id
