"""Exception hierarchy for the relay.

Every error below except ``ConfigError`` is session-scoped: it ends the session
that raised it and nothing else.
"""

from __future__ import annotations

from enum import Enum


class ProtocolErrorKind(Enum):
    """Reasons a session header (or early data) is rejected."""

    TRUNCATED = "truncated"
    UNAUTHORIZED = "unauthorized"
    UNKNOWN_COMMAND = "unknown_command"
    UNKNOWN_ADDRESS_TYPE = "unknown_address_type"
    UNSUPPORTED_UDP_PORT = "unsupported_udp_port"
    MALFORMED_ADDRESS = "malformed_address"
    MALFORMED_EARLY_DATA = "malformed_early_data"


class PassageError(Exception):
    """Base class for all relay errors."""

    code = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConfigError(PassageError):
    """Invalid process configuration. Fatal at startup."""

    code = "config"


class ProtocolError(PassageError):
    """The client sent a header the relay refuses to act on."""

    code = "protocol"

    def __init__(self, kind: ProtocolErrorKind, message: str | None = None) -> None:
        super().__init__(message or kind.value.replace("_", " "))
        self.kind = kind


class ConnectError(PassageError):
    """Dialing the outbound destination failed."""

    code = "connect"

    def __init__(self, host: str, port: int, reason: str) -> None:
        super().__init__(f"Failed to connect to {host}:{port}: {reason}")
        self.host = host
        self.port = port
        self.reason = reason


class TransportError(PassageError):
    """The client-side transport closed or errored."""

    code = "transport"


class RelayIOError(PassageError):
    """A read or write failed mid-stream on either side."""

    code = "io"


def format_error_for_user(error: BaseException) -> str:
    """Render an exception as a short human-readable line."""
    if isinstance(error, PassageError):
        return error.message
    if isinstance(error, TimeoutError):
        return "Operation timed out"
    if isinstance(error, ConnectionRefusedError):
        return "Connection refused"
    text = str(error)
    return text or type(error).__name__
