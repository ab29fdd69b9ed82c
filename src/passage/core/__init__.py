"""Core."""

from .config import (
    RelayConfig,
    RelaySettings,
    clear_settings,
    flatten_config,
    get_settings,
    load_config_from_file,
)
from .exceptions import (
    ConfigError,
    ConnectError,
    PassageError,
    ProtocolError,
    ProtocolErrorKind,
    RelayIOError,
    TransportError,
    format_error_for_user,
)
from .identity import identity_bytes, is_valid_identity, require_valid_identity, tokens_match

__all__ = [
    # Config
    "RelayConfig",
    "RelaySettings",
    "get_settings",
    "clear_settings",
    "load_config_from_file",
    "flatten_config",
    # Errors
    "PassageError",
    "ConfigError",
    "ProtocolError",
    "ProtocolErrorKind",
    "ConnectError",
    "TransportError",
    "RelayIOError",
    "format_error_for_user",
    # Identity
    "is_valid_identity",
    "require_valid_identity",
    "identity_bytes",
    "tokens_match",
]
