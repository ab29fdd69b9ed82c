"""Identity (UUID) validation and token comparison."""

from __future__ import annotations

import re
import secrets
from uuid import UUID

from passage.core.exceptions import ConfigError

IDENTITY_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)

TOKEN_SIZE = 16


def is_valid_identity(candidate: str) -> bool:
    """Check a candidate against the 8-4-4-4-12 version-4 UUID grammar."""
    if not isinstance(candidate, str):
        return False
    return IDENTITY_PATTERN.fullmatch(candidate) is not None


def require_valid_identity(identity: str) -> str:
    """Return the identity unchanged, or raise ConfigError if malformed."""
    if not is_valid_identity(identity):
        raise ConfigError(f"Invalid identity {identity!r}: expected a version 4 UUID")
    return identity


def identity_bytes(identity: str) -> bytes:
    """Return the 16 raw bytes of a valid identity."""
    return UUID(require_valid_identity(identity)).bytes


def tokens_match(token: bytes, expected: bytes) -> bool:
    """Compare two tokens without short-circuiting on the first differing byte."""
    return secrets.compare_digest(token, expected)
