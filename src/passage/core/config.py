"""Configuration types with environment variable support.

All settings can be configured via environment variables with the PASSAGE_ prefix.
Example: PASSAGE_UUID=... sets the accepted identity, PASSAGE_PROXY_IP sets the
egress hint.
"""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from passage.core.exceptions import ConfigError
from passage.core.identity import identity_bytes

DEFAULT_IDENTITY = "d342d11e-d424-4583-b36e-524ab1f0afa4"


def load_config_from_file(path: str | Path) -> dict[str, Any]:
    """Load configuration from a YAML or TOML file.

    Args:
        path: Path to the configuration file (.yaml, .yml, or .toml)

    Returns:
        Configuration dictionary

    Raises:
        FileNotFoundError: If the config file doesn't exist
        ValueError: If the config file has encoding errors, invalid syntax, or unsupported format
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        content = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise ValueError(f"Config file encoding error in {path}: {e}") from e

    try:
        if path.suffix in (".yaml", ".yml"):
            return yaml.safe_load(content) or {}
        elif path.suffix == ".toml":
            return tomllib.loads(content)
        else:
            raise ValueError(f"Unsupported config format: {path.suffix}")
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ValueError(f"Invalid TOML in {path}: {e}") from e


def flatten_config(config: dict[str, Any], prefix: str = "") -> dict[str, Any]:
    result: dict[str, Any] = {}
    for key, value in config.items():
        full_key = f"{prefix}_{key}" if prefix else key
        if isinstance(value, dict):
            result.update(flatten_config(value, full_key))
        else:
            result[full_key] = value
    return result


class RelaySettings(BaseSettings):
    """Process settings read from the environment (and an optional .env file)."""

    model_config = SettingsConfigDict(
        env_prefix="PASSAGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    uuid: str = Field(
        default=DEFAULT_IDENTITY,
        description="Accepted session identity (version 4 UUID).",
    )
    proxy_ip: str | None = Field(
        default=None,
        description="Egress hint used when dialing outbound destinations.",
    )
    egress_mode: Literal["bind", "relay"] = Field(
        default="bind",
        description="'bind' uses proxy_ip as the source address, 'relay' dials proxy_ip instead.",
    )
    bind: str = Field(
        default="0.0.0.0:8080",
        description="Bind address for the WebSocket front door.",
    )
    dial_timeout: float | None = Field(
        default=10.0,
        description="Outbound dial timeout (seconds). None or 0 for the OS default.",
    )
    dns_transport: Literal["udp", "doh"] = Field(
        default="udp",
        description="How DNS queries on the UDP path are resolved.",
    )
    dns_server: str = Field(
        default="1.1.1.1",
        description="Resolver address for the 'udp' DNS transport.",
    )
    dns_port: int = Field(
        default=53,
        description="Resolver port for the 'udp' DNS transport.",
    )
    doh_url: str = Field(
        default="https://1.1.1.1/dns-query",
        description="Endpoint for the 'doh' DNS transport.",
    )
    dns_timeout: float = Field(
        default=5.0,
        description="Per-query DNS timeout (seconds).",
    )
    read_chunk_size: int = Field(
        default=64 * 1024,
        description="Maximum bytes read from an outbound socket at a time.",
    )
    ws_max_size: int = Field(
        default=4 * 1024 * 1024,
        description="WebSocket maximum message size (bytes).",
    )
    heartbeat: float | None = Field(
        default=30.0,
        description="WebSocket ping interval (seconds). None to disable.",
    )


class RelayConfig(BaseModel):
    """Immutable per-process configuration shared by every session."""

    model_config = ConfigDict(frozen=True)

    identity: str
    token: bytes = Field(repr=False)
    egress_hint: str | None = None
    egress_mode: Literal["bind", "relay"] = "bind"
    dial_timeout: float | None = 10.0
    dns_transport: Literal["udp", "doh"] = "udp"
    dns_server: str = "1.1.1.1"
    dns_port: int = 53
    doh_url: str = "https://1.1.1.1/dns-query"
    dns_timeout: float = 5.0
    read_chunk_size: int = 64 * 1024

    @classmethod
    def create(cls, identity: str, **kwargs: Any) -> RelayConfig:
        """Build a config, validating the identity.

        Raises:
            ConfigError: If the identity is not a valid version 4 UUID
        """
        token = identity_bytes(identity)
        if kwargs.get("dial_timeout") == 0:
            kwargs["dial_timeout"] = None
        return cls(identity=identity.lower(), token=token, **kwargs)

    @classmethod
    def from_settings(cls, settings: RelaySettings) -> RelayConfig:
        return cls.create(
            settings.uuid,
            egress_hint=settings.proxy_ip or None,
            egress_mode=settings.egress_mode,
            dial_timeout=settings.dial_timeout,
            dns_transport=settings.dns_transport,
            dns_server=settings.dns_server,
            dns_port=settings.dns_port,
            doh_url=settings.doh_url,
            dns_timeout=settings.dns_timeout,
            read_chunk_size=settings.read_chunk_size,
        )


_settings: RelaySettings | None = None


def get_settings() -> RelaySettings:
    """Get the cached settings instance.

    To reload settings (e.g., in tests), call clear_settings() first.
    """
    global _settings
    if _settings is None:
        _settings = RelaySettings()
    return _settings


def clear_settings() -> None:
    """Clear the cached settings so the next get_settings() re-reads the environment."""
    global _settings
    _settings = None


__all__ = [
    "ConfigError",
    "DEFAULT_IDENTITY",
    "RelayConfig",
    "RelaySettings",
    "clear_settings",
    "flatten_config",
    "get_settings",
    "load_config_from_file",
]
