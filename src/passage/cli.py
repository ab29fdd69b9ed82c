"""Passage CLI - Command line interface."""

from __future__ import annotations

import asyncio
import sys
from typing import Any

import click
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

from passage.core.config import (
    RelayConfig,
    RelaySettings,
    flatten_config,
    get_settings,
    load_config_from_file,
)
from passage.core.exceptions import ConfigError, format_error_for_user

console = Console()

BANNER = r"""
 ___  _   ___ ___   _   ___ ___
| _ \/_\ / __/ __| /_\ / __| __|
|  _/ _ \\__ \__ \/ _ \ (_ | _|
|_|/_/ \_\___/___/_/ \_\___|___|
      WebSocket tunneling relay
"""


def _load_settings(config_file: str | None, overrides: dict[str, Any]) -> RelaySettings:
    """Merge environment, config file and command line (in increasing priority)."""
    values: dict[str, Any] = {}
    if config_file:
        file_config = flatten_config(load_config_from_file(config_file))
        values.update(
            {key: value for key, value in file_config.items() if key in RelaySettings.model_fields}
        )
    values.update({key: value for key, value in overrides.items() if value is not None})
    return RelaySettings(**values)


@click.group()
def main() -> None:
    """Passage - relay WebSocket sessions to TCP destinations.

    Examples:

        passage serve --uuid 0f2c...-... --bind 0.0.0.0:8080

        passage link --host relay.example.com

    Every option can also be set with a PASSAGE_* environment variable.
    """


@main.command()
@click.option(
    "--config", "-c",
    "config_file",
    type=click.Path(exists=True),
    help="Path to YAML or TOML config file",
)
@click.option("--bind", "-b", default=None, help="Bind address (default: 0.0.0.0:8080)")
@click.option("--uuid", "-u", "identity", default=None, help="Accepted session identity")
@click.option("--proxy-ip", default=None, help="Egress hint for outbound connections")
@click.option(
    "--egress-mode",
    type=click.Choice(["bind", "relay"]),
    default=None,
    help="Use the egress hint as source address (bind) or dial it instead (relay)",
)
@click.option(
    "--dial-timeout",
    type=float,
    default=None,
    help="Outbound dial timeout in seconds, 0 for the OS default (default: 10)",
)
@click.option(
    "--dns-transport",
    type=click.Choice(["udp", "doh"]),
    default=None,
    help="Resolve relayed DNS queries over UDP or DNS over HTTPS (default: udp)",
)
@click.option(
    "--log-level",
    "-l",
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    default="info",
    help="Log level (default: info)",
)
@click.option("--json-logs", is_flag=True, help="Emit JSON log lines")
def serve(
    config_file: str | None,
    bind: str | None,
    identity: str | None,
    proxy_ip: str | None,
    egress_mode: str | None,
    dial_timeout: float | None,
    dns_transport: str | None,
    log_level: str,
    json_logs: bool,
) -> None:
    """Run the relay server."""
    from passage.observability.logging import configure_logging

    configure_logging(log_level, json_output=json_logs)

    try:
        settings = _load_settings(
            config_file,
            {
                "bind": bind,
                "uuid": identity,
                "proxy_ip": proxy_ip,
                "egress_mode": egress_mode,
                "dial_timeout": dial_timeout,
                "dns_transport": dns_transport,
            },
        )
        config = RelayConfig.from_settings(settings)
    except (ConfigError, ValueError) as e:
        console.print(Panel(f"[red]{escape(format_error_for_user(e))}[/red]", title="Configuration Error", border_style="red"))
        sys.exit(1)

    console.print(BANNER, style="cyan")
    console.print(f"Listening on {settings.bind}", style="yellow")
    if config.egress_hint:
        console.print(f"Egress: {config.egress_hint} ({config.egress_mode})", style="dim")
    timeout_str = f"{config.dial_timeout}s" if config.dial_timeout else "OS default"
    console.print(f"Dial timeout: {timeout_str}", style="dim")
    console.print(f"DNS: {config.dns_transport}", style="dim")

    asyncio.run(run_server(config, settings))


async def run_server(config: RelayConfig, settings: RelaySettings) -> None:
    """Run the relay server until interrupted."""
    from passage.server.app import RelayServer

    server = RelayServer(
        config,
        settings.bind,
        ws_max_size=settings.ws_max_size,
        heartbeat=settings.heartbeat,
    )

    try:
        await server.start()
        console.print("Server started, press Ctrl+C to stop", style="green")

        await asyncio.Event().wait()
    except (KeyboardInterrupt, asyncio.CancelledError):
        console.print("\nShutting down...", style="yellow")
    finally:
        await server.stop()


@main.command()
@click.option("--host", "-h", required=True, help="Public host name of the relay")
@click.option("--port", "-p", type=int, default=443, help="Public port (default: 443)")
@click.option("--path", default="/", help="WebSocket path (default: /)")
@click.option("--uuid", "-u", "identity", default=None, help="Identity (default: PASSAGE_UUID)")
def link(host: str, port: int, path: str, identity: str | None) -> None:
    """Print a client share link for the configured identity."""
    from passage.core.identity import require_valid_identity
    from passage.server.links import build_share_link

    try:
        identity = require_valid_identity(identity or get_settings().uuid)
    except ConfigError as e:
        console.print(f"[red]{escape(e.message)}[/red]")
        sys.exit(1)
    click.echo(build_share_link(identity.lower(), host, port=port, path=path))


@main.command()
def version() -> None:
    """Show version information."""
    from passage import __version__

    console.print(BANNER, style="cyan")
    console.print(f"[bold]Version:[/bold] {__version__}")
    console.print(f"[bold]Python:[/bold] {sys.version}")


if __name__ == "__main__":
    main()
