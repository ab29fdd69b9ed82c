"""Client share links for the configured identity."""

from __future__ import annotations

from urllib.parse import quote, urlencode


def build_share_link(identity: str, host: str, *, port: int = 443, path: str = "/") -> str:
    """Build a ``vless://`` link for a WebSocket+TLS client.

    Example:
        link = build_share_link(config.identity, "relay.example.com")
    """
    query = urlencode(
        {
            "encryption": "none",
            "security": "tls",
            "sni": host,
            "type": "ws",
            "host": host,
            "path": path,
        },
        quote_via=quote,
        safe="",
    )
    authority = f"[{host}]" if ":" in host else host
    return f"vless://{identity}@{authority}:{port}?{query}#{quote(host)}"
