"""Relay core: session state, outbound connector and stream pump."""

from .handler import handle
from .outbound import (
    DnsRelay,
    DnsResolver,
    DohDnsResolver,
    TcpConnection,
    UdpDnsResolver,
    open_dns_relay,
    open_tcp,
)
from .pump import ResponseHeaderWriter, pump_chunk_to_outbound, pump_outbound_to_transport
from .session import Session, SessionState, TcpOutbound, UdpOutbound, Unset
from .transport import EARLY_DATA_HEADER, Transport, WebSocketTransport, decode_early_data

__all__ = [
    "handle",
    # Session
    "Session",
    "SessionState",
    "Unset",
    "TcpOutbound",
    "UdpOutbound",
    # Outbound
    "TcpConnection",
    "open_tcp",
    "DnsResolver",
    "UdpDnsResolver",
    "DohDnsResolver",
    "DnsRelay",
    "open_dns_relay",
    # Pump
    "ResponseHeaderWriter",
    "pump_outbound_to_transport",
    "pump_chunk_to_outbound",
    # Transport
    "Transport",
    "WebSocketTransport",
    "EARLY_DATA_HEADER",
    "decode_early_data",
]
