from passage.observability.logging import configure_logging
from passage.observability.metrics import (
    ACTIVE_SESSIONS,
    BYTES_RELAYED,
    DNS_QUERIES,
    SESSION_ERRORS,
    SESSIONS,
    generate_metrics,
    get_content_type,
)

__all__ = [
    "SESSIONS",
    "SESSION_ERRORS",
    "ACTIVE_SESSIONS",
    "BYTES_RELAYED",
    "DNS_QUERIES",
    "generate_metrics",
    "get_content_type",
    "configure_logging",
]
