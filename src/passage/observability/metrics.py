from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, generate_latest

SESSIONS = Counter(
    "passage_sessions_total",
    "Sessions that reached an established outbound",
    ["command"],  # command: tcp/udp
)

SESSION_ERRORS = Counter(
    "passage_session_errors_total",
    "Sessions ended by an error",
    ["kind"],
)

ACTIVE_SESSIONS = Gauge(
    "passage_active_sessions",
    "Currently open sessions",
)

BYTES_RELAYED = Counter(
    "passage_bytes_total",
    "Bytes relayed",
    ["direction"],  # direction: upstream (client -> destination) / downstream
)

DNS_QUERIES = Counter(
    "passage_dns_queries_total",
    "DNS queries relayed over the UDP path",
    ["result"],  # result: ok/error
)


def generate_metrics() -> bytes:
    return generate_latest()


def get_content_type() -> str:
    return CONTENT_TYPE_LATEST
