"""Entry point used by the front door for every upgraded connection."""

from __future__ import annotations

from passage.core.config import RelayConfig
from passage.relay.outbound import DnsResolver
from passage.relay.session import Session
from passage.relay.transport import Transport


async def handle(
    transport: Transport,
    early_data_header: str | None,
    config: RelayConfig,
    *,
    peer: str | None = None,
    resolver: DnsResolver | None = None,
) -> None:
    """Run one session to completion.

    Session-scoped errors never escape: they are logged and turned into
    teardown of both endpoints.
    """
    session = Session(transport, config, peer=peer, resolver=resolver)
    await session.run(early_data_header)
