from __future__ import annotations

import asyncio
import contextlib
from typing import TYPE_CHECKING

import pytest

from tests.utils.display import RecorderDisplay
from tests.utils.peers import UdpPeer, guarded

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from tests.utils.peers import StreamHandler


@pytest.fixture
async def tcp_peer() -> AsyncIterator:
    """
    Factory starting loopback TCP servers: ``port = await tcp_peer(handler)``.
    Servers are closed at teardown.
    """
    servers: list[asyncio.AbstractServer] = []

    async def _start(handler: StreamHandler) -> int:
        server = await asyncio.start_server(guarded(handler), "127.0.0.1", 0)
        servers.append(server)
        return server.sockets[0].getsockname()[1]

    try:
        yield _start
    finally:
        for server in servers:
            server.close()
            # Handlers are bounded; do not let a stuck one hang teardown
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(server.wait_closed(), timeout=2.0)


@pytest.fixture
async def udp_peer() -> AsyncIterator:
    """Factory starting loopback UDP peers: ``peer, port = await udp_peer(reply=b"pong")``."""
    transports: list[asyncio.DatagramTransport] = []

    async def _start(reply: bytes | None = None) -> tuple[UdpPeer, int]:
        loop = asyncio.get_running_loop()
        transport, peer = await loop.create_datagram_endpoint(
            lambda: UdpPeer(reply), local_addr=("127.0.0.1", 0)
        )
        transports.append(transport)
        return peer, transport.get_extra_info("sockname")[1]

    try:
        yield _start
    finally:
        for transport in transports:
            transport.close()


@pytest.fixture
def display() -> RecorderDisplay:
    return RecorderDisplay()
