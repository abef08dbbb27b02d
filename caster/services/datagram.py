from __future__ import annotations

import asyncio
import logging
import socket

from caster.services.timers import TimerRegistry
from caster.types import DispatchFailure, DispatchOutcome, DispatchRequest, DispatchSuccess

logger = logging.getLogger(__name__)


class _ReplyProtocol(asyncio.DatagramProtocol):
    """Resolves ``reply`` with the first datagram (or socket error) seen on the endpoint."""

    def __init__(self) -> None:
        self.reply: asyncio.Future[tuple[bytes, tuple]] = (
            asyncio.get_running_loop().create_future()
        )

    def datagram_received(self, data: bytes, addr) -> None:
        if not self.reply.done():
            self.reply.set_result((data, addr))

    def error_received(self, exc: Exception) -> None:
        if not self.reply.done():
            self.reply.set_exception(exc)

    def connection_lost(self, exc: Exception | None) -> None:
        # Closed by us on every terminal path; nothing left to wait for
        if not self.reply.done():
            self.reply.cancel()


class DatagramDispatcher:
    """
    One UDP packet per call, optionally followed by one reply.

    A missing reply is not an error: UDP gives no delivery guarantee, so the
    absolute timer expiring yields a successful "no response" outcome.
    """

    def __init__(self, timers: TimerRegistry | None = None) -> None:
        self.timers = timers or TimerRegistry()

    async def dispatch(
        self,
        request: DispatchRequest,
        *,
        local_port: int | None = None,
        encoding: str = "utf-8",
    ) -> DispatchOutcome:
        loop = asyncio.get_running_loop()
        host, port = request.host, request.port
        wait_for_reply = request.expect_reply
        # Bind first when a reply is expected so the listener exists before sending
        local_addr = ("0.0.0.0", local_port or 0) if wait_for_reply else None

        try:
            infos = await loop.getaddrinfo(
                host, port, family=socket.AF_INET, type=socket.SOCK_DGRAM
            )
        except OSError as e:
            return DispatchFailure(f"UDP error: {e}")
        target = infos[0][4]

        try:
            transport, protocol = await loop.create_datagram_endpoint(
                _ReplyProtocol, local_addr=local_addr, family=socket.AF_INET
            )
        except OSError as e:
            return DispatchFailure(f"UDP error: {e}")

        try:
            try:
                transport.sendto(request.payload, target)
            except OSError as e:
                return DispatchFailure(f"UDP error: {e}")
            # Immediate send errors are reported through error_received
            if protocol.reply.done() and protocol.reply.exception() is not None:
                return DispatchFailure(f"UDP error: {protocol.reply.exception()}")
            bytes_sent = len(request.payload)
            logger.debug("UDP sent %d bytes to %s:%s", bytes_sent, host, port)

            if not wait_for_reply:
                return DispatchSuccess(f"UDP packet sent to {host}:{port}", bytes_sent)

            try:
                async with self.timers.deadline(request.timeout_s):
                    data, addr = await protocol.reply
            except TimeoutError:
                return DispatchSuccess(
                    f"UDP no response within {request.timeout_ms}ms", bytes_sent
                )
            except OSError as e:
                return DispatchFailure(f"UDP error: {e}")

            remote_host, remote_port = addr[0], addr[1]
            return DispatchSuccess(
                f"UDP response from {remote_host}:{remote_port}",
                bytes_sent,
                reply_data=data.decode(encoding, errors="replace"),
                remote_host=remote_host,
                remote_port=remote_port,
            )
        finally:
            transport.close()
