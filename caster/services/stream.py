from __future__ import annotations

import asyncio
import contextlib
import logging
import socket

from caster.services.accumulator import ResponseAccumulator
from caster.services.timers import TimerRegistry
from caster.types import DispatchFailure, DispatchOutcome, DispatchRequest, DispatchSuccess

logger = logging.getLogger(__name__)


class StreamDispatcher:
    """
    One TCP exchange per call.

    - An absolute timer of ``timeout_ms`` covers connect, write and the first reply byte.
    - Once bytes arrive, an idle timer of ``timeout_ms`` is re-armed on every chunk;
      silence after data, or the peer closing, ends the exchange successfully.
    - Transport errors fail immediately with the underlying error text.
    """

    def __init__(self, timers: TimerRegistry | None = None, read_size: int = 4096) -> None:
        self.timers = timers or TimerRegistry()
        self.read_size = read_size

    async def dispatch(
        self,
        request: DispatchRequest,
        *,
        close_after_send: bool = True,
        encoding: str = "utf-8",
    ) -> DispatchOutcome:
        loop = asyncio.get_running_loop()
        host, port = request.host, request.port
        give_up_at = loop.time() + request.timeout_s

        try:
            async with self.timers.deadline_at(give_up_at):
                reader, writer = await asyncio.open_connection(host, port)
        except TimeoutError:
            return DispatchFailure(
                f"Failed to connect to {host}:{port} within {request.timeout_ms} ms. "
                "Connection timed out",
                kind="timeout",
            )
        except OSError as e:
            return DispatchFailure(f"TCP error: {e}")

        sock = writer.get_extra_info("socket")
        if sock is not None:
            with contextlib.suppress(OSError):
                sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        # drain() returns only once the payload has left the transport buffer
        writer.transport.set_write_buffer_limits(high=0)

        try:
            return await self._exchange(
                reader, writer, request, give_up_at, close_after_send, encoding
            )
        except OSError as e:
            return DispatchFailure(f"TCP error: {e}")
        finally:
            writer.transport.abort()
            with contextlib.suppress(OSError):
                await writer.wait_closed()

    async def _exchange(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        request: DispatchRequest,
        give_up_at: float,
        close_after_send: bool,
        encoding: str,
    ) -> DispatchOutcome:
        bytes_sent = 0
        try:
            async with self.timers.deadline_at(give_up_at):
                writer.write(request.payload)
                await writer.drain()
                bytes_sent = len(request.payload)
                logger.debug("TCP sent %d bytes to %s:%s", bytes_sent, request.host, request.port)

                if not request.expect_reply:
                    if not close_after_send:
                        return DispatchSuccess(
                            "TCP payload sent (connection left open)", bytes_sent
                        )
                    if writer.can_write_eof():
                        writer.write_eof()
                    await writer.drain()
                    return DispatchSuccess("TCP payload sent", bytes_sent)

                if close_after_send and writer.can_write_eof():
                    writer.write_eof()
                first = await reader.read(self.read_size)
        except TimeoutError:
            return DispatchFailure(
                f"TCP timeout after {request.timeout_ms}ms - no response received",
                kind="timeout",
            )

        if not first:
            return DispatchSuccess("TCP connection closed without response", bytes_sent)

        reply = ResponseAccumulator(encoding)
        reply.append(first)
        try:
            async with self.timers.deadline(request.timeout_s) as idle:
                while True:
                    chunk = await reader.read(self.read_size)
                    if not chunk:
                        return DispatchSuccess(
                            "TCP response received", bytes_sent, reply_data=reply.text()
                        )
                    reply.append(chunk)
                    idle.reset(request.timeout_s)
        except TimeoutError:
            logger.debug("TCP idle after %d bytes in %d chunks", len(reply), reply.chunks)
            return DispatchSuccess(
                f"TCP idle timeout after {request.timeout_ms}ms",
                bytes_sent,
                reply_data=reply.text(),
            )
