from __future__ import annotations

import asyncio
import time

import pytest

from caster.services.stream import StreamDispatcher
from caster.types import DispatchFailure, DispatchRequest, DispatchSuccess, Transport
from tests.utils.peers import free_port


def _request(port: int, payload: bytes = b"hello", timeout_ms: int = 200, expect_reply: bool = True):
    return DispatchRequest(
        host="127.0.0.1",
        port=port,
        transport=Transport.STREAM,
        payload=payload,
        timeout_ms=timeout_ms,
        expect_reply=expect_reply,
    )


@pytest.mark.integration
async def test_send_without_reply_half_closes(tcp_peer):
    received: asyncio.Future[bytes] = asyncio.get_running_loop().create_future()

    async def handler(reader, writer):
        # read() returns only after the client's half-close
        received.set_result(await reader.read())

    port = await tcp_peer(handler)
    dispatcher = StreamDispatcher()
    outcome = await dispatcher.dispatch(_request(port, b"PING\n", expect_reply=False))

    assert outcome == DispatchSuccess("TCP payload sent", bytes_sent=5)
    assert await asyncio.wait_for(received, timeout=1.0) == b"PING\n"
    assert dispatcher.timers.pending == 0


@pytest.mark.integration
async def test_send_without_reply_left_open(tcp_peer):
    async def handler(reader, writer):
        await reader.read()

    port = await tcp_peer(handler)
    dispatcher = StreamDispatcher()
    outcome = await dispatcher.dispatch(
        _request(port, b"abc", expect_reply=False), close_after_send=False
    )

    assert isinstance(outcome, DispatchSuccess)
    assert outcome.message == "TCP payload sent (connection left open)"
    assert outcome.bytes_sent == 3
    assert dispatcher.timers.pending == 0


@pytest.mark.integration
async def test_echo_then_close_is_response_received(tcp_peer):
    async def handler(reader, writer):
        data = await reader.read()
        writer.write(data.upper())
        await writer.drain()

    port = await tcp_peer(handler)
    dispatcher = StreamDispatcher()
    outcome = await dispatcher.dispatch(_request(port, b"hello"))

    assert isinstance(outcome, DispatchSuccess)
    assert outcome.message == "TCP response received"
    assert outcome.reply_data == "HELLO"
    assert outcome.bytes_sent == 5
    assert dispatcher.timers.pending == 0


@pytest.mark.integration
async def test_silent_peer_fails_with_timeout(tcp_peer):
    async def handler(reader, writer):
        await reader.read()
        await asyncio.sleep(0.5)

    port = await tcp_peer(handler)
    dispatcher = StreamDispatcher()
    t0 = time.monotonic()
    outcome = await dispatcher.dispatch(_request(port, timeout_ms=200))
    elapsed = time.monotonic() - t0

    assert isinstance(outcome, DispatchFailure)
    assert outcome.kind == "timeout"
    assert outcome.message == "TCP timeout after 200ms - no response received"
    assert 0.18 <= elapsed < 1.0
    assert dispatcher.timers.pending == 0


@pytest.mark.integration
async def test_one_late_byte_then_close_succeeds(tcp_peer):
    async def handler(reader, writer):
        await reader.read()
        await asyncio.sleep(0.05)
        writer.write(b"x")
        await writer.drain()

    port = await tcp_peer(handler)
    dispatcher = StreamDispatcher()
    outcome = await dispatcher.dispatch(_request(port, timeout_ms=200))

    assert isinstance(outcome, DispatchSuccess)
    assert outcome.reply_data == "x"
    assert outcome.message == "TCP response received"
    assert dispatcher.timers.pending == 0


@pytest.mark.integration
async def test_idle_timer_resets_on_each_chunk(tcp_peer):
    """'A' at once, 'B' after 100 ms, then silence: success ~one idle period after 'B'."""

    async def handler(reader, writer):
        await reader.read(100)
        writer.write(b"A")
        await writer.drain()
        await asyncio.sleep(0.1)
        writer.write(b"B")
        await writer.drain()
        # Hold the connection until the client gives up
        await reader.read()

    port = await tcp_peer(handler)
    dispatcher = StreamDispatcher()
    t0 = time.monotonic()
    outcome = await dispatcher.dispatch(_request(port, timeout_ms=200), close_after_send=False)
    elapsed = time.monotonic() - t0

    assert isinstance(outcome, DispatchSuccess)
    assert outcome.reply_data == "AB"
    assert outcome.message == "TCP idle timeout after 200ms"
    # 100 ms between chunks + 200 ms idle; B arriving must have re-armed the timer
    assert 0.28 <= elapsed < 1.0
    assert dispatcher.timers.pending == 0


@pytest.mark.integration
async def test_close_without_response(tcp_peer):
    async def handler(reader, writer):
        await reader.read()

    port = await tcp_peer(handler)
    dispatcher = StreamDispatcher()
    outcome = await dispatcher.dispatch(_request(port))

    assert outcome == DispatchSuccess("TCP connection closed without response", bytes_sent=5)
    assert outcome.reply_data is None
    assert dispatcher.timers.pending == 0


@pytest.mark.integration
async def test_multibyte_reply_split_across_chunks(tcp_peer):
    text = "héllo wörld".encode("utf-8")

    async def handler(reader, writer):
        await reader.read()
        # Split inside the two-byte 'é'
        writer.write(text[:2])
        await writer.drain()
        await asyncio.sleep(0.02)
        writer.write(text[2:])
        await writer.drain()

    port = await tcp_peer(handler)
    outcome = await StreamDispatcher().dispatch(_request(port))

    assert isinstance(outcome, DispatchSuccess)
    assert outcome.reply_data == "héllo wörld"


@pytest.mark.integration
async def test_connection_refused_is_transport_failure():
    dispatcher = StreamDispatcher()
    outcome = await dispatcher.dispatch(_request(free_port()))

    assert isinstance(outcome, DispatchFailure)
    assert outcome.kind == "transport"
    assert outcome.message.startswith("TCP error: ")
    assert dispatcher.timers.pending == 0


@pytest.mark.unit
async def test_connect_timeout(monkeypatch):
    async def _never_connects(host, port):
        await asyncio.sleep(10)

    monkeypatch.setattr(asyncio, "open_connection", _never_connects)
    dispatcher = StreamDispatcher()
    outcome = await dispatcher.dispatch(_request(4321, timeout_ms=50))

    assert outcome == DispatchFailure(
        "Failed to connect to 127.0.0.1:4321 within 50 ms. Connection timed out",
        kind="timeout",
    )
    assert dispatcher.timers.pending == 0


@pytest.mark.integration
async def test_reset_mid_stream_is_transport_failure(tcp_peer):
    async def handler(reader, writer):
        await reader.read()
        writer.write(b"partial")
        await writer.drain()
        await asyncio.sleep(0.02)
        writer.transport.abort()

    port = await tcp_peer(handler)
    dispatcher = StreamDispatcher()
    outcome = await dispatcher.dispatch(_request(port))

    # An abort after data is either seen as a reset or as a plain close
    if isinstance(outcome, DispatchFailure):
        assert outcome.message.startswith("TCP error: ")
    else:
        assert outcome.reply_data == "partial"
    assert dispatcher.timers.pending == 0
