"""Tests for the stream demultiplexer and its sub-stream handlers."""

import asyncio

import pytest

from skalene_mcp.errors import QueryTimeout, StreamClosed
from skalene_mcp.transport.demux import Demultiplexer, LineSplitter, StreamHandler


def test_line_split_across_chunks():
    """A line spanning two chunks is delivered once, whole."""
    splitter = LineSplitter()
    assert splitter.feed(b"4 1 2") == []
    assert splitter.feed(b" 3:123\r") == []
    assert splitter.feed(b"\n10 ok") == ["4 1 2 3:123"]
    assert splitter.pending == "10 ok"


def test_several_lines_in_one_chunk():
    splitter = LineSplitter()
    assert splitter.feed(b"a\r\nb\r\nc") == ["a", "b"]


def test_multibyte_character_split():
    splitter = LineSplitter()
    data = "16 t=25°C\r\n".encode()
    cut = data.index(b"\xc2") + 1
    assert splitter.feed(data[:cut]) == []
    assert splitter.feed(data[cut:]) == ["16 t=25°C"]


def test_carry_over_limit():
    splitter = LineSplitter(max_carry_over=8)
    splitter.feed(b"0123456789")
    assert splitter.pending == ""
    assert splitter.feed(b"ab\r\n") == ["ab"]


def test_routing():
    """Debug lines go to debug, everything else to responses, all bytes to raw."""
    demux = Demultiplexer("16")
    raw, debug, responses = [], [], []
    demux.raw.every(raw.append)
    demux.debug.every(debug.append)
    demux.responses.every(responses.append)

    demux.feed(b"16 heater on\r\n4 0:1\r\n160 x\r\n")

    assert raw == [b"16 heater on\r\n4 0:1\r\n160 x\r\n"]
    assert debug == ["16 heater on"]
    assert responses == ["4 0:1", "160 x"]


def test_alternate_debug_marker():
    demux = Demultiplexer("20")
    debug = []
    demux.debug.every(debug.append)
    demux.feed(b"20 legacy\r\n16 not debug\r\n")
    assert debug == ["20 legacy"]


def test_every_and_next_both_see_item():
    async def run():
        handler = StreamHandler("responses")
        seen = []
        handler.every(seen.append)
        pending = handler.expect()
        handler.push("x")
        return seen, await pending.wait(1)

    seen, got = asyncio.run(run())
    assert seen == ["x"]
    assert got == "x"


def test_waiters_served_oldest_first():
    async def run():
        handler = StreamHandler("responses")
        first = handler.expect()
        second = handler.expect()
        handler.push("a")
        handler.push("b")
        return await first.wait(1), await second.wait(1)

    assert asyncio.run(run()) == ("a", "b")


def test_unsubscribe():
    handler = StreamHandler("debug")
    seen = []
    unsubscribe = handler.every(seen.append)
    handler.push("a")
    unsubscribe()
    handler.push("b")
    assert seen == ["a"]


def test_listener_exception_does_not_break_delivery():
    async def run():
        handler = StreamHandler("debug")

        def broken(item):
            raise RuntimeError("boom")

        handler.every(broken)
        pending = handler.expect()
        handler.push("a")
        return await pending.wait(1)

    assert asyncio.run(run()) == "a"


def test_next_timeout():
    async def run():
        handler = StreamHandler("responses")
        with pytest.raises(QueryTimeout):
            await handler.next(0.01)
        return handler.waiting

    assert asyncio.run(run()) == 0


def test_cancelled_waiter_is_skipped():
    async def run():
        handler = StreamHandler("responses")
        stale = handler.expect()
        live = handler.expect()
        stale.cancel()
        stale.cancel()
        handler.push("a")
        return await live.wait(1)

    assert asyncio.run(run()) == "a"


def test_close_fails_waiters():
    async def run():
        demux = Demultiplexer()
        pending = demux.responses.expect()
        demux.close("transport closed")
        with pytest.raises(StreamClosed):
            await pending.wait(1)
        with pytest.raises(StreamClosed):
            demux.responses.expect()
        return demux.raw.closed

    assert asyncio.run(run()) is True
