"""Shared fixtures: an in-memory transport that can answer writes."""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import pytest

from skalene_mcp.protocol.messages import encode_message


def reply(body: str) -> bytes:
    """Encode a device response line."""
    return encode_message(body)


class FakeTransport:
    """Transport double.

    ``responder`` is called with each written payload and may return bytes
    (or a list of chunks) to feed back as if the device answered.
    """

    def __init__(self, responder: Callable[[bytes], object] | None = None) -> None:
        self.writes: list[bytes] = []
        self.responder = responder
        self.closed = False
        self._inbound: asyncio.Queue[bytes] | None = None

    @property
    def inbound(self) -> asyncio.Queue[bytes]:
        if self._inbound is None:
            self._inbound = asyncio.Queue()
        return self._inbound

    def feed(self, data: bytes) -> None:
        self.inbound.put_nowait(bytes(data))

    async def read(self) -> bytes:
        return await self.inbound.get()

    async def write(self, data: bytes) -> None:
        self.writes.append(bytes(data))
        if self.responder is None:
            return
        answer = self.responder(bytes(data))
        if answer is None:
            return
        chunks = answer if isinstance(answer, list) else [answer]
        loop = asyncio.get_running_loop()
        for chunk in chunks:
            loop.call_soon(self.feed, chunk)

    async def close(self) -> None:
        self.closed = True
        self.feed(b"")


@pytest.fixture
def transport():
    return FakeTransport()
