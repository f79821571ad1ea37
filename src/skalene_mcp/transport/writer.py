"""Write serializer: at most one unacknowledged write on the wire.

The wire protocols expect exactly one outstanding request before the next
is sent, so the slot is handed over explicitly with :meth:`WriteSerializer.done`
rather than when bytes are flushed.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class WriteRequest:
    """A write waiting for the slot."""

    payload: bytes
    completion: asyncio.Future


class WriteSerializer:
    """FIFO hand-off of the single write slot.

    Usage::

        writer = WriteSerializer(transport.write)
        await writer.send(frame)      # dispatched once the slot is ours
        ...                           # read the response
        writer.done()                 # next queued request goes out
    """

    def __init__(self, write: Callable[[bytes], Awaitable[object]]) -> None:
        self._write = write
        self._busy = False
        self._queue: deque[WriteRequest] = deque()

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def queued(self) -> int:
        return len(self._queue)

    async def send(self, payload: bytes) -> None:
        """Dispatch ``payload`` now, or once every earlier request is done."""
        await self.acquire(payload)
        await self.dispatch(payload)

    async def acquire(self, payload: bytes = b"") -> None:
        """Wait until the write slot belongs to the caller."""
        if not self._busy:
            self._busy = True
            return

        future = asyncio.get_running_loop().create_future()
        request = WriteRequest(payload=bytes(payload), completion=future)
        self._queue.append(request)
        try:
            await future
        except asyncio.CancelledError:
            if future.done() and not future.cancelled():
                # The slot was granted just before cancellation; pass it on.
                self.done()
            else:
                try:
                    self._queue.remove(request)
                except ValueError:
                    pass
            raise

    async def dispatch(self, payload: bytes) -> None:
        """Write ``payload`` on behalf of the current slot owner."""
        if not self._busy:
            raise RuntimeError("dispatch() called without owning the write slot")
        logger.debug(">> %d bytes", len(payload))
        await self._write(bytes(payload))

    def done(self) -> None:
        """Release the slot to the next queued request, or mark idle."""
        while self._queue:
            request = self._queue.popleft()
            if not request.completion.done():
                request.completion.set_result(None)
                return
        self._busy = False
