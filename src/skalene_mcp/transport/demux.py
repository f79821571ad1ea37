"""Stream demultiplexer: one inbound byte stream, three logical sub-streams.

::

    transport chunks
          |
          +------------------------------------------> raw       (bytes)
          |
    utf-8 decode, split on "\\r\\n"
          |
          +---- first token == debug marker ---------> debug     (str)
          |
          +---- everything else ---------------------> responses (str)

Each sub-stream is a :class:`StreamHandler`. Listeners registered with
``every`` see every item; waiters queued with ``next``/``expect`` are served
one item each, oldest first. The two interfaces are independent.
"""

from __future__ import annotations

import asyncio
import codecs
import logging
from collections import deque
from collections.abc import Callable
from typing import Generic, TypeVar

from ..errors import QueryTimeout, StreamClosed

logger = logging.getLogger(__name__)

T = TypeVar("T")

LINE_DELIMITER = "\r\n"
MAX_CARRY_OVER = 65536


class PendingQuery(Generic[T]):
    """One waiting slot on a sub-stream.

    Created by :meth:`StreamHandler.expect`; resolved by the next item pushed
    to the handler. :meth:`cancel` is idempotent.
    """

    def __init__(self, handler: StreamHandler[T], future: asyncio.Future) -> None:
        self._handler = handler
        self.future = future
        self.sent_at = asyncio.get_running_loop().time()

    @property
    def done(self) -> bool:
        return self.future.done()

    async def wait(self, timeout: float | None) -> T:
        """Wait up to ``timeout`` seconds.

        On timeout ``asyncio.TimeoutError`` is raised and the slot stays
        queued, so the caller can keep waiting on it.
        """
        return await asyncio.wait_for(asyncio.shield(self.future), timeout)

    def cancel(self) -> None:
        self._handler._discard(self)


class StreamHandler(Generic[T]):
    """Fan-out point for one sub-stream."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._listeners: list[Callable[[T], None]] = []
        self._waiters: deque[PendingQuery[T]] = deque()
        self._closed: StreamClosed | None = None

    @property
    def closed(self) -> bool:
        return self._closed is not None

    @property
    def waiting(self) -> int:
        return len(self._waiters)

    def every(self, callback: Callable[[T], None]) -> Callable[[], None]:
        """Call ``callback`` for every item. Returns an unsubscribe function."""
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def expect(self) -> PendingQuery[T]:
        """Queue a waiter for the next item.

        Raises:
            StreamClosed: If the stream already closed.
        """
        if self._closed is not None:
            raise StreamClosed(f"{self.name} stream closed")
        future = asyncio.get_running_loop().create_future()
        pending = PendingQuery(self, future)
        self._waiters.append(pending)
        return pending

    async def next(self, timeout: float | None) -> T:
        """Wait for the next item.

        Raises:
            QueryTimeout: If nothing arrives within ``timeout`` seconds.
            StreamClosed: If the stream closes first.
        """
        pending = self.expect()
        try:
            return await pending.wait(timeout)
        except asyncio.TimeoutError:
            raise QueryTimeout(f"timeout waiting on {self.name} stream") from None
        finally:
            pending.cancel()

    def push(self, item: T) -> None:
        """Deliver one item to every listener and the oldest live waiter."""
        for callback in list(self._listeners):
            try:
                callback(item)
            except Exception:
                logger.exception("%s listener failed", self.name)

        while self._waiters:
            pending = self._waiters.popleft()
            if not pending.future.done():
                pending.future.set_result(item)
                return

    def close(self, reason: str = "stream closed") -> None:
        """Fail every queued waiter and refuse new ones."""
        if self._closed is not None:
            return
        self._closed = StreamClosed(f"{self.name}: {reason}")
        while self._waiters:
            pending = self._waiters.popleft()
            if not pending.future.done():
                pending.future.set_exception(StreamClosed(f"{self.name}: {reason}"))

    def _discard(self, pending: PendingQuery[T]) -> None:
        try:
            self._waiters.remove(pending)
        except ValueError:
            pass
        if not pending.future.done():
            pending.future.cancel()


class LineSplitter:
    """Incremental UTF-8 decoder and ``\\r\\n`` line splitter."""

    def __init__(self, delimiter: str = LINE_DELIMITER,
                 max_carry_over: int = MAX_CARRY_OVER) -> None:
        self.delimiter = delimiter
        self.max_carry_over = max_carry_over
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    @property
    def pending(self) -> str:
        """Text received after the last delimiter."""
        return self._buffer

    def feed(self, chunk: bytes) -> list[str]:
        """Consume a chunk and return the lines it completed."""
        self._buffer += self._decoder.decode(chunk)
        lines = []
        while True:
            position = self._buffer.find(self.delimiter)
            if position == -1:
                break
            lines.append(self._buffer[:position])
            self._buffer = self._buffer[position + len(self.delimiter):]

        if len(self._buffer) > self.max_carry_over:
            logger.warning(
                "Discarding %d undelimited characters", len(self._buffer)
            )
            self._buffer = ""
        return lines


class Demultiplexer:
    """Split transport chunks into the raw, debug and response sub-streams."""

    def __init__(self, debug_marker: str = "16") -> None:
        self.debug_marker = debug_marker
        self.raw: StreamHandler[bytes] = StreamHandler("raw")
        self.debug: StreamHandler[str] = StreamHandler("debug")
        self.responses: StreamHandler[str] = StreamHandler("responses")
        self._splitter = LineSplitter()

    def is_debug(self, line: str) -> bool:
        return line.split(" ", 1)[0] == self.debug_marker

    def feed(self, chunk: bytes) -> None:
        """Push one transport chunk through the pipeline."""
        if not chunk:
            return
        self.raw.push(bytes(chunk))
        for line in self._splitter.feed(chunk):
            if self.is_debug(line):
                self.debug.push(line)
            else:
                logger.debug("<< %s", line)
                self.responses.push(line)

    def close(self, reason: str = "stream closed") -> None:
        for handler in (self.raw, self.debug, self.responses):
            handler.close(reason)
