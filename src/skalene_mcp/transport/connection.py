"""Connection: the command/query engine for one open transport.

A ``Connection`` owns the demultiplexer and the write serializer for its
transport. A reader task pumps inbound chunks into the demultiplexer while
two request/response disciplines share the single write slot:

- :meth:`Connection.query_bootloader` sends one binary frame and waits for
  one response byte on the raw sub-stream. No retry.
- :meth:`Connection.query` sends one text message and waits for one line on
  the response sub-stream, resending once per interval until an overall
  deadline.

Both keep the write slot until the exchange settles, so only one request is
ever outstanding on the wire.
"""

from __future__ import annotations

import asyncio
import logging
from types import TracebackType

from ..errors import (
    FatalError,
    QueryTimeout,
    StreamClosed,
    TransportError,
    UnexpectedResponse,
)
from ..protocol.commands import DEFAULT_DEBUG_MARKER
from ..protocol.framing import build_frame
from ..protocol.messages import encode_message, parse_message
from .demux import Demultiplexer, PendingQuery, StreamHandler
from .serial_connection import Transport
from .writer import WriteSerializer

logger = logging.getLogger(__name__)

BOOTLOADER_TIMEOUT_S = 10.0
QUERY_TIMEOUT_S = 10.0
RESEND_INTERVAL_S = 1.0


class Connection:
    """Protocol engine bound to a single transport.

    Usage::

        async with Connection(transport) as conn:
            body = await conn.query("3")
            await conn.query_bootloader(BootloaderCommand.SWAP, bytes(16),
                                        BootloaderResponse.OKAY)
    """

    def __init__(
        self,
        transport: Transport,
        debug_marker: str = DEFAULT_DEBUG_MARKER,
        query_timeout: float = QUERY_TIMEOUT_S,
        resend_interval: float = RESEND_INTERVAL_S,
        bootloader_timeout: float = BOOTLOADER_TIMEOUT_S,
        settle_time: float | None = None,
    ) -> None:
        self._transport = transport
        self.demux = Demultiplexer(debug_marker)
        self.writer = WriteSerializer(self._write)
        self.query_timeout = query_timeout
        self.resend_interval = resend_interval
        self.bootloader_timeout = bootloader_timeout
        self.settle_time = resend_interval if settle_time is None else settle_time
        self._reader_task: asyncio.Task | None = None
        self._fatal: BaseException | None = None
        self._closed = False

    # ---- sub-streams ----

    @property
    def raw(self) -> StreamHandler[bytes]:
        return self.demux.raw

    @property
    def debug(self) -> StreamHandler[str]:
        return self.demux.debug

    @property
    def responses(self) -> StreamHandler[str]:
        return self.demux.responses

    # ---- lifecycle ----

    @property
    def running(self) -> bool:
        return self._reader_task is not None and not self._reader_task.done()

    @property
    def fatal(self) -> bool:
        return self._fatal is not None

    def start(self) -> None:
        """Start pumping inbound chunks. Must run inside the event loop."""
        if self._reader_task is None:
            self._reader_task = asyncio.get_running_loop().create_task(self._pump())

    async def close(self) -> None:
        """Stop the reader, fail pending waiters and close the transport."""
        if self._closed:
            return
        self._closed = True
        await self._transport.close()
        if self._reader_task is not None:
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
        self.demux.close("connection closed")

    async def __aenter__(self) -> Connection:
        self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def _pump(self) -> None:
        reason = "transport closed"
        try:
            while True:
                chunk = await self._transport.read()
                if not chunk:
                    break
                self.demux.feed(chunk)
        except TransportError as e:
            reason = str(e)
            self._mark_fatal(e)
        finally:
            logger.info("Reader stopped: %s", reason)
            self.demux.close(reason)

    # ---- writes ----

    def _mark_fatal(self, error: BaseException) -> None:
        if self._fatal is None:
            logger.error("Connection is no longer usable: %s", error)
            self._fatal = error

    def _check_usable(self) -> None:
        if self._fatal is not None:
            raise FatalError(
                f"connection failed ({self._fatal}); reconnect before retrying"
            )
        if self._closed:
            raise FatalError("connection closed")

    async def _write(self, payload: bytes) -> None:
        try:
            await self._transport.write(payload)
        except TransportError as e:
            self._mark_fatal(e)
            raise
        except OSError as e:
            error = TransportError(f"write failed: {e}")
            self._mark_fatal(error)
            raise error from e

    # ---- bootloader discipline ----

    async def query_bootloader(self, command: int, body: bytes, expected: int) -> int:
        """Send one bootloader frame and check the single-byte response.

        Args:
            command: Bootloader command code.
            body: Frame body.
            expected: Response byte that means success.

        Returns:
            The response byte.

        Raises:
            UnexpectedResponse: The device answered with another code.
            QueryTimeout: No response within the bootloader timeout.
            TransportError: The stream failed or closed.
        """
        self._check_usable()
        frame = build_frame(command, body)
        pending: PendingQuery[bytes] | None = None
        await self.writer.acquire(frame)
        try:
            pending = self.raw.expect()
            await self.writer.dispatch(frame)
            try:
                response = await pending.wait(self.bootloader_timeout)
            except asyncio.TimeoutError:
                raise QueryTimeout(
                    f"no response to bootloader command 0x{command:02X} "
                    f"after {self.bootloader_timeout:g}s"
                ) from None
        finally:
            if pending is not None:
                pending.cancel()
            self.writer.done()

        if len(response) != 1:
            logger.warning(
                "Bootloader response of unexpected length %d: %s",
                len(response), response.hex(" "),
            )
        code = response[0]
        if code != expected:
            raise UnexpectedResponse(code, expected, command)
        return code

    # ---- text discipline ----

    async def query(self, body: str) -> str:
        """Send a text command and return the verified response body.

        The message is resent every ``resend_interval`` seconds until a line
        arrives or ``query_timeout`` elapses.

        Raises:
            QueryTimeout: No response before the deadline.
            IntegrityError: The response failed its checksum.
            DeviceError: The response carried a non-zero error code.
            TransportError: The stream failed or closed.
        """
        self._check_usable()
        payload = encode_message(body)
        loop = asyncio.get_running_loop()
        pending: PendingQuery[str] | None = None
        resends = 0
        abandoned = False

        await self.writer.acquire(payload)
        try:
            deadline = loop.time() + self.query_timeout
            pending = self.responses.expect()
            logger.debug(">> %s", body)
            await self.writer.dispatch(payload)
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    abandoned = True
                    raise QueryTimeout(
                        f"no response to {body!r} after {self.query_timeout:g}s"
                    )
                try:
                    line = await pending.wait(min(self.resend_interval, remaining))
                    break
                except asyncio.TimeoutError:
                    if loop.time() >= deadline:
                        continue
                    resends += 1
                    logger.debug("Resending %r (attempt %d)", body, resends + 1)
                    await self.writer.dispatch(payload)
        finally:
            if pending is not None:
                pending.cancel()
            try:
                outstanding = resends + (1 if abandoned else 0)
                if outstanding and not self._fatal:
                    await self._settle(outstanding)
            finally:
                self.writer.done()

        return parse_message(line)

    async def _settle(self, outstanding: int) -> None:
        """Discard late duplicates produced by resends before releasing the wire."""
        for _ in range(outstanding):
            try:
                line = await self.responses.next(self.settle_time)
            except (QueryTimeout, StreamClosed):
                return
            logger.warning("Discarding stale response: %s", line)
