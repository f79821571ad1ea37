"""Byte-stream transports for the Skalene instrument.

The engine needs only three primitives from a transport::

    await transport.read()    -> next chunk, or b"" once the stream closed
    await transport.write(b)  -> hand bytes to the OS
    await transport.close()

:class:`SerialTransport` wraps a pyserial port and moves its blocking calls
off the event loop. :class:`StreamTransport` wraps an asyncio stream pair
(e.g. a TCP serial bridge).
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Protocol

import serial
import serial.tools.list_ports

from ..errors import TransportError

logger = logging.getLogger(__name__)

BAUD_RATE = 115200
BUFFER_SIZE = 65536
READ_TIMEOUT_S = 0.1
READ_CHUNK_SIZE = 4096


class Transport(Protocol):
    """Duplex byte stream consumed by :class:`~skalene_mcp.transport.connection.Connection`."""

    async def read(self) -> bytes: ...

    async def write(self, data: bytes) -> None: ...

    async def close(self) -> None: ...


@dataclass
class PortInfo:
    """A serial port found on the host."""

    device: str
    description: str = ""
    vendor_id: int | None = None
    product_id: int | None = None

    def to_dict(self) -> dict:
        return {
            "device": self.device,
            "description": self.description,
            "vendor_id": f"0x{self.vendor_id:04X}" if self.vendor_id is not None else None,
            "product_id": f"0x{self.product_id:04X}" if self.product_id is not None else None,
        }


def enumerate_ports() -> list[PortInfo]:
    """List serial ports, sorted by device name."""
    ports = [
        PortInfo(
            device=p.device,
            description=p.description or "",
            vendor_id=p.vid,
            product_id=p.pid,
        )
        for p in serial.tools.list_ports.comports()
    ]
    ports.sort(key=lambda p: p.device)
    return ports


class SerialTransport:
    """pyserial-backed transport.

    Usage::

        transport = SerialTransport("/dev/ttyACM0")
        transport.open()
        chunk = await transport.read()
        await transport.close()
    """

    def __init__(
        self,
        port: str,
        baudrate: int = BAUD_RATE,
        buffer_size: int = BUFFER_SIZE,
        read_timeout: float = READ_TIMEOUT_S,
    ) -> None:
        self.port = port
        self.baudrate = baudrate
        self.buffer_size = buffer_size
        self.read_timeout = read_timeout
        self._serial: serial.Serial | None = None
        self._closing = False

    @property
    def is_open(self) -> bool:
        return self._serial is not None and self._serial.is_open

    def open(self) -> None:
        """Open the port.

        Raises:
            TransportError: If the port cannot be opened.
        """
        try:
            ser = serial.Serial(
                port=self.port,
                baudrate=self.baudrate,
                timeout=self.read_timeout,
            )
        except (serial.SerialException, OSError) as e:
            raise TransportError(f"Could not open {self.port}: {e}") from e

        # Only some platforms let the driver buffers be resized.
        if hasattr(ser, "set_buffer_size"):
            ser.set_buffer_size(rx_size=self.buffer_size, tx_size=self.buffer_size)

        self._serial = ser
        self._closing = False
        logger.info("Opened %s @ %d baud", self.port, self.baudrate)

    def _read_blocking(self) -> bytes:
        while not self._closing:
            ser = self._serial
            if ser is None or not ser.is_open:
                break
            try:
                data = ser.read(ser.in_waiting or 1)
            except (serial.SerialException, OSError, TypeError) as e:
                if self._closing:
                    return b""
                raise TransportError(f"Read from {self.port} failed: {e}") from e
            if data:
                return data
        return b""

    async def read(self) -> bytes:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._read_blocking)

    def _write_blocking(self, data: bytes) -> None:
        ser = self._serial
        if ser is None or not ser.is_open:
            raise TransportError(f"{self.port} is not open")
        try:
            ser.write(data)
            ser.flush()
        except (serial.SerialException, OSError) as e:
            raise TransportError(f"Write to {self.port} failed: {e}") from e

    async def write(self, data: bytes) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._write_blocking, data)

    async def close(self) -> None:
        if self._serial is None:
            return
        self._closing = True
        try:
            self._serial.close()
        except (serial.SerialException, OSError) as e:
            logger.warning("Error closing %s: %s", self.port, e)
        finally:
            self._serial = None
            logger.info("Closed %s", self.port)


class StreamTransport:
    """Transport over an asyncio ``StreamReader``/``StreamWriter`` pair."""

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        chunk_size: int = READ_CHUNK_SIZE,
    ) -> None:
        self._reader = reader
        self._writer = writer
        self.chunk_size = chunk_size

    @classmethod
    async def open_tcp(cls, host: str, port: int) -> StreamTransport:
        """Connect to a TCP serial bridge such as ser2net."""
        try:
            reader, writer = await asyncio.open_connection(host, port)
        except OSError as e:
            raise TransportError(f"Could not connect to {host}:{port}: {e}") from e
        logger.info("Connected to %s:%d", host, port)
        return cls(reader, writer)

    async def read(self) -> bytes:
        try:
            return await self._reader.read(self.chunk_size)
        except (ConnectionError, OSError) as e:
            raise TransportError(f"Read failed: {e}") from e

    async def write(self, data: bytes) -> None:
        try:
            self._writer.write(data)
            await self._writer.drain()
        except (ConnectionError, OSError) as e:
            raise TransportError(f"Write failed: {e}") from e

    async def close(self) -> None:
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except (ConnectionError, OSError) as e:
            logger.warning("Error closing stream: %s", e)
