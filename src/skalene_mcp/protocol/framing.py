"""Bootloader frame builder and parser.

Frame layout::

    +----------+-----------+---------+-------------------+
    |  Magic   |  Length   | Command |       Body        |
    | 4 bytes  |  4 bytes  | 1 byte  |  Length bytes     |
    +----------+-----------+---------+-------------------+

- Magic: 0x5048434D, little-endian, marks stream alignment
- Length: little-endian byte count of the body only
- Response: a single byte (OKAY, CRC_OKAY or an error code)
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum

MAGIC = 0x5048434D
HEADER_SIZE = 9  # 4(magic) + 4(length) + 1(command)
SWAP_BODY_SIZE = 16


class BootloaderCommand(IntEnum):
    """Bootloader request codes."""

    UNLOCK = 0xA0
    DATA = 0xA1
    VERIFY = 0xA2
    SWAP = 0xA4


class BootloaderResponse(IntEnum):
    """Bootloader success codes. Any other byte is an error code."""

    OKAY = 0x50
    CRC_OKAY = 0x53


@dataclass
class BootloaderFrame:
    """A parsed bootloader request frame."""

    command: int
    body: bytes
    magic: int = MAGIC

    @property
    def body_length(self) -> int:
        return len(self.body)

    def __repr__(self) -> str:
        return (
            f"BootloaderFrame(command=0x{self.command:02X}, "
            f"body_length={self.body_length})"
        )


def u32_le(value: int) -> bytes:
    """Encode an unsigned 32-bit integer, little-endian."""
    return (value & 0xFFFFFFFF).to_bytes(4, "little")


def build_frame(command: int, body: bytes = b"") -> bytes:
    """Build a bootloader request frame.

    Args:
        command: Single-byte bootloader command.
        body: Command-specific body bytes.

    Returns:
        The encoded frame ready to write to the transport.
    """
    return u32_le(MAGIC) + u32_le(len(body)) + bytes([command]) + bytes(body)


def parse_frame(data: bytes) -> BootloaderFrame | None:
    """Parse an encoded bootloader frame.

    Returns:
        A ``BootloaderFrame``, or ``None`` if the magic is wrong or the data
        is shorter than the declared body length.
    """
    if len(data) < HEADER_SIZE:
        return None

    magic = int.from_bytes(data[0:4], "little")
    if magic != MAGIC:
        return None

    body_length = int.from_bytes(data[4:8], "little")
    body = data[HEADER_SIZE : HEADER_SIZE + body_length]
    if len(body) != body_length:
        return None

    return BootloaderFrame(command=data[8], body=bytes(body), magic=magic)


def build_unlock(address: int, length: int) -> bytes:
    """Build an UNLOCK frame for ``length`` bytes starting at ``address``."""
    return build_frame(BootloaderCommand.UNLOCK, u32_le(address) + u32_le(length))


def build_data(address: int, block: bytes) -> bytes:
    """Build a DATA frame writing one erase block at ``address``."""
    return build_frame(BootloaderCommand.DATA, u32_le(address) + bytes(block))


def build_verify(crc: int) -> bytes:
    """Build a VERIFY frame carrying the CRC-32 of the padded image."""
    return build_frame(BootloaderCommand.VERIFY, u32_le(crc))


def build_swap() -> bytes:
    """Build a SWAP frame. The body is a zeroed placeholder."""
    return build_frame(BootloaderCommand.SWAP, bytes(SWAP_BODY_SIZE))
