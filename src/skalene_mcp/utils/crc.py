"""Table-driven CRC engines used by the two wire protocols.

- CRC-32 (reflected, polynomial 0xEDB88320) protects firmware images during
  the bootloader VERIFY step. It matches zlib/gzip bit-for-bit.
- CRC-16/CCITT (MSB-first, polynomial 0x1021, init 0xFFFF, no final XOR)
  protects Skalene text messages.

Tables are immutable tuples built once at import; callers may pass their own.
"""

from __future__ import annotations

CRC32_POLYNOMIAL = 0xEDB88320
CRC16_CCITT_POLYNOMIAL = 0x1021
CRC16_CCITT_INIT = 0xFFFF


def make_crc32_table(polynomial: int = CRC32_POLYNOMIAL) -> tuple[int, ...]:
    """Build the 256-entry table for a reflected CRC-32."""
    table = []
    for value in range(256):
        for _ in range(8):
            value = (value >> 1) ^ polynomial if value & 1 else value >> 1
        table.append(value)
    return tuple(table)


def make_crc16_table(polynomial: int = CRC16_CCITT_POLYNOMIAL) -> tuple[int, ...]:
    """Build the 256-entry table for an MSB-first CRC-16."""
    table = []
    for value in range(256):
        crc = value << 8
        for _ in range(8):
            crc = ((crc << 1) ^ polynomial) if crc & 0x8000 else crc << 1
        table.append(crc & 0xFFFF)
    return tuple(table)


CRC32_TABLE = make_crc32_table()
CRC16_CCITT_TABLE = make_crc16_table()


def crc32(data: bytes, table: tuple[int, ...] = CRC32_TABLE) -> int:
    """Calculate the CRC-32 of a byte sequence.

    Args:
        data: Bytes to checksum (typically the padded firmware image).
        table: Lookup table from :func:`make_crc32_table`.

    Returns:
        Unsigned 32-bit CRC.
    """
    crc = 0xFFFFFFFF
    for byte in data:
        crc = table[(crc ^ byte) & 0xFF] ^ (crc >> 8)
    return crc ^ 0xFFFFFFFF


def crc16ccitt(data: bytes, table: tuple[int, ...] = CRC16_CCITT_TABLE) -> int:
    """Calculate the CRC-16/CCITT of a byte sequence.

    The text protocol checksums ``body + ":"``, so callers must include the
    delimiter themselves.

    Args:
        data: Bytes to checksum.
        table: Lookup table from :func:`make_crc16_table`.

    Returns:
        Unsigned 16-bit CRC.
    """
    crc = CRC16_CCITT_INIT
    for byte in data:
        crc = (table[((crc >> 8) ^ byte) & 0xFF] ^ (crc << 8)) & 0xFFFF
    return crc
