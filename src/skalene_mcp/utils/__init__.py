"""Shared helpers: checksum engines."""

from .crc import crc16ccitt, crc32
