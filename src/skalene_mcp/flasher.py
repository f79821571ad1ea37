"""Firmware flash controller.

Stages::

    UNLOCKING -> PROGRAMMING -> VERIFYING -> SWAPPING -> DONE
        \\            \\             \\            \\
         +------------+-------------+------------+--> FAILED

The image is padded with 0xFF to a whole number of 16 KiB erase blocks and
written one block at a time; every request must be acknowledged before the
next is sent. Any failure aborts the whole session: a half-written device is
never resumed.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from .errors import FlashError, ProtocolError, SkaleneError
from .protocol.commands import build_bootloader_mode
from .protocol.framing import BootloaderCommand, BootloaderResponse, u32_le
from .transport.connection import Connection
from .utils.crc import crc32

logger = logging.getLogger(__name__)

ERASE_SIZE = 16384
DEFAULT_ADDRESS = 0x9D100000
PAD_BYTE = 0xFF
SWAP_PLACEHOLDER = bytes(16)


class FlashStage(str, Enum):
    """States of a flash session."""

    ENTERING_BOOTLOADER = "ENTERING_BOOTLOADER"
    UNLOCKING = "UNLOCKING"
    PROGRAMMING = "PROGRAMMING"
    VERIFYING = "VERIFYING"
    SWAPPING = "SWAPPING"
    DONE = "DONE"
    FAILED = "FAILED"


def pad_image(image: bytes, erase_size: int = ERASE_SIZE) -> bytes:
    """Pad ``image`` with 0xFF up to a multiple of ``erase_size``."""
    blocks = -(-len(image) // erase_size)
    return bytes(image) + bytes([PAD_BYTE]) * (blocks * erase_size - len(image))


@dataclass
class FlashSession:
    """State of one flashing attempt."""

    image: bytes
    address: int = DEFAULT_ADDRESS
    erase_size: int = ERASE_SIZE
    stage: FlashStage | None = None
    blocks_written: int = 0
    failed_stage: FlashStage | None = None
    error: str | None = None
    crc: int | None = None
    history: list[FlashStage] = field(default_factory=list)

    @property
    def block_count(self) -> int:
        return len(self.image) // self.erase_size

    def blocks(self):
        """Yield ``(address, block)`` pairs in write order."""
        for offset in range(0, len(self.image), self.erase_size):
            yield self.address + offset, self.image[offset : offset + self.erase_size]

    def to_dict(self) -> dict:
        return {
            "stage": self.stage.value if self.stage else None,
            "address": f"0x{self.address:08X}",
            "image_size": len(self.image),
            "blocks_written": self.blocks_written,
            "block_count": self.block_count,
            "crc": f"0x{self.crc:08X}" if self.crc is not None else None,
            "failed_stage": self.failed_stage.value if self.failed_stage else None,
            "error": self.error,
        }


class FlashController:
    """Drive the bootloader through a complete flash session.

    Args:
        connection: An open connection to the device.
        address: Flash address of the first block.
        erase_size: Erase block size in bytes.
        on_stage: Called with each new :class:`FlashStage`.
        on_progress: Called with ``(blocks_written, block_count)`` after each
            acknowledged DATA block.
    """

    def __init__(
        self,
        connection: Connection,
        address: int = DEFAULT_ADDRESS,
        erase_size: int = ERASE_SIZE,
        on_stage: Callable[[FlashStage], None] | None = None,
        on_progress: Callable[[int, int], None] | None = None,
    ) -> None:
        self._connection = connection
        self.address = address
        self.erase_size = erase_size
        self._on_stage = on_stage
        self._on_progress = on_progress

    def _enter(self, session: FlashSession, stage: FlashStage) -> None:
        session.stage = stage
        session.history.append(stage)
        logger.info("Flash stage: %s", stage.value)
        if self._on_stage is not None:
            self._on_stage(stage)

    async def _request(self, command: BootloaderCommand, body: bytes,
                       expected: BootloaderResponse) -> None:
        await self._connection.query_bootloader(command, body, expected)

    async def flash(self, image: bytes, enter_bootloader: bool = False) -> FlashSession:
        """Flash ``image`` and return the finished session.

        Args:
            image: Raw firmware bytes.
            enter_bootloader: Send BOOTLOADER_MODE over the text protocol
                first. Skip it when the device already runs its bootloader.

        Raises:
            FlashError: On the first failure, with the failing stage and,
                when the device answered, its response code.
        """
        if not image:
            raise ValueError("Firmware image is empty")

        session = FlashSession(
            image=pad_image(image, self.erase_size),
            address=self.address,
            erase_size=self.erase_size,
        )
        logger.info(
            "Flashing %d bytes (%d blocks) at 0x%08X",
            len(image), session.block_count, session.address,
        )

        try:
            if enter_bootloader:
                self._enter(session, FlashStage.ENTERING_BOOTLOADER)
                await self._connection.query(build_bootloader_mode())

            self._enter(session, FlashStage.UNLOCKING)
            await self._request(
                BootloaderCommand.UNLOCK,
                u32_le(session.address) + u32_le(len(session.image)),
                BootloaderResponse.OKAY,
            )

            self._enter(session, FlashStage.PROGRAMMING)
            for block_address, block in session.blocks():
                await self._request(
                    BootloaderCommand.DATA,
                    u32_le(block_address) + block,
                    BootloaderResponse.OKAY,
                )
                session.blocks_written += 1
                if self._on_progress is not None:
                    self._on_progress(session.blocks_written, session.block_count)

            self._enter(session, FlashStage.VERIFYING)
            session.crc = crc32(session.image)
            await self._request(
                BootloaderCommand.VERIFY,
                u32_le(session.crc),
                BootloaderResponse.CRC_OKAY,
            )

            self._enter(session, FlashStage.SWAPPING)
            await self._request(
                BootloaderCommand.SWAP,
                SWAP_PLACEHOLDER,
                BootloaderResponse.OKAY,
            )
        except SkaleneError as e:
            failed = session.stage
            code = e.code if isinstance(e, ProtocolError) else None
            session.failed_stage = failed
            session.error = str(e)
            self._enter(session, FlashStage.FAILED)
            error = FlashError(failed.value, str(e), code=code, kind=e.kind)
            error.session = session
            raise error from e

        self._enter(session, FlashStage.DONE)
        return session
