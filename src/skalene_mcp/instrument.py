"""High-level Skalene operations on top of a :class:`Connection`."""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable

from .flasher import DEFAULT_ADDRESS, FlashController, FlashSession, FlashStage
from .models.config import DeviceConfig
from .protocol.commands import (
    RAW_BLOCK_COUNT,
    build_get_config,
    build_get_live_data,
    build_get_results,
    build_raw_block,
    build_set_config,
    build_set_integration,
    build_start,
    build_stop,
)
from .protocol.parser import (
    parse_live_data,
    parse_raw_block,
    parse_results,
    split_fields,
)
from .transport.connection import Connection

logger = logging.getLogger(__name__)

DEBUG_HISTORY = 30


class Skalene:
    """The instrument, as seen by a client.

    Usage::

        async with Connection(transport) as conn:
            device = Skalene(conn)
            config = await device.get_config()
            samples = await device.get_raw_data()
    """

    def __init__(self, connection: Connection, debug_history: int = DEBUG_HISTORY) -> None:
        self.connection = connection
        self.config: DeviceConfig | None = None
        self.debug_lines: deque[str] = deque(maxlen=debug_history)
        connection.debug.every(self.debug_lines.append)

    # ---- subscriptions ----

    def on_debug(self, callback: Callable[[str], None]) -> Callable[[], None]:
        """Subscribe to debug lines. Returns an unsubscribe function."""
        return self.connection.debug.every(callback)

    def on_raw(self, callback: Callable[[bytes], None]) -> Callable[[], None]:
        """Subscribe to every raw inbound chunk. Returns an unsubscribe function."""
        return self.connection.raw.every(callback)

    # ---- text queries ----

    async def query(self, body: str) -> list[str]:
        """Send one text command and return the response fields."""
        return split_fields(await self.connection.query(body))

    async def get_config(self) -> DeviceConfig:
        """Read and validate the device configuration."""
        body = await self.connection.query(build_get_config())
        self.config = DeviceConfig.from_wire(body)
        return self.config

    async def set_config(self, config: DeviceConfig) -> None:
        await self.connection.query(build_set_config(config.to_wire_tokens()))
        self.config = config

    async def set_integration(self, integration_time: int) -> None:
        await self.connection.query(build_set_integration(integration_time))
        if self.config is not None:
            self.config = self.config.replace(integration_time=integration_time)

    async def start(self) -> None:
        await self.connection.query(build_start())

    async def stop(self) -> None:
        await self.connection.query(build_stop())

    async def get_results(self) -> list[float]:
        body = await self.connection.query(build_get_results())
        return parse_results(body).values

    async def get_live_data(self) -> list[int]:
        body = await self.connection.query(build_get_live_data())
        return parse_live_data(body).values

    async def get_raw_data(
        self,
        on_progress: Callable[[int, int], None] | None = None,
    ) -> list[int]:
        """Collect every raw block, in order, into one flat sample list.

        Samples are interleaved by channel exactly as the device sends them;
        they are handed to the analysis service uninterpreted.
        """
        samples: list[int] = []
        for index in range(RAW_BLOCK_COUNT):
            if on_progress is not None:
                on_progress(index, RAW_BLOCK_COUNT)
            body = await self.connection.query(build_raw_block(index))
            samples.extend(parse_raw_block(body).samples)
        if on_progress is not None:
            on_progress(RAW_BLOCK_COUNT, RAW_BLOCK_COUNT)
        logger.info("Collected %d raw samples", len(samples))
        return samples

    # ---- firmware ----

    async def flash_firmware(
        self,
        image: bytes,
        address: int = DEFAULT_ADDRESS,
        enter_bootloader: bool = True,
        on_stage: Callable[[FlashStage], None] | None = None,
        on_progress: Callable[[int, int], None] | None = None,
    ) -> FlashSession:
        """Flash a firmware image. See :class:`FlashController`."""
        controller = FlashController(
            self.connection,
            address=address,
            on_stage=on_stage,
            on_progress=on_progress,
        )
        return await controller.flash(image, enter_bootloader=enter_bootloader)
