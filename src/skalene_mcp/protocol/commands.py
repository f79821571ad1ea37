"""Skalene command codes and message body builders.

Commands are odd numbers; the device answers with the next even number
followed by the response fields and a trailing error code.
"""

from __future__ import annotations

from enum import IntEnum


class Command(IntEnum):
    """Text protocol command codes."""

    SET_CONFIG = 1
    GET_CONFIG = 3
    START = 5
    STOP = 7
    GET_RESULTS = 9
    RAW_BLOCK = 11
    BOOTLOADER_MODE = 13
    DEBUG = 16
    GET_LIVE_DATA = 17
    DEBUG_ALT = 20
    SET_INTEGRATION = 21


# Debug marker used by current firmware; older revisions emit DEBUG_ALT.
DEFAULT_DEBUG_MARKER = str(Command.DEBUG.value)

RAW_BLOCK_COUNT = 256
INTEGRATION_RANGE = (50, 5000)


def build_command(command: Command, *fields: object) -> str:
    """Build a message body: the command code followed by its fields."""
    return " ".join([str(int(command))] + [str(f) for f in fields])


def build_get_config() -> str:
    return build_command(Command.GET_CONFIG)


def build_start() -> str:
    return build_command(Command.START)


def build_stop() -> str:
    return build_command(Command.STOP)


def build_get_results() -> str:
    return build_command(Command.GET_RESULTS)


def build_get_live_data() -> str:
    return build_command(Command.GET_LIVE_DATA)


def build_bootloader_mode() -> str:
    """Build the command that reboots the device into its bootloader."""
    return build_command(Command.BOOTLOADER_MODE)


def build_raw_block(index: int) -> str:
    """Build a request for one block of raw intensity samples.

    Args:
        index: Block index 0-255.
    """
    if not 0 <= index < RAW_BLOCK_COUNT:
        raise ValueError(f"Raw block index must be 0-{RAW_BLOCK_COUNT - 1}, got {index}")
    return build_command(Command.RAW_BLOCK, index)


def build_set_integration(integration_time: int) -> str:
    """Build a SET_INTEGRATION command.

    Args:
        integration_time: Integration time in ms, 50-5000.
    """
    low, high = INTEGRATION_RANGE
    if not low <= integration_time <= high:
        raise ValueError(
            f"Integration time must be {low}-{high}, got {integration_time}"
        )
    return build_command(Command.SET_INTEGRATION, integration_time)


def build_set_config(tokens: list[int]) -> str:
    """Build a SET_CONFIG command from a config's wire tokens."""
    return build_command(Command.SET_CONFIG, *tokens)
