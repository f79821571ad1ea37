"""Protocol layer: bootloader framing, text messages, command builders, and response parsing."""

from .framing import BootloaderCommand, BootloaderResponse, build_frame, parse_frame
from .messages import encode_message, parse_message
from .commands import Command, build_command
