"""Skalene text message codec.

Wire format::

    <ascii body>:<decimal crc16>\\r\\n

The CRC-16/CCITT covers the body *and* the colon. For responses the first
space-delimited token is the response code and the trailing token is the
device error code, which must be ``0``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from ..errors import DeviceError, IntegrityError
from ..utils.crc import crc16ccitt

SEPARATOR = ":"
TERMINATOR = "\r\n"

_ERROR_CODE = re.compile(r"^[+-]?\d+$")


@dataclass
class SkaleneMessage:
    """A text message and its checksum."""

    body: str
    crc16: int

    @classmethod
    def from_body(cls, body: str) -> SkaleneMessage:
        return cls(body=body, crc16=message_crc(body))

    @property
    def tokens(self) -> list[str]:
        return self.body.split(" ")

    @property
    def code(self) -> str:
        return self.tokens[0]

    def encode(self) -> bytes:
        return f"{self.body}{SEPARATOR}{self.crc16}{TERMINATOR}".encode("ascii")


def message_crc(body: str) -> int:
    """CRC-16/CCITT of ``body + ":"``."""
    return crc16ccitt((body + SEPARATOR).encode("utf-8"))


def encode_message(body: str) -> bytes:
    """Encode a message body for the wire.

    Args:
        body: Space-separated command text, e.g. ``"11 42"``.

    Raises:
        ValueError: If the body contains the separator or a line break.
    """
    if SEPARATOR in body or "\r" in body or "\n" in body:
        raise ValueError(f"Message body must not contain ':' or line breaks: {body!r}")
    return SkaleneMessage.from_body(body).encode()


def decode_message(line: str | bytes) -> SkaleneMessage:
    """Split a received line and verify its checksum.

    Args:
        line: One line from the response stream. A trailing ``\\r\\n`` is
            ignored.

    Raises:
        IntegrityError: If the line is malformed or the CRC does not match.
    """
    if isinstance(line, (bytes, bytearray)):
        line = bytes(line).decode("utf-8", errors="replace")
    if line.endswith(TERMINATOR):
        line = line[: -len(TERMINATOR)]

    parts = line.split(SEPARATOR)
    if len(parts) != 2:
        raise IntegrityError(f"malformed payload: {line!r}", line)

    body, crc_text = parts
    expected = message_crc(body)
    try:
        received = int(crc_text.strip())
    except ValueError:
        raise IntegrityError(f"invalid crc {crc_text!r}. payload: {line}", line) from None

    if received != expected:
        raise IntegrityError(
            f"invalid crc. got {received}. expected {expected}. payload: {line}", line
        )
    return SkaleneMessage(body=body, crc16=received)


def parse_message(line: str | bytes) -> str:
    """Verify a response line and return its body.

    The trailing token of a multi-token body is the device error code when
    it is an integer literal; a non-zero code fails with :class:`DeviceError`.

    Raises:
        IntegrityError: Checksum mismatch or malformed line.
        DeviceError: The device reported a non-zero error code.
    """
    message = decode_message(line)
    code = error_code(message.tokens)
    if code:
        raise DeviceError(code, message.body)
    return message.body


def error_code(tokens: list[str]) -> int | None:
    """The trailing device error code of a response, or ``None`` if absent."""
    if len(tokens) > 1 and _ERROR_CODE.match(tokens[-1]):
        return int(tokens[-1])
    return None
