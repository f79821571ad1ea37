"""Exception hierarchy for the Skalene protocol engine.

Every error carries an :class:`ErrorKind` tag so callers can branch on the
failure class without string matching:

- ``TIMEOUT``: no response before the deadline.
- ``INTEGRITY``: an inbound message failed its checksum or was malformed.
- ``PROTOCOL``: the device answered, but with an error code.
- ``TRANSPORT``: the byte stream closed or an I/O primitive failed.
- ``FATAL``: the connection can no longer be trusted and must be reopened.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Tag carried by every :class:`SkaleneError`."""

    TIMEOUT = "timeout"
    INTEGRITY = "integrity"
    PROTOCOL = "protocol"
    TRANSPORT = "transport"
    FATAL = "fatal"


class SkaleneError(Exception):
    """Base class for all engine errors."""

    kind: ErrorKind = ErrorKind.PROTOCOL

    @property
    def fatal(self) -> bool:
        return self.kind in (ErrorKind.TRANSPORT, ErrorKind.FATAL)


class QueryTimeout(SkaleneError):
    """No response arrived before the query deadline."""

    kind = ErrorKind.TIMEOUT


class IntegrityError(SkaleneError):
    """Checksum mismatch or malformed inbound message."""

    kind = ErrorKind.INTEGRITY

    def __init__(self, message: str, payload: str = "") -> None:
        super().__init__(message)
        self.payload = payload


class ProtocolError(SkaleneError):
    """The device reported a failure."""

    kind = ErrorKind.PROTOCOL

    def __init__(self, message: str, code: int | None = None) -> None:
        super().__init__(message)
        self.code = code


class DeviceError(ProtocolError):
    """A text response carried a non-zero trailing error code."""

    def __init__(self, code: int, payload: str) -> None:
        super().__init__(f"got error code {code}. payload: {payload}", code)
        self.payload = payload


class UnexpectedResponse(ProtocolError):
    """A bootloader response byte did not match the expected code."""

    def __init__(self, code: int, expected: int, command: Any = None) -> None:
        name = getattr(command, "name", command)
        super().__init__(
            f"unexpected response code (0x{code:02X}, expected 0x{expected:02X})"
            + (f" to {name}" if name is not None else ""),
            code,
        )
        self.expected = expected
        self.command = command


class TransportError(SkaleneError):
    """The underlying byte stream failed."""

    kind = ErrorKind.TRANSPORT


class StreamClosed(TransportError):
    """The byte stream closed while a reader was waiting."""


class FatalError(SkaleneError):
    """The connection is unusable until it is reopened."""

    kind = ErrorKind.FATAL


class FlashError(SkaleneError):
    """Firmware flashing aborted.

    Attributes:
        stage: Name of the stage that failed (e.g. ``"UNLOCKING"``).
        code: Bootloader response byte, if the device answered.
    """

    def __init__(self, stage: str, message: str, code: int | None = None,
                 kind: ErrorKind = ErrorKind.PROTOCOL) -> None:
        super().__init__(f"{stage.lower()}: {message}")
        self.stage = stage
        self.code = code
        self.kind = kind
        self.session: Any = None


class ConfigValidationError(ValueError):
    """A device config failed validation.

    ``errors`` maps field names (``"windowSize"``, ``"leds[2]"``, ...) to a
    human-readable reason.
    """

    def __init__(self, errors: dict[str, str], message: str = "invalid config") -> None:
        super().__init__(f"{message}: {', '.join(sorted(errors))}")
        self.errors = errors
