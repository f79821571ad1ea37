"""Field parsing for Skalene response bodies."""

from __future__ import annotations

from dataclasses import dataclass

from ..errors import ProtocolError
from .messages import error_code

CHANNEL_COUNT = 8


@dataclass
class ResultsResponse:
    """Parsed GET_RESULTS response: one value per channel."""

    values: list[float]


@dataclass
class LiveDataResponse:
    """Parsed GET_LIVE_DATA response: current intensity per channel."""

    values: list[int]


@dataclass
class RawBlockResponse:
    """Parsed RAW_BLOCK response."""

    index: int
    samples: list[int]

    def __repr__(self) -> str:
        return f"RawBlockResponse(index={self.index}, samples={len(self.samples)})"


def split_fields(body: str) -> list[str]:
    """Split a message body into its space-delimited fields."""
    return body.split(" ")


def _channel_fields(body: str) -> list[str]:
    """Up to 8 channel values following the response code.

    A trailing integer error code (already checked by ``parse_message``) is
    not a channel value.
    """
    fields = split_fields(body)
    if error_code(fields) is not None:
        fields = fields[:-1]
    return fields[1 : 1 + CHANNEL_COUNT]


def parse_results(body: str) -> ResultsResponse:
    """Parse GET_RESULTS: up to 8 floating point results after the code."""
    try:
        return ResultsResponse(values=[float(v) for v in _channel_fields(body)])
    except ValueError as e:
        raise ProtocolError(f"non-numeric result in {body!r}") from e


def parse_live_data(body: str) -> LiveDataResponse:
    """Parse GET_LIVE_DATA: up to 8 integer intensities after the code."""
    try:
        return LiveDataResponse(values=[int(v) for v in _channel_fields(body)])
    except ValueError as e:
        raise ProtocolError(f"non-integer live value in {body!r}") from e


def parse_raw_block(body: str) -> RawBlockResponse:
    """Parse RAW_BLOCK: ``<code> <index> <samples...> <error>``."""
    fields = split_fields(body)
    if len(fields) < 3:
        raise ProtocolError(f"raw block response too short: {body!r}")
    try:
        return RawBlockResponse(
            index=int(fields[1]),
            samples=[int(v) for v in fields[2:-1]],
        )
    except ValueError as e:
        raise ProtocolError(f"non-integer sample in {body!r}") from e
