"""Device configuration model.

The config is validated as a unit: :func:`parse_config` returns either a
complete :class:`DeviceConfig` or a per-field error map, never both.

Wire forms::

    SET_CONFIG body:   1 <window> <discharge> <integration> <start> <stop> <led1> .. <led8>
    GET_CONFIG reply:  <code> <window> <discharge> <integration> <start> <stop> <led1> .. <led8> <error>

JSON form (as saved by the UI)::

    {"windowSize": 0, "dischargeTime": 50, "integrationTime": 50,
     "startTrigger": 0, "stopTrigger": 0, "leds": [0, 0, 0, 0, 0, 0, 0, 0]}
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..errors import ConfigValidationError, ProtocolError

LED_COUNT = 8
GET_CONFIG_TOKEN_COUNT = 15

WINDOW_SIZE_RANGE = (0, 3000)
DISCHARGE_TIME_RANGE = (50, 1000)
INTEGRATION_TIME_RANGE = (50, 5000)
START_TRIGGERS = (0, 1, 2)
STOP_TRIGGERS = (0, 1)
LED_RANGE = (0, 100)


def _to_int(value: Any) -> int | None:
    """Parse an integer from an int or a decimal string, else ``None``."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def _in_range(name: str, value: Any, bounds: tuple[int, int],
              errors: dict[str, str]) -> int | None:
    low, high = bounds
    parsed = _to_int(value)
    if parsed is None or not low <= parsed <= high:
        errors[name] = f"invalid value {value!r}. must be between {low} and {high}"
        return None
    return parsed


def _one_of(name: str, value: Any, choices: tuple[int, ...],
            errors: dict[str, str]) -> int | None:
    parsed = _to_int(value)
    if parsed not in choices:
        allowed = ", ".join(str(c) for c in choices)
        errors[name] = f"invalid value {value!r}. must be one of {allowed}"
        return None
    return parsed


@dataclass(frozen=True)
class DeviceConfig:
    """A complete, validated instrument configuration."""

    window_size: int = 0
    discharge_time: int = DISCHARGE_TIME_RANGE[0]
    integration_time: int = INTEGRATION_TIME_RANGE[0]
    start_trigger: int = 0
    stop_trigger: int = 0
    leds: tuple[int, ...] = field(default=(0,) * LED_COUNT)

    def to_wire_tokens(self) -> list[int]:
        """Fields in SET_CONFIG order (without the command code)."""
        return [
            self.window_size,
            self.discharge_time,
            self.integration_time,
            self.start_trigger,
            self.stop_trigger,
            *self.leds,
        ]

    def to_dict(self) -> dict[str, Any]:
        return {
            "windowSize": self.window_size,
            "dischargeTime": self.discharge_time,
            "integrationTime": self.integration_time,
            "startTrigger": self.start_trigger,
            "stopTrigger": self.stop_trigger,
            "leds": list(self.leds),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    def replace(self, **changes: Any) -> DeviceConfig:
        """Return a validated copy with some fields changed."""
        candidate = self.to_dict()
        for key, value in changes.items():
            candidate[_SNAKE_TO_JSON.get(key, key)] = value
        return validate_config(candidate)

    @classmethod
    def from_dict(cls, candidate: Mapping[str, Any]) -> DeviceConfig:
        return validate_config(candidate)

    @classmethod
    def from_json(cls, text: str) -> DeviceConfig:
        try:
            candidate = json.loads(text)
        except json.JSONDecodeError as e:
            raise ValueError("invalid file format") from e
        if not isinstance(candidate, Mapping):
            raise ValueError("invalid file format")
        return validate_config(candidate)

    @classmethod
    def from_wire(cls, body: str) -> DeviceConfig:
        """Parse a GET_CONFIG response body.

        Raises:
            ProtocolError: If the reply does not have 15 tokens.
            ConfigValidationError: If any field is out of range.
        """
        parts = body.split(" ")
        if len(parts) != GET_CONFIG_TOKEN_COUNT:
            raise ProtocolError(
                f"invalid response from device: expected {GET_CONFIG_TOKEN_COUNT} "
                f"fields, got {len(parts)}"
            )
        return validate_config(wire_candidate(parts), "invalid config from device")


_SNAKE_TO_JSON = {
    "window_size": "windowSize",
    "discharge_time": "dischargeTime",
    "integration_time": "integrationTime",
    "start_trigger": "startTrigger",
    "stop_trigger": "stopTrigger",
}


def wire_candidate(parts: list[str]) -> dict[str, Any]:
    """Map GET_CONFIG reply tokens onto config field names."""
    return {
        "windowSize": parts[1],
        "dischargeTime": parts[2],
        "integrationTime": parts[3],
        "startTrigger": parts[4],
        "stopTrigger": parts[5],
        "leds": parts[6 : 6 + LED_COUNT],
    }


def parse_config(
    candidate: Mapping[str, Any],
) -> tuple[DeviceConfig | None, dict[str, str] | None]:
    """Validate a candidate config.

    Args:
        candidate: Mapping with the JSON field names. Values may be ints or
            decimal strings.

    Returns:
        ``(config, None)`` when every field is valid, otherwise
        ``(None, errors)`` where ``errors`` maps each bad field to a reason.
        Individual LEDs are reported as ``"leds[i]"``.
    """
    errors: dict[str, str] = {}

    window_size = _in_range("windowSize", candidate.get("windowSize"),
                            WINDOW_SIZE_RANGE, errors)
    discharge_time = _in_range("dischargeTime", candidate.get("dischargeTime"),
                               DISCHARGE_TIME_RANGE, errors)
    integration_time = _in_range("integrationTime", candidate.get("integrationTime"),
                                 INTEGRATION_TIME_RANGE, errors)
    start_trigger = _one_of("startTrigger", candidate.get("startTrigger"),
                            START_TRIGGERS, errors)
    stop_trigger = _one_of("stopTrigger", candidate.get("stopTrigger"),
                           STOP_TRIGGERS, errors)

    leds: list[int | None] = []
    raw_leds = candidate.get("leds")
    if not isinstance(raw_leds, (list, tuple)) or len(raw_leds) != LED_COUNT:
        errors["leds"] = f"must be a list of length {LED_COUNT}"
    else:
        leds = [
            _in_range(f"leds[{i}]", value, LED_RANGE, errors)
            for i, value in enumerate(raw_leds)
        ]

    if errors:
        return None, errors

    return DeviceConfig(
        window_size=window_size,
        discharge_time=discharge_time,
        integration_time=integration_time,
        start_trigger=start_trigger,
        stop_trigger=stop_trigger,
        leds=tuple(leds),
    ), None


def validate_config(candidate: Mapping[str, Any],
                    message: str = "invalid config") -> DeviceConfig:
    """Like :func:`parse_config`, but raise on errors."""
    config, errors = parse_config(candidate)
    if errors:
        raise ConfigValidationError(errors, message)
    return config


def load_config(path: str | Path) -> DeviceConfig:
    """Load and validate a config saved as JSON."""
    return DeviceConfig.from_json(Path(path).read_text(encoding="utf-8"))


def save_config(config: DeviceConfig, path: str | Path) -> str:
    """Write a config as JSON. Returns the path written."""
    path = Path(path)
    path.write_text(config.to_json(), encoding="utf-8")
    return str(path)
