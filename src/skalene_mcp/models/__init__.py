"""Data models for device configuration."""

from .config import DeviceConfig, parse_config, validate_config
