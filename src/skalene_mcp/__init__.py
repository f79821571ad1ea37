"""Serial transport and protocol engine for the Skalene instrument."""

__version__ = "0.1.0"
