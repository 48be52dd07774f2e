"""Persistence infrastructure - Escritura en TimescaleDB."""

from .postgres_setup import ensure_schema
from .retry import RetryConfig
from .timescale import TimescaleStorage

__all__ = [
    "ensure_schema",
    "RetryConfig",
    "TimescaleStorage",
]
