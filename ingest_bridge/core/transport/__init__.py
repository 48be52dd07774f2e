"""Transport - Sesión MQTT y topic filters."""

from .mqtt_client import (
    RECONNECT_BACKOFF_SECONDS,
    ConnectionManager,
    ConnectionState,
    default_client_factory,
)
from .topics import validate_topic_filter, validate_topic_filters

__all__ = [
    "RECONNECT_BACKOFF_SECONDS",
    "ConnectionManager",
    "ConnectionState",
    "default_client_factory",
    "validate_topic_filter",
    "validate_topic_filters",
]
