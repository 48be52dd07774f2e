"""Extracción de campos comunes: device_id, timestamp y nivel de log.

Funciones puras. Los problemas se acumulan en la lista ``warnings`` que
recibe cada función en lugar de loguearse.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, List, Mapping, Optional

from ..domain.records import LogLevel

UNKNOWN_DEVICE = "unknown"

DEVICE_ID_KEYS = ("device_id", "deviceId", "device")
TIMESTAMP_KEYS = ("timestamp", "ts")

# Claves que nunca se interpretan como sensores en el formato plano
RESERVED_KEYS = frozenset(DEVICE_ID_KEYS + TIMESTAMP_KEYS)

_LEVEL_ALIASES = {
    "TRACE": LogLevel.DEBUG,
    "DEBUG": LogLevel.DEBUG,
    "INFO": LogLevel.INFO,
    "WARN": LogLevel.WARN,
    "WARNING": LogLevel.WARN,
    "ERR": LogLevel.ERROR,
    "ERROR": LogLevel.ERROR,
    "CRITICAL": LogLevel.ERROR,
    "FATAL": LogLevel.ERROR,
}

# Orden de severidad para la inferencia en texto plano.
# "warn" también cubre "warning".
_LEVEL_KEYWORDS = (
    ("error", LogLevel.ERROR),
    ("warn", LogLevel.WARN),
    ("info", LogLevel.INFO),
    ("debug", LogLevel.DEBUG),
)


def is_number(value: Any) -> bool:
    """True para int/float JSON (los booleanos no cuentan)."""
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def first_present(obj: Mapping[str, Any], keys) -> Optional[str]:
    """Primera clave de ``keys`` presente en ``obj``."""
    for key in keys:
        if key in obj:
            return key
    return None


def extract_device_id(topic: str, obj: Optional[Mapping[str, Any]] = None) -> str:
    """Resuelve el device_id: campo JSON → 2º segmento del topic → "unknown"."""
    if obj is not None:
        for key in DEVICE_ID_KEYS:
            value = obj.get(key)
            if isinstance(value, str) and value:
                return value

    parts = topic.split("/")
    if len(parts) >= 2 and parts[1]:
        return parts[1]
    return UNKNOWN_DEVICE


def extract_timestamp(
    obj: Mapping[str, Any],
    received_at: datetime,
    warnings: List[str],
) -> datetime:
    """Resuelve el timestamp: campo JSON (ISO-8601 o epoch en segundos) → recepción."""
    key = first_present(obj, TIMESTAMP_KEYS)
    if key is None:
        return received_at

    raw = obj[key]
    if isinstance(raw, str):
        try:
            dt = datetime.fromisoformat(raw.strip().replace("Z", "+00:00"))
        except ValueError:
            warnings.append(f"invalid ISO-8601 {key}={raw!r}, using receipt time")
            return received_at
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        try:
            return dt.astimezone(timezone.utc)
        except OverflowError:
            # Offsets en los extremos del calendario salen de rango en UTC
            warnings.append(f"{key}={raw!r} out of range in UTC, using receipt time")
            return received_at

    if isinstance(raw, int) and not isinstance(raw, bool):
        try:
            return datetime.fromtimestamp(raw, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            warnings.append(f"epoch {key}={raw} out of range, using receipt time")
            return received_at

    warnings.append(f"unsupported {key} type {type(raw).__name__}, using receipt time")
    return received_at


def normalize_level(raw: Any, warnings: List[str]) -> LogLevel:
    """Normaliza el nivel declarado en JSON; INFO si falta o no se reconoce."""
    if raw is None:
        return LogLevel.INFO
    if not isinstance(raw, str):
        warnings.append(f"non-string log level {raw!r}, defaulting to INFO")
        return LogLevel.INFO

    level = _LEVEL_ALIASES.get(raw.strip().upper())
    if level is None:
        warnings.append(f"unknown log level {raw!r}, defaulting to INFO")
        return LogLevel.INFO
    return level


def infer_level(text: str, topic: str) -> LogLevel:
    """Infiere el nivel de un log en texto plano: primero contenido, luego topic."""
    for haystack in (text.lower(), topic.lower()):
        for keyword, level in _LEVEL_KEYWORDS:
            if keyword in haystack:
                return level
    return LogLevel.INFO


def as_int(value: Any) -> Optional[int]:
    """Entero JSON o None."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None


def as_str(value: Any) -> Optional[str]:
    """String JSON o None."""
    return value if isinstance(value, str) else None
