"""Domain layer - Mensajes y registros clasificados."""

from .records import (
    Classification,
    ClassifiedRecord,
    DerivedRecord,
    DeviceHealth,
    DeviceLog,
    DeviceState,
    InboundMessage,
    LogLevel,
    RawPayload,
    RecordKind,
    SensorReading,
)

__all__ = [
    "Classification",
    "ClassifiedRecord",
    "DerivedRecord",
    "DeviceHealth",
    "DeviceLog",
    "DeviceState",
    "InboundMessage",
    "LogLevel",
    "RawPayload",
    "RecordKind",
    "SensorReading",
]
