"""Modelos de dominio: mensaje entrante y registros clasificados.

Los registros clasificados forman una unión etiquetada: cada variante
declara su discriminante ``kind`` y la tabla destino. Son inmutables;
el clasificador los crea y el persister solo los lee.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Optional, Tuple, Union


class RecordKind(Enum):
    """Discriminante de la unión de registros."""
    SENSOR_READING = "sensor_reading"
    DEVICE_LOG = "device_log"
    RAW_PAYLOAD = "raw_payload"
    DEVICE_STATE = "device_state"
    DEVICE_HEALTH = "device_health"


class LogLevel(Enum):
    """Niveles de log de dispositivo."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"


@dataclass(frozen=True)
class InboundMessage:
    """Publicación recibida del broker.

    Vive solo mientras el coordinador la despacha.
    """
    topic: str
    payload: bytes
    received_at: datetime
    retained: bool = False


@dataclass(frozen=True)
class SensorReading:
    """Lectura numérica de un sensor → tabla sensor_readings."""
    kind: ClassVar[RecordKind] = RecordKind.SENSOR_READING
    table: ClassVar[str] = "sensor_readings"

    device_id: str
    topic: str
    value: float
    timestamp: datetime


@dataclass(frozen=True)
class DeviceLog:
    """Línea de log emitida por un dispositivo → tabla device_logs."""
    kind: ClassVar[RecordKind] = RecordKind.DEVICE_LOG
    table: ClassVar[str] = "device_logs"

    device_id: str
    topic: str
    level: LogLevel
    message: str
    timestamp: datetime


@dataclass(frozen=True)
class RawPayload:
    """Copia literal del payload → tabla socket_reads (auditoría)."""
    kind: ClassVar[RecordKind] = RecordKind.RAW_PAYLOAD
    table: ClassVar[str] = "socket_reads"

    topic: str
    payload: str
    timestamp: datetime


@dataclass(frozen=True)
class DeviceState:
    """Reporte de estado del dispositivo → tabla device_states."""
    kind: ClassVar[RecordKind] = RecordKind.DEVICE_STATE
    table: ClassVar[str] = "device_states"

    device_id: str
    topic: str
    timestamp: datetime
    main_state: Optional[int] = None
    secondary_state: Optional[int] = None
    alerts: Any = None
    rssi: Optional[int] = None


@dataclass(frozen=True)
class DeviceHealth:
    """Métricas de salud del firmware → tabla device_health."""
    kind: ClassVar[RecordKind] = RecordKind.DEVICE_HEALTH
    table: ClassVar[str] = "device_health"

    device_id: str
    topic: str
    timestamp: datetime
    wifi_ssid: Optional[str] = None
    free_heap_size: Optional[int] = None
    min_heap_size: Optional[int] = None
    unexpected_reset_counter: Optional[int] = None
    last_reset_reason: Optional[str] = None
    wifi_connect_counter: Optional[int] = None
    cloud_connect_counter: Optional[int] = None
    last_wifi_connection_ts: Optional[int] = None
    last_cloud_connection_ts: Optional[int] = None


DerivedRecord = Union[SensorReading, DeviceLog, DeviceState, DeviceHealth]
ClassifiedRecord = Union[SensorReading, DeviceLog, RawPayload, DeviceState, DeviceHealth]


@dataclass(frozen=True)
class Classification:
    """Resultado de clasificar un mensaje: siempre un raw + N derivados.

    ``warnings`` lista los problemas de parseo encontrados (registros
    derivados descartados, timestamps inválidos...). El clasificador no
    loguea; el procesador decide qué hacer con ellos.
    """
    raw: RawPayload
    derived: Tuple[DerivedRecord, ...] = field(default_factory=tuple)
    warnings: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def records(self) -> Tuple[ClassifiedRecord, ...]:
        """Todos los registros a persistir, el raw primero."""
        return (self.raw,) + self.derived
