"""Persister: escribe registros clasificados en las hypertables.

Cada registro se inserta en su propia transacción. Los registros derivados
de un mismo mensaje NO son atómicos entre sí: si falla una lectura, el raw
y las demás lecturas ya escritas se mantienen.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, Optional, Tuple

from sqlalchemy import bindparam, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.sql.elements import TextClause
from sqlalchemy.types import JSON

from ...core.domain.records import (
    ClassifiedRecord,
    DeviceHealth,
    DeviceLog,
    DeviceState,
    RawPayload,
    RecordKind,
    SensorReading,
)
from ...errors import PersistenceError
from .retry import RetryConfig, call_with_retry

logger = logging.getLogger(__name__)


def _sensor_reading_params(r: SensorReading) -> dict:
    return {
        "timestamp": r.timestamp,
        "device_id": r.device_id,
        "topic": r.topic,
        "value": float(r.value),
    }


def _device_log_params(r: DeviceLog) -> dict:
    return {
        "timestamp": r.timestamp,
        "device_id": r.device_id,
        "level": r.level.value,
        "message": r.message,
        "topic": r.topic,
    }


def _raw_payload_params(r: RawPayload) -> dict:
    return {
        "timestamp": r.timestamp,
        "topic": r.topic,
        "payload": r.payload,
    }


def _device_state_params(r: DeviceState) -> dict:
    return {
        "timestamp": r.timestamp,
        "device_id": r.device_id,
        "topic": r.topic,
        "main_state": r.main_state,
        "secondary_state": r.secondary_state,
        "alerts": r.alerts,
        "rssi": r.rssi,
    }


def _device_health_params(r: DeviceHealth) -> dict:
    return {
        "timestamp": r.timestamp,
        "device_id": r.device_id,
        "topic": r.topic,
        "wifi_ssid": r.wifi_ssid,
        "free_heap_size": r.free_heap_size,
        "min_heap_size": r.min_heap_size,
        "unexpected_reset_counter": r.unexpected_reset_counter,
        "last_reset_reason": r.last_reset_reason,
        "wifi_connect_counter": r.wifi_connect_counter,
        "cloud_connect_counter": r.cloud_connect_counter,
        "last_wifi_connection_ts": r.last_wifi_connection_ts,
        "last_cloud_connection_ts": r.last_cloud_connection_ts,
    }


# Un INSERT por variante; el id lo genera la BD (SERIAL)
_STATEMENTS: Dict[RecordKind, Tuple[TextClause, Callable[..., dict]]] = {
    RecordKind.SENSOR_READING: (
        text("""
            INSERT INTO sensor_readings (timestamp, device_id, topic, value)
            VALUES (:timestamp, :device_id, :topic, :value)
        """),
        _sensor_reading_params,
    ),
    RecordKind.DEVICE_LOG: (
        text("""
            INSERT INTO device_logs (timestamp, device_id, level, message, topic)
            VALUES (:timestamp, :device_id, :level, :message, :topic)
        """),
        _device_log_params,
    ),
    RecordKind.RAW_PAYLOAD: (
        text("""
            INSERT INTO socket_reads (timestamp, topic, payload)
            VALUES (:timestamp, :topic, :payload)
        """),
        _raw_payload_params,
    ),
    RecordKind.DEVICE_STATE: (
        text("""
            INSERT INTO device_states (
                timestamp, device_id, topic, main_state, secondary_state, alerts, rssi
            ) VALUES (
                :timestamp, :device_id, :topic, :main_state, :secondary_state, :alerts, :rssi
            )
        """).bindparams(bindparam("alerts", type_=JSON(none_as_null=True))),
        _device_state_params,
    ),
    RecordKind.DEVICE_HEALTH: (
        text("""
            INSERT INTO device_health (
                timestamp, device_id, topic, wifi_ssid, free_heap_size, min_heap_size,
                unexpected_reset_counter, last_reset_reason, wifi_connect_counter,
                cloud_connect_counter, last_wifi_connection_ts, last_cloud_connection_ts
            ) VALUES (
                :timestamp, :device_id, :topic, :wifi_ssid, :free_heap_size, :min_heap_size,
                :unexpected_reset_counter, :last_reset_reason, :wifi_connect_counter,
                :cloud_connect_counter, :last_wifi_connection_ts, :last_cloud_connection_ts
            )
        """),
        _device_health_params,
    ),
}

_missing_kinds = set(RecordKind) - set(_STATEMENTS)
if _missing_kinds:
    raise RuntimeError(f"No INSERT statement for record kinds: {sorted(k.value for k in _missing_kinds)}")


class TimescaleStorage:
    """Storage de registros clasificados en TimescaleDB.

    El engine (y su pool de conexiones) se comparte entre todos los workers.
    """

    def __init__(self, engine: Engine, retry: Optional[RetryConfig] = None):
        self._engine = engine
        self._retry = retry or RetryConfig()

    def write(self, record: ClassifiedRecord) -> None:
        """Inserta un registro en la tabla de su variante.

        Raises:
            PersistenceError: Si la escritura falla (tras los reintentos)
                o el tipo de registro no está soportado
        """
        kind = getattr(record, "kind", None)
        entry = _STATEMENTS.get(kind)
        if entry is None:
            raise PersistenceError(f"Unsupported record type: {type(record).__name__}")

        statement, to_params = entry
        params = to_params(record)
        call_with_retry(
            lambda: self._execute(record.table, statement, params),
            self._retry,
            retryable=(PersistenceError,),
        )

        logger.debug("[PERSIST] Inserted into %s: topic=%s", record.table, record.topic)

    def _execute(self, table: str, statement: TextClause, params: dict) -> None:
        # El driver puede lanzar ValueError/TypeError sin envolver (p.ej. NUL en un literal)
        try:
            with self._engine.begin() as conn:
                conn.execute(statement, params)
        except (SQLAlchemyError, ValueError, TypeError) as e:
            raise PersistenceError(f"Failed to insert into {table}: {e}", table=table) from e
