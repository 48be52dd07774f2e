"""Clasificador de payloads MQTT.

Convierte (topic, payload, hora de recepción) en un registro raw más
cero o más registros derivados. Función pura: sin I/O ni estado.

Reglas, evaluadas en orden; solo dispara la primera que aplica:

1. Payload no es un objeto JSON → log en texto plano
2. Campos de estado (main_state, secondary_state, alerts, rssi) → DeviceState (+ DeviceHealth)
3. Campo level/message → DeviceLog
4. Campo numérico value → una SensorReading
5. Array sensors → una SensorReading por elemento
6. Formato plano → una SensorReading por campo numérico
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

import orjson

from ...errors import PayloadParseError
from ..domain.records import (
    Classification,
    DerivedRecord,
    DeviceHealth,
    DeviceLog,
    DeviceState,
    RawPayload,
    SensorReading,
)
from .extractors import (
    RESERVED_KEYS,
    as_int,
    as_str,
    extract_device_id,
    extract_timestamp,
    first_present,
    infer_level,
    is_number,
    normalize_level,
)

STATE_KEYS = ("main_state", "secondary_state", "alerts", "rssi")
LEVEL_KEYS = ("level", "severity")
MESSAGE_KEYS = ("message", "msg", "text")


class _Context:
    """Datos compartidos por las reglas al clasificar un objeto JSON."""

    __slots__ = ("topic", "obj", "text", "received_at", "warnings")

    def __init__(self, topic: str, obj: Dict[str, Any], text: str, received_at: datetime):
        self.topic = topic
        self.obj = obj
        self.text = text
        self.received_at = received_at
        self.warnings: List[str] = []

    @property
    def device_id(self) -> str:
        return extract_device_id(self.topic, self.obj)

    @property
    def timestamp(self) -> datetime:
        return extract_timestamp(self.obj, self.received_at, self.warnings)


# Cada regla devuelve None si no aplica, o la lista (posiblemente vacía)
# de registros derivados si aplica.
Rule = Callable[[_Context], Optional[List[DerivedRecord]]]


def classify(topic: str, payload: bytes, received_at: datetime) -> Classification:
    """Clasifica un mensaje.

    Siempre devuelve exactamente un RawPayload con el payload literal.

    Args:
        topic: Topic MQTT de la publicación
        payload: Bytes recibidos
        received_at: Hora de recepción (timestamp por defecto)

    Returns:
        Classification con raw, derivados y advertencias de parseo
    """
    warnings: List[str] = []
    text = _decode(payload, warnings)
    raw = RawPayload(topic=topic, payload=text, timestamp=received_at)

    obj = _parse_object(payload)
    if obj is None:
        derived = _plain_text_log(topic, text, received_at)
    else:
        ctx = _Context(topic, obj, text, received_at)
        derived = _apply_rules(ctx)
        warnings.extend(ctx.warnings)

    return Classification(raw=raw, derived=tuple(derived), warnings=tuple(warnings))


def _decode(payload: bytes, warnings: List[str]) -> str:
    try:
        return payload.decode("utf-8")
    except UnicodeDecodeError as e:
        warnings.append(f"payload is not valid UTF-8 ({e.reason}), undecodable bytes replaced")
        return payload.decode("utf-8", errors="replace")


def _parse_object(payload: bytes) -> Optional[Dict[str, Any]]:
    try:
        data = orjson.loads(payload)
    except orjson.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def _apply_rules(ctx: _Context) -> List[DerivedRecord]:
    for rule in _RULES:
        records = rule(ctx)
        if records is not None:
            return records
    return []


def _device_state_rule(ctx: _Context) -> Optional[List[DerivedRecord]]:
    if first_present(ctx.obj, STATE_KEYS) is None:
        return None

    obj = ctx.obj
    device_id = ctx.device_id
    timestamp = ctx.timestamp

    records: List[DerivedRecord] = [
        DeviceState(
            device_id=device_id,
            topic=ctx.topic,
            timestamp=timestamp,
            main_state=as_int(obj.get("main_state")),
            secondary_state=as_int(obj.get("secondary_state")),
            alerts=obj.get("alerts"),
            rssi=as_int(obj.get("rssi")),
        )
    ]

    health = _health_record(ctx, device_id, timestamp)
    if health is not None:
        records.append(health)
    return records


def _health_record(ctx: _Context, device_id: str, timestamp: datetime) -> Optional[DeviceHealth]:
    health = ctx.obj.get("health")
    if health is None:
        return None

    try:
        general = _health_general(health)
    except PayloadParseError as e:
        ctx.warnings.append(f"{e}, health record skipped")
        return None

    return DeviceHealth(
        device_id=device_id,
        topic=ctx.topic,
        timestamp=timestamp,
        wifi_ssid=as_str(general.get("wifiSsid")),
        free_heap_size=as_int(general.get("freeHeapSize")),
        min_heap_size=as_int(general.get("minHeapSize")),
        unexpected_reset_counter=as_int(general.get("unexpectedResetCounter")),
        last_reset_reason=as_str(general.get("lastResetReason")),
        wifi_connect_counter=as_int(general.get("wifiConnectCounter")),
        cloud_connect_counter=as_int(general.get("cloudConnectCounter")),
        last_wifi_connection_ts=as_int(general.get("lastWifiConnectionTs")),
        last_cloud_connection_ts=as_int(general.get("lastCloudConnectionTs")),
    )


def _health_general(health: Any) -> Dict[str, Any]:
    """Sección ``general`` del campo health.

    Raises:
        PayloadParseError: Si health no es JSON válido o no tiene ``general``
    """
    # El firmware envía health como objeto o como JSON serializado en un string
    if isinstance(health, str):
        try:
            health = orjson.loads(health)
        except orjson.JSONDecodeError as e:
            raise PayloadParseError("health field is not valid JSON") from e

    general = health.get("general") if isinstance(health, dict) else None
    if not isinstance(general, dict):
        raise PayloadParseError("health field has no 'general' object")
    return general


def _log_rule(ctx: _Context) -> Optional[List[DerivedRecord]]:
    level_key = first_present(ctx.obj, LEVEL_KEYS)
    message_key = first_present(ctx.obj, MESSAGE_KEYS)
    if level_key is None and message_key is None:
        return None

    level = normalize_level(ctx.obj[level_key] if level_key else None, ctx.warnings)

    if message_key is None:
        message = ctx.text
    else:
        raw_message = ctx.obj[message_key]
        if isinstance(raw_message, str):
            message = raw_message
        else:
            message = orjson.dumps(raw_message).decode("utf-8")

    return [
        DeviceLog(
            device_id=ctx.device_id,
            topic=ctx.topic,
            level=level,
            message=message,
            timestamp=ctx.timestamp,
        )
    ]


def _value_rule(ctx: _Context) -> Optional[List[DerivedRecord]]:
    value = ctx.obj.get("value")
    if not is_number(value):
        return None

    return [
        SensorReading(
            device_id=ctx.device_id,
            topic=ctx.topic,
            value=float(value),
            timestamp=ctx.timestamp,
        )
    ]


def _sensors_rule(ctx: _Context) -> Optional[List[DerivedRecord]]:
    if "sensors" not in ctx.obj:
        return None

    sensors = ctx.obj["sensors"]
    if not isinstance(sensors, list):
        ctx.warnings.append("'sensors' is not an array, falling back to flat format")
        return None

    device_id = ctx.device_id
    timestamp = ctx.timestamp
    records: List[DerivedRecord] = []

    for index, sensor in enumerate(sensors):
        name, value = _sensor_entry(sensor)
        if name is None:
            ctx.warnings.append(f"sensors[{index}] skipped: expected {{name: str, value: number}}")
            continue
        records.append(
            SensorReading(
                device_id=device_id,
                topic=f"{ctx.topic}/{name}",
                value=value,
                timestamp=timestamp,
            )
        )
    return records


def _sensor_entry(sensor: Any) -> Tuple[Optional[str], float]:
    if not isinstance(sensor, dict):
        return None, 0.0
    name = sensor.get("name")
    value = sensor.get("value")
    if not isinstance(name, str) or not name or not is_number(value):
        return None, 0.0
    return name, float(value)


def _flat_rule(ctx: _Context) -> Optional[List[DerivedRecord]]:
    numeric = [
        (key, value)
        for key, value in ctx.obj.items()
        if key not in RESERVED_KEYS and is_number(value)
    ]
    if not numeric:
        return []

    device_id = ctx.device_id
    timestamp = ctx.timestamp
    return [
        SensorReading(
            device_id=device_id,
            topic=f"{ctx.topic}/{key}",
            value=float(value),
            timestamp=timestamp,
        )
        for key, value in numeric
    ]


_RULES: Tuple[Rule, ...] = (
    _device_state_rule,
    _log_rule,
    _value_rule,
    _sensors_rule,
    _flat_rule,
)


def _plain_text_log(topic: str, text: str, received_at: datetime) -> List[DerivedRecord]:
    if not text.strip():
        return []

    return [
        DeviceLog(
            device_id=extract_device_id(topic),
            topic=topic,
            level=infer_level(text, topic),
            message=text,
            timestamp=received_at,
        )
    ]
