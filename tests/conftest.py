"""Fixtures compartidas: reloj fijo, BD SQLite en memoria y cliente MQTT falso."""

from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace
from typing import Callable, List, Optional

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.pool import StaticPool


RECEIVED_AT = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


# Esquema equivalente al de TimescaleDB, en dialecto SQLite
SQLITE_SCHEMA = [
    """
    CREATE TABLE sensor_readings (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        timestamp TIMESTAMP NOT NULL,
        device_id TEXT NOT NULL,
        topic TEXT NOT NULL,
        value REAL NOT NULL
    )
    """,
    """
    CREATE TABLE socket_reads (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        timestamp TIMESTAMP NOT NULL,
        topic TEXT NOT NULL,
        payload TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE device_logs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        timestamp TIMESTAMP NOT NULL,
        device_id TEXT NOT NULL,
        level TEXT NOT NULL,
        message TEXT NOT NULL,
        topic TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE device_states (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        timestamp TIMESTAMP NOT NULL,
        device_id TEXT NOT NULL,
        topic TEXT NOT NULL,
        main_state INTEGER,
        secondary_state INTEGER,
        alerts TEXT,
        rssi INTEGER
    )
    """,
    """
    CREATE TABLE device_health (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        timestamp TIMESTAMP NOT NULL,
        device_id TEXT NOT NULL,
        topic TEXT NOT NULL,
        wifi_ssid TEXT,
        free_heap_size INTEGER,
        min_heap_size INTEGER,
        unexpected_reset_counter INTEGER,
        last_reset_reason TEXT,
        wifi_connect_counter INTEGER,
        cloud_connect_counter INTEGER,
        last_wifi_connection_ts INTEGER,
        last_cloud_connection_ts INTEGER
    )
    """,
]


def make_sqlite_engine(tables: Optional[List[str]] = None):
    """Engine SQLite en memoria compartido entre hilos.

    Args:
        tables: Nombres de tablas a crear (None = todas)
    """
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    with engine.begin() as conn:
        for ddl in SQLITE_SCHEMA:
            name = ddl.split("CREATE TABLE", 1)[1].split("(", 1)[0].strip()
            if tables is None or name in tables:
                conn.execute(text(ddl))
    return engine


@pytest.fixture
def received_at() -> datetime:
    """Hora de recepción fija para clasificaciones deterministas."""
    return RECEIVED_AT


@pytest.fixture
def sqlite_engine():
    """BD en memoria con todas las tablas."""
    engine = make_sqlite_engine()
    yield engine
    engine.dispose()


# =============================================================================
# CLIENTE MQTT FALSO
# =============================================================================

class FakeMQTTClient:
    """Sustituto de paho.mqtt.client.Client guiado por un guion.

    Cada llamada a ``loop()`` ejecuta la siguiente acción del guion. Cuando
    el guion se agota se invoca ``on_exhausted`` (típicamente shutdown()).
    """

    def __init__(self, script: List[Callable[["FakeMQTTClient"], int]]):
        self.script = list(script)
        self.connect_errors: List[Optional[Exception]] = []
        self.connect_calls = 0
        self.disconnect_calls = 0
        self.subscriptions: List[list] = []
        self.events: List[tuple] = []
        self.credentials = None
        self.on_exhausted: Callable[[], None] = lambda: None

        self.on_connect = None
        self.on_disconnect = None
        self.on_message = None

    def username_pw_set(self, username, password=None):
        self.credentials = (username, password)

    def connect(self, host, port=1883, keepalive=60):
        self.connect_calls += 1
        self.events.append(("connect", host, port))
        if self.connect_errors:
            error = self.connect_errors.pop(0)
            if error is not None:
                raise error
        return 0

    def subscribe(self, topics):
        self.subscriptions.append(list(topics))
        self.events.append(("subscribe", tuple(topics)))
        return (0, len(self.subscriptions))

    def loop(self, timeout=1.0):
        if not self.script:
            self.on_exhausted()
            return 0
        action = self.script.pop(0)
        return action(self)

    def disconnect(self):
        self.disconnect_calls += 1
        return 0


def connack(rc: int = 0):
    """Acción: el broker responde CONNACK."""
    def action(client: FakeMQTTClient) -> int:
        client.on_connect(client, None, {}, rc, None)
        return 0
    return action


def publish(topic: str, payload: bytes, retain: bool = False):
    """Acción: llega una publicación."""
    def action(client: FakeMQTTClient) -> int:
        client.events.append(("deliver", topic))
        msg = SimpleNamespace(topic=topic, payload=payload, retain=retain)
        client.on_message(client, None, msg)
        return 0
    return action


def connection_lost(rc: int = 7):
    """Acción: se cae el transporte (MQTT_ERR_CONN_LOST)."""
    def action(client: FakeMQTTClient) -> int:
        client.on_disconnect(client, None, {}, rc, None)
        return rc
    return action


def idle():
    """Acción: el loop vuelve sin actividad."""
    def action(client: FakeMQTTClient) -> int:
        return 0
    return action
