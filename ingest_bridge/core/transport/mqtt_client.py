"""Gestor de la sesión MQTT con reconexión automática.

Máquina de estados explícita:

    DISCONNECTED → CONNECTING → CONNECTED → (error de transporte) → DISCONNECTED
    cualquier estado → SHUTTING_DOWN (terminal)

El network loop de paho se avanza solo cuando el consumidor pide el
siguiente mensaje: si el consumidor se bloquea, dejan de leerse datos
del socket y el control de flujo TCP frena al broker.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Deque, Iterator, List, Optional, Sequence

import paho.mqtt.client as mqtt

from ...errors import BrokerConnectionError
from ..domain.records import InboundMessage
from .topics import validate_topic_filters

logger = logging.getLogger(__name__)

RECONNECT_BACKOFF_SECONDS = 5.0
CONNECT_TIMEOUT_SECONDS = 10.0
LOOP_TIMEOUT_SECONDS = 1.0


class ConnectionState(Enum):
    """Estados de la sesión con el broker."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    SHUTTING_DOWN = "shutting_down"


def default_client_factory(client_id: str) -> mqtt.Client:
    """Crea el cliente paho (MQTT 3.1.1, sesión limpia, callbacks v2)."""
    return mqtt.Client(
        callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
        client_id=client_id,
        protocol=mqtt.MQTTv311,
        clean_session=True,
    )


class ConnectionManager:
    """Dueño de la única sesión saliente hacia el broker.

    Responsabilidades:
    - Conexión y reconexión indefinida con backoff fijo
    - Suscripción (y re-suscripción tras cada reconexión) a los filtros
    - Exponer las publicaciones como secuencia perezosa de InboundMessage
    """

    def __init__(
        self,
        broker_host: str = "localhost",
        broker_port: int = 1883,
        client_id: str = "telemetry-bridge",
        topics: Sequence[str] = ("#",),
        qos: int = 1,
        username: Optional[str] = None,
        password: Optional[str] = None,
        keepalive: int = 60,
        reconnect_backoff: float = RECONNECT_BACKOFF_SECONDS,
        connect_timeout: float = CONNECT_TIMEOUT_SECONDS,
        client_factory: Callable[[str], Any] = default_client_factory,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.broker_host = broker_host
        self.broker_port = broker_port
        self.client_id = client_id
        self.topics: List[str] = validate_topic_filters(topics)
        self.qos = qos
        self.username = username
        self.password = password
        self.keepalive = keepalive
        self.reconnect_backoff = reconnect_backoff
        self.connect_timeout = connect_timeout

        self._client_factory = client_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._client: Optional[Any] = None

        self._state = ConnectionState.DISCONNECTED
        self._state_lock = threading.Lock()
        self._shutdown = threading.Event()
        self._pending: Deque[InboundMessage] = deque()
        self._stream_started = False

        # Stats
        self._connect_attempts = 0
        self._connections = 0
        self._messages_received = 0
        self._messages_ignored = 0

    # ------------------------------------------------------------------
    # API pública
    # ------------------------------------------------------------------

    def messages(self) -> Iterator[InboundMessage]:
        """Secuencia infinita de mensajes recibidos.

        Solo puede consumirse una vez; la reconexión es interna. Termina
        únicamente tras ``shutdown()``.
        """
        if self._stream_started:
            raise RuntimeError("message stream can only be consumed once")
        self._stream_started = True
        return self._run()

    def shutdown(self) -> None:
        """Pasa a SHUTTING_DOWN: deja de recibir y cierra la sesión."""
        if not self._shutdown.is_set():
            logger.info("[MQTT] Shutdown requested (state=%s)", self.state.value)
        self._shutdown.set()
        self._set_state(ConnectionState.SHUTTING_DOWN)
        if not self._stream_started:
            self._close()

    @property
    def state(self) -> ConnectionState:
        with self._state_lock:
            return self._state

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    @property
    def reconnect_count(self) -> int:
        return max(0, self._connections - 1)

    @property
    def stats(self) -> dict:
        return {
            "state": self.state.value,
            "broker": f"{self.broker_host}:{self.broker_port}",
            "client_id": self.client_id,
            "topics": list(self.topics),
            "connect_attempts": self._connect_attempts,
            "reconnect_count": self.reconnect_count,
            "messages_received": self._messages_received,
            "messages_ignored": self._messages_ignored,
        }

    def health_check(self) -> dict:
        return {
            "healthy": self.is_connected,
            "state": self.state.value,
            "reconnect_count": self.reconnect_count,
        }

    # ------------------------------------------------------------------
    # Máquina de estados
    # ------------------------------------------------------------------

    def _run(self) -> Iterator[InboundMessage]:
        try:
            while not self._shutdown.is_set():
                if self._establish():
                    yield from self._receive()
                if not self._shutdown.is_set():
                    self._wait_backoff()
        finally:
            self._close()

    def _establish(self) -> bool:
        """DISCONNECTED → CONNECTING → CONNECTED. False si falla."""
        self._set_state(ConnectionState.CONNECTING)
        self._connect_attempts += 1
        client = self._get_client()

        logger.info(
            "[MQTT] Connecting to %s:%d (attempt %d)",
            self.broker_host,
            self.broker_port,
            self._connect_attempts,
        )
        try:
            self._connect(client)
        except BrokerConnectionError as e:
            logger.warning("[MQTT] %s", e)
            self._set_state(ConnectionState.DISCONNECTED)
            return False

        # Esperar CONNACK; _on_connect suscribe y pasa a CONNECTED
        deadline = time.monotonic() + self.connect_timeout
        while self.state is ConnectionState.CONNECTING:
            rc = client.loop(timeout=LOOP_TIMEOUT_SECONDS)
            if rc != mqtt.MQTT_ERR_SUCCESS:
                logger.warning("[MQTT] Transport error while connecting (rc=%s)", rc)
                self._set_state(ConnectionState.DISCONNECTED)
                break
            if self.state is ConnectionState.CONNECTING and time.monotonic() > deadline:
                logger.warning(
                    "[MQTT] No CONNACK within %.1fs, dropping connection",
                    self.connect_timeout,
                )
                self._disconnect_quietly(client)
                self._set_state(ConnectionState.DISCONNECTED)
                break

        return self.state is ConnectionState.CONNECTED

    def _connect(self, client: Any) -> None:
        try:
            client.connect(self.broker_host, self.broker_port, keepalive=self.keepalive)
        except OSError as e:
            raise BrokerConnectionError(
                f"Connection to {self.broker_host}:{self.broker_port} failed: {e}"
            ) from e

    def _receive(self) -> Iterator[InboundMessage]:
        """Entrega mensajes mientras la sesión siga CONNECTED."""
        client = self._client
        while not self._shutdown.is_set():
            while self._pending and not self._shutdown.is_set():
                yield self._pending.popleft()

            if self._shutdown.is_set():
                break

            rc = client.loop(timeout=LOOP_TIMEOUT_SECONDS)
            if rc != mqtt.MQTT_ERR_SUCCESS or self.state is ConnectionState.DISCONNECTED:
                if self._shutdown.is_set():
                    break
                logger.warning(
                    "[MQTT] Connection lost (rc=%s), reconnecting in %.1fs",
                    rc,
                    self.reconnect_backoff,
                )
                self._set_state(ConnectionState.DISCONNECTED)
                # Lo ya leído del socket antes del fallo sí se entrega
                while self._pending and not self._shutdown.is_set():
                    yield self._pending.popleft()
                return

        if self._pending:
            logger.info("[MQTT] Discarding %d undelivered messages on shutdown", len(self._pending))
            self._pending.clear()

    def _wait_backoff(self) -> None:
        self._set_state(ConnectionState.DISCONNECTED)
        logger.info("[MQTT] Next connection attempt in %.1fs", self.reconnect_backoff)
        # Event.wait para que shutdown() interrumpa la espera
        self._shutdown.wait(self.reconnect_backoff)

    def _set_state(self, new_state: ConnectionState) -> None:
        with self._state_lock:
            # SHUTTING_DOWN es terminal
            if self._state is ConnectionState.SHUTTING_DOWN:
                return
            if self._state is not new_state:
                logger.debug("[MQTT] State %s → %s", self._state.value, new_state.value)
            self._state = new_state

    # ------------------------------------------------------------------
    # Cliente paho
    # ------------------------------------------------------------------

    def _get_client(self) -> Any:
        if self._client is None:
            client = self._client_factory(self.client_id)
            client.on_connect = self._on_connect
            client.on_disconnect = self._on_disconnect
            client.on_message = self._on_message
            if self.username:
                client.username_pw_set(self.username, self.password)
            self._client = client
        return self._client

    def _close(self) -> None:
        self._set_state(ConnectionState.SHUTTING_DOWN)
        if self._client is not None:
            self._disconnect_quietly(self._client)
        logger.info(
            "[MQTT] Session closed. attempts=%d reconnects=%d received=%d",
            self._connect_attempts,
            self.reconnect_count,
            self._messages_received,
        )

    @staticmethod
    def _disconnect_quietly(client: Any) -> None:
        try:
            client.disconnect()
        except Exception as e:
            logger.warning("[MQTT] Disconnect error: %s", e)

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        """Callback de CONNACK: suscribe antes de entregar nada."""
        if reason_code != 0:
            logger.warning("[MQTT] Broker refused connection: %s", reason_code)
            self._set_state(ConnectionState.DISCONNECTED)
            return

        rc, _mid = client.subscribe([(topic, self.qos) for topic in self.topics])
        if rc != mqtt.MQTT_ERR_SUCCESS:
            logger.warning("[MQTT] Subscribe failed (rc=%s)", rc)
            self._set_state(ConnectionState.DISCONNECTED)
            return

        self._connections += 1
        self._set_state(ConnectionState.CONNECTED)
        logger.info(
            "[MQTT] Connected to %s:%d, subscribed to %s (qos=%d)",
            self.broker_host,
            self.broker_port,
            ", ".join(self.topics),
            self.qos,
        )

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties=None):
        if self._shutdown.is_set():
            return
        logger.warning("[MQTT] Disconnected (reason=%s)", reason_code)
        self._set_state(ConnectionState.DISCONNECTED)

    def _on_message(self, client, userdata, msg):
        if not any(mqtt.topic_matches_sub(f, msg.topic) for f in self.topics):
            self._messages_ignored += 1
            logger.debug("[MQTT] Ignoring message on unsubscribed topic %s", msg.topic)
            return

        self._messages_received += 1
        self._pending.append(
            InboundMessage(
                topic=msg.topic,
                payload=bytes(msg.payload),
                received_at=self._clock(),
                retained=bool(msg.retain),
            )
        )
