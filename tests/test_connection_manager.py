"""
Tests del ConnectionManager con un cliente paho falso.

Verifica:
1. Conexión, suscripción y entrega de mensajes
2. Reconexión tras error de transporte (backoff + re-suscripción)
3. Reintento indefinido ante broker inalcanzable o CONNACK rechazado
4. Shutdown como estado terminal
"""

import threading
from datetime import datetime, timezone

import pytest

from ingest_bridge.core.domain import InboundMessage
from ingest_bridge.core.transport import ConnectionManager, ConnectionState

from conftest import FakeMQTTClient, connack, connection_lost, idle, publish


class RecordingEvent(threading.Event):
    """Event que registra las esperas de backoff sin dormir."""

    def __init__(self):
        super().__init__()
        self.waits = []

    def wait(self, timeout=None):
        self.waits.append(timeout)
        return super().wait(0)


FIXED_NOW = datetime(2026, 3, 1, 8, 30, tzinfo=timezone.utc)


def _manager(client: FakeMQTTClient, **kwargs) -> ConnectionManager:
    kwargs.setdefault("topics", ["telemetry/#"])
    kwargs.setdefault("reconnect_backoff", 5.0)
    manager = ConnectionManager(
        client_id="bridge-test",
        client_factory=lambda client_id: client,
        clock=lambda: FIXED_NOW,
        **kwargs,
    )
    manager._shutdown = RecordingEvent()
    client.on_exhausted = manager.shutdown
    return manager


# =============================================================================
# CONEXIÓN Y ENTREGA
# =============================================================================

class TestDelivery:
    """Flujo normal: CONNACK → suscripción → mensajes."""

    def test_subscribes_all_filters_with_qos(self):
        client = FakeMQTTClient([connack(), publish("telemetry/d1/t", b"1")])
        manager = _manager(client, topics=["telemetry/#", "diagnostics/+/logs"], qos=2)

        messages = manager.messages()
        first = next(messages)

        assert client.subscriptions == [[("telemetry/#", 2), ("diagnostics/+/logs", 2)]]
        assert manager.state is ConnectionState.CONNECTED
        assert first == InboundMessage(
            topic="telemetry/d1/t",
            payload=b"1",
            received_at=FIXED_NOW,
            retained=False,
        )

        manager.shutdown()
        assert list(messages) == []

    def test_retained_flag_is_carried(self):
        client = FakeMQTTClient([connack(), publish("telemetry/d1/t", b"1", retain=True)])
        manager = _manager(client)

        assert next(manager.messages()).retained is True

    def test_credentials_are_applied(self):
        client = FakeMQTTClient([])
        manager = _manager(client, username="bridge", password="secret")

        list(manager.messages())

        assert client.credentials == ("bridge", "secret")

    def test_messages_on_unsubscribed_topics_are_ignored(self):
        client = FakeMQTTClient([
            connack(),
            publish("other/d1/t", b"x"),
            publish("telemetry/d1/t", b"y"),
        ])
        manager = _manager(client)

        assert next(manager.messages()).payload == b"y"
        assert manager.stats["messages_ignored"] == 1
        assert manager.stats["messages_received"] == 1

    @pytest.mark.parametrize(
        "topics, topic, delivered",
        [
            (["telemetry/+/temperature"], "telemetry/esp32-001/temperature", True),
            (["telemetry/+"], "telemetry/a/b", False),
            (["telemetry/#"], "telemetry", True),
            (["#"], "$SYS/broker/uptime", False),
            (["+/broker/uptime"], "$SYS/broker/uptime", False),
            (["$SYS/#"], "$SYS/broker/uptime", True),
        ],
    )
    def test_wildcard_matching(self, topics, topic, delivered):
        """Los comodines no alcanzan topics que empiezan por '$'."""
        client = FakeMQTTClient([connack(), publish(topic, b"x")])
        manager = _manager(client, topics=topics)

        received = [m.topic for m in manager.messages()]

        assert received == ([topic] if delivered else [])
        assert manager.stats["messages_ignored"] == (0 if delivered else 1)

    def test_stream_can_only_be_consumed_once(self):
        manager = _manager(FakeMQTTClient([]))
        manager.messages()

        with pytest.raises(RuntimeError):
            manager.messages()

    def test_invalid_topic_filter_is_rejected(self):
        with pytest.raises(ValueError):
            ConnectionManager(topics=["telemetry/#/bad"])


# =============================================================================
# RECONEXIÓN
# =============================================================================

class TestReconnection:
    """Recuperación de errores de transporte."""

    def test_reconnects_after_backoff_and_resubscribes_before_delivery(self):
        client = FakeMQTTClient([
            connack(),
            publish("telemetry/d1/t", b"before"),
            connection_lost(),
            connack(),
            publish("telemetry/d1/t", b"after"),
        ])
        manager = _manager(client)

        messages = manager.messages()
        assert next(messages).payload == b"before"
        assert next(messages).payload == b"after"

        assert client.connect_calls == 2
        assert manager._shutdown.waits == [5.0]
        assert manager.reconnect_count == 1
        assert client.subscriptions == [[("telemetry/#", 1)], [("telemetry/#", 1)]]

        # La segunda suscripción ocurre antes de la siguiente entrega
        kinds = [event[0] for event in client.events]
        assert kinds == ["connect", "subscribe", "deliver", "connect", "subscribe", "deliver"]

    def test_broker_unreachable_is_retried(self):
        client = FakeMQTTClient([connack(), publish("telemetry/d1/t", b"ok")])
        client.connect_errors = [ConnectionRefusedError("refused"), OSError("no route"), None]
        manager = _manager(client, reconnect_backoff=2.5)

        assert next(manager.messages()).payload == b"ok"
        assert client.connect_calls == 3
        assert manager._shutdown.waits == [2.5, 2.5]

    def test_refused_connack_is_retried(self):
        client = FakeMQTTClient([connack(rc=5), connack(), publish("telemetry/d1/t", b"ok")])
        manager = _manager(client)

        assert next(manager.messages()).payload == b"ok"
        assert client.connect_calls == 2
        assert len(client.subscriptions) == 1

    def test_missing_connack_times_out(self):
        client = FakeMQTTClient([idle(), connack(), publish("telemetry/d1/t", b"ok")])
        # Plazo ya vencido al primer loop sin CONNACK
        manager = _manager(client, connect_timeout=-1.0)

        assert next(manager.messages()).payload == b"ok"
        assert client.connect_calls == 2
        assert client.disconnect_calls == 1

    def test_messages_read_before_failure_are_delivered(self):
        def burst_then_drop(c):
            publish("telemetry/d1/t", b"a")(c)
            publish("telemetry/d1/t", b"b")(c)
            return connection_lost()(c)

        client = FakeMQTTClient([connack(), burst_then_drop])
        manager = _manager(client)

        payloads = [m.payload for m in manager.messages()]

        assert payloads == [b"a", b"b"]


# =============================================================================
# SHUTDOWN
# =============================================================================

class TestShutdown:
    """SHUTTING_DOWN es terminal y cierra la secuencia."""

    def test_shutdown_ends_stream_and_disconnects(self):
        client = FakeMQTTClient([connack(), publish("telemetry/d1/t", b"1")])
        manager = _manager(client)

        messages = manager.messages()
        next(messages)
        manager.shutdown()

        assert list(messages) == []
        assert manager.state is ConnectionState.SHUTTING_DOWN
        assert client.disconnect_calls >= 1

    def test_shutdown_during_connect_attempts(self):
        client = FakeMQTTClient([])
        manager = _manager(client)

        def refuse_and_stop(*args, **kwargs):
            manager.shutdown()
            raise ConnectionRefusedError("refused")

        client.connect = refuse_and_stop

        assert list(manager.messages()) == []
        assert manager._shutdown.waits == []
        assert manager.state is ConnectionState.SHUTTING_DOWN

    def test_state_stays_terminal_after_late_callbacks(self):
        client = FakeMQTTClient([connack()])
        manager = _manager(client)

        list(manager.messages())
        manager._on_connect(client, None, {}, 0, None)

        assert manager.state is ConnectionState.SHUTTING_DOWN
        assert manager.health_check()["healthy"] is False

    def test_shutdown_before_start(self):
        manager = _manager(FakeMQTTClient([]))
        manager.shutdown()

        assert manager.state is ConnectionState.SHUTTING_DOWN
