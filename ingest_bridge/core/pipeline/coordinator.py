"""Coordinador del pipeline: MQTT → cola acotada → workers → TimescaleDB.

Apagado:
- 1ª señal (SIGINT/SIGTERM): la sesión pasa a SHUTTING_DOWN, no se aceptan
  más mensajes y se drena lo ya encolado antes de salir.
- 2ª señal: salida inmediata con FORCED_EXIT_STATUS; lo encolado se pierde.
"""

from __future__ import annotations

import logging
import os
import signal
from typing import Callable, Optional

from ..monitoring.stats import PipelineStats
from ..transport.mqtt_client import ConnectionManager
from .async_processor import DEFAULT_NUM_WORKERS, DEFAULT_QUEUE_SIZE, AsyncMessageProcessor
from .processor import DEFAULT_FAILURE_ALERT_THRESHOLD, MessageProcessor, RecordWriter

logger = logging.getLogger(__name__)

FORCED_EXIT_STATUS = 130
STATS_LOG_EVERY = 100


class BridgePipeline:
    """Conecta la sesión MQTT con el clasificador y el persister.

    Componentes:
    - ConnectionManager: sesión y reconexión
    - AsyncMessageProcessor: cola acotada + workers (backpressure)
    - MessageProcessor: clasificación + escritura
    """

    def __init__(
        self,
        connection: ConnectionManager,
        storage: RecordWriter,
        workers: int = DEFAULT_NUM_WORKERS,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        failure_alert_threshold: int = DEFAULT_FAILURE_ALERT_THRESHOLD,
        stats: Optional[PipelineStats] = None,
        force_exit: Callable[[int], None] = os._exit,
    ):
        self._connection = connection
        self._stats = stats or PipelineStats()
        self._processor = MessageProcessor(storage, self._stats, failure_alert_threshold)
        self._workers: AsyncMessageProcessor = AsyncMessageProcessor(
            self._processor.process,
            max_queue_size=queue_size,
            num_workers=workers,
        )
        self._force_exit = force_exit
        self._signals_received = 0
        self._running = False

    def run(self) -> None:
        """Bucle de recepción. Vuelve tras shutdown() y el drenado de la cola."""
        self._running = True
        self._workers.start()
        logger.info("[PIPELINE] Running")
        try:
            for message in self._connection.messages():
                self._stats.mark_received()
                self._workers.submit(message)
                if self._stats.received % STATS_LOG_EVERY == 0:
                    logger.info("[PIPELINE] %s", self._stats)
        finally:
            logger.info("[PIPELINE] Draining %d queued messages", self._workers.queue_depth)
            self._workers.stop(drain=True)
            self._running = False
            logger.info("[PIPELINE] Stopped. %s", self._stats)

    def shutdown(self) -> None:
        """Apagado ordenado: deja de recibir; run() drena y vuelve."""
        self._connection.shutdown()

    def install_signal_handlers(self) -> None:
        """Registra SIGINT/SIGTERM. Llamar desde el hilo principal."""
        signal.signal(signal.SIGINT, self._handle_signal)
        signal.signal(signal.SIGTERM, self._handle_signal)

    def _handle_signal(self, signum, frame) -> None:
        self._signals_received += 1
        name = signal.Signals(signum).name

        if self._signals_received == 1:
            logger.warning(
                "[PIPELINE] %s received, finishing in-flight writes (repeat to force exit)",
                name,
            )
            self.shutdown()
            return

        logger.error(
            "[PIPELINE] %s received again, exiting now; %d queued messages are lost",
            name,
            self._workers.queue_depth,
        )
        self._force_exit(FORCED_EXIT_STATUS)

    @property
    def stats(self) -> dict:
        return {
            "running": self._running,
            "pipeline": self._stats.to_dict(),
            "queue": self._workers.metrics,
            "mqtt": self._connection.stats,
        }

    def health_check(self) -> dict:
        connected = self._connection.is_connected
        storage_ok = self._processor.storage_healthy
        workers = self._workers.health_check()
        return {
            "healthy": self._running and connected and storage_ok and workers["healthy"],
            "running": self._running,
            "mqtt_connected": connected,
            "storage_healthy": storage_ok,
            "consecutive_write_failures": self._stats.consecutive_failures,
            "workers": workers,
            "queue_depth": workers["queue_depth"],
            "messages_processed": self._stats.processed,
            "records_failed": self._stats.records_failed,
        }
