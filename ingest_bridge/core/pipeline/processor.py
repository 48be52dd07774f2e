"""Procesador de mensajes: clasificación + persistencia."""

from __future__ import annotations

import logging
from typing import Protocol

from ...errors import PersistenceError
from ..classification.classifier import classify
from ..domain.records import ClassifiedRecord, InboundMessage
from ..monitoring.stats import PipelineStats

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_ALERT_THRESHOLD = 10


class RecordWriter(Protocol):
    def write(self, record: ClassifiedRecord) -> None: ...


class MessageProcessor:
    """Procesa un mensaje completo.

    Pipeline:
    1. Clasificación (pura) → raw + derivados
    2. Escritura de cada registro, de forma independiente

    Un fallo de escritura descarta solo ese registro; nunca se propaga.
    """

    def __init__(
        self,
        storage: RecordWriter,
        stats: PipelineStats,
        failure_alert_threshold: int = DEFAULT_FAILURE_ALERT_THRESHOLD,
    ):
        self._storage = storage
        self._stats = stats
        self._failure_alert_threshold = failure_alert_threshold

    def process(self, message: InboundMessage) -> int:
        """Clasifica y persiste un mensaje.

        Returns:
            Número de registros escritos
        """
        classification = classify(message.topic, message.payload, message.received_at)

        for warning in classification.warnings:
            logger.warning("[CLASSIFY] %s (topic=%s)", warning, message.topic)

        written = 0
        for record in classification.records:
            if self._write(record):
                written += 1

        self._stats.mark_processed(parse_warnings=len(classification.warnings))
        logger.debug(
            "[PIPELINE] topic=%s records=%d written=%d",
            message.topic,
            len(classification.records),
            written,
        )
        return written

    def _write(self, record: ClassifiedRecord) -> bool:
        try:
            self._storage.write(record)
        except PersistenceError as e:
            logger.error(
                "[PERSIST] Dropped %s record (topic=%s): %s",
                record.kind.value,
                record.topic,
                e,
            )
            self._mark_failed()
            return False
        except Exception:
            # Los registros hermanos se escriben igualmente
            logger.exception(
                "[PERSIST] Dropped %s record (topic=%s) after unexpected error",
                record.kind.value,
                record.topic,
            )
            self._mark_failed()
            return False

        self._stats.mark_written()
        return True

    def _mark_failed(self) -> None:
        streak = self._stats.mark_failed()
        if streak == self._failure_alert_threshold:
            logger.error(
                "[PERSIST] %d consecutive write failures, storage marked unhealthy",
                streak,
            )

    @property
    def storage_healthy(self) -> bool:
        return self._stats.consecutive_failures < self._failure_alert_threshold
