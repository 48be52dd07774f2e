"""Estadísticas de procesamiento."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone


@dataclass
class PipelineStats:
    """Contadores del pipeline. Thread-safe: los workers los actualizan en paralelo."""

    received: int = 0
    processed: int = 0
    records_written: int = 0
    records_failed: int = 0
    parse_warnings: int = 0
    consecutive_failures: int = 0
    last_message_at: float = 0
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def __str__(self) -> str:
        return (
            f"Stats: received={self.received} processed={self.processed} "
            f"written={self.records_written} failed={self.records_failed} "
            f"parse_warnings={self.parse_warnings}"
        )

    def mark_received(self) -> None:
        with self._lock:
            self.received += 1
            self.last_message_at = time.time()

    def mark_processed(self, parse_warnings: int = 0) -> None:
        with self._lock:
            self.processed += 1
            self.parse_warnings += parse_warnings

    def mark_written(self) -> None:
        with self._lock:
            self.records_written += 1
            self.consecutive_failures = 0

    def mark_failed(self) -> int:
        """Registra un fallo de escritura; devuelve la racha de fallos consecutivos."""
        with self._lock:
            self.records_failed += 1
            self.consecutive_failures += 1
            return self.consecutive_failures

    def to_dict(self) -> dict:
        """Convierte a diccionario."""
        with self._lock:
            return {
                "received": self.received,
                "processed": self.processed,
                "records_written": self.records_written,
                "records_failed": self.records_failed,
                "parse_warnings": self.parse_warnings,
                "consecutive_failures": self.consecutive_failures,
                "last_message_at": self.last_message_at,
                "started_at": self.started_at.isoformat(),
                "success_rate": self._success_rate(),
            }

    def _success_rate(self) -> float:
        """Calcula tasa de éxito de escritura."""
        total = self.records_written + self.records_failed
        if total == 0:
            return 1.0
        return self.records_written / total
