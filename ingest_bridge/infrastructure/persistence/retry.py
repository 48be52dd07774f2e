"""Retry con backoff exponencial para escrituras.

Por defecto no hay reintentos (max_attempts=1): el registro que falla se
descarta y se loguea.
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from typing import Callable, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryConfig:
    """Configuración para retry con backoff."""

    max_attempts: int = 1
    base_delay: float = 0.5  # segundos
    max_delay: float = 10.0  # segundos
    exponential_base: float = 2.0
    jitter: bool = True  # Añadir variación aleatoria

    @classmethod
    def from_retries(cls, retries: int, base_delay: float = 0.5) -> "RetryConfig":
        """``retries`` reintentos extra además del intento inicial."""
        return cls(max_attempts=max(1, retries + 1), base_delay=base_delay)

    def calculate_delay(self, attempt: int) -> float:
        """Calcula el delay tras el intento ``attempt`` (1-indexed)."""
        delay = self.base_delay * (self.exponential_base ** (attempt - 1))
        delay = min(delay, self.max_delay)

        if self.jitter:
            # ±25%
            jitter_range = delay * 0.25
            delay += random.uniform(-jitter_range, jitter_range)

        return max(0, delay)


def call_with_retry(
    func: Callable[[], T],
    config: RetryConfig,
    retryable: Tuple[Type[Exception], ...] = (Exception,),
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Ejecuta ``func`` reintentando las excepciones ``retryable``.

    Raises:
        La última excepción si se agotan los intentos
    """
    for attempt in range(1, config.max_attempts + 1):
        try:
            return func()
        except retryable as e:
            if attempt == config.max_attempts:
                if config.max_attempts > 1:
                    logger.error("RETRY_EXHAUSTED attempts=%d err=%s", attempt, e)
                raise

            delay = config.calculate_delay(attempt)
            logger.warning(
                "RETRY attempt=%d/%d delay=%.2fs err=%s",
                attempt, config.max_attempts, delay, e,
            )
            sleep(delay)

    raise RuntimeError("Retry loop completed without result")
