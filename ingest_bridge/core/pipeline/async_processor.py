"""Async processor: decouples message reception from blocking DB writes.

A bounded queue sits between the receive loop and a pool of worker
threads. When the queue is full ``submit()`` blocks, so the receive loop
stops pulling from the MQTT socket instead of buffering without bound.

With more than one worker there is no ordering guarantee across messages;
use ``num_workers=1`` for strictly sequential processing.
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import Callable, Generic, List, Optional, TypeVar

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 1000
DEFAULT_NUM_WORKERS = 4

T = TypeVar("T")


class AsyncMessageProcessor(Generic[T]):
    """Bounded queue + worker threads.

    - receive loop → submit() blocks while the queue is full
    - worker threads → handler() blocks on the DB (in parallel)
    """

    def __init__(
        self,
        handler: Callable[[T], None],
        max_queue_size: int = DEFAULT_QUEUE_SIZE,
        num_workers: int = DEFAULT_NUM_WORKERS,
    ):
        if max_queue_size < 1:
            raise ValueError("max_queue_size must be >= 1")
        if num_workers < 1:
            raise ValueError("num_workers must be >= 1")

        self._handler = handler
        self._queue: queue.Queue = queue.Queue(maxsize=max_queue_size)
        self._num_workers = num_workers
        self._stop_event = threading.Event()

        # Metrics
        self._submitted = 0
        self._rejected = 0
        self._processed = 0
        self._errors = 0
        self._discarded = 0
        self._lock = threading.Lock()

        self._workers: List[threading.Thread] = []

    def start(self) -> None:
        """Start worker threads."""
        self._stop_event.clear()
        for i in range(self._num_workers):
            t = threading.Thread(
                target=self._worker_loop,
                args=(i,),
                daemon=True,
                name=f"bridge-worker-{i}",
            )
            t.start()
            self._workers.append(t)
        logger.info(
            "[ASYNC_PROC] Started workers=%d queue_max=%d",
            self._num_workers, self._queue.maxsize,
        )

    def stop(self, drain: bool = True) -> None:
        """Stop workers. If drain=True, process everything already queued first."""
        if drain:
            self._queue.join()
        self._stop_event.set()
        if not drain:
            self._discard_pending()
        for t in self._workers:
            t.join(timeout=5.0)
        self._workers.clear()
        logger.info("[ASYNC_PROC] Stopped. %s", self.metrics)

    def submit(self, item: T, timeout: Optional[float] = None) -> bool:
        """Queue an item, blocking while the queue is full.

        Returns False only if ``timeout`` expires before there is room.
        """
        try:
            self._queue.put(item, timeout=timeout)
        except queue.Full:
            with self._lock:
                self._rejected += 1
            logger.warning("[ASYNC_PROC] Queue full after %.1fs", timeout or 0)
            return False
        with self._lock:
            self._submitted += 1
        return True

    def _discard_pending(self) -> None:
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                break
            self._queue.task_done()
            with self._lock:
                self._discarded += 1
        if self._discarded:
            logger.warning("[ASYNC_PROC] Discarded %d queued items", self._discarded)

    def _worker_loop(self, worker_id: int) -> None:
        while not self._stop_event.is_set():
            try:
                item = self._queue.get(timeout=0.5)
            except queue.Empty:
                continue

            try:
                self._handler(item)
                with self._lock:
                    self._processed += 1
            except Exception as e:
                with self._lock:
                    self._errors += 1
                logger.exception(
                    "[ASYNC_PROC] Worker %d error: %s", worker_id, e,
                )
            finally:
                self._queue.task_done()

    @property
    def queue_depth(self) -> int:
        return self._queue.qsize()

    def health_check(self) -> dict:
        alive = sum(1 for t in self._workers if t.is_alive())
        depth = self._queue.qsize()
        return {
            "healthy": alive == self._num_workers and not self._stop_event.is_set(),
            "workers_alive": alive,
            "queue_depth": depth,
            "queue_utilization": depth / self._queue.maxsize,
        }

    @property
    def metrics(self) -> dict:
        with self._lock:
            return {
                "queue_depth": self._queue.qsize(),
                "queue_max": self._queue.maxsize,
                "workers": self._num_workers,
                "submitted": self._submitted,
                "rejected": self._rejected,
                "processed": self._processed,
                "errors": self._errors,
                "discarded": self._discarded,
            }
