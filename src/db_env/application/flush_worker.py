"""Background flush of idle database files.

The worker wakes up every ``flush.interval_seconds``. When files were
modified since its last pass and nothing has been written for
``flush.idle_seconds``, it runs ``Environment.flush(shutdown=False)`` so
unreferenced files get checkpointed and closed without application code
closing them explicitly.
"""

from __future__ import annotations

import threading
import time

from db_env.application.environment import Environment
from db_env.infrastructure.logging import get_logger

logger = get_logger(__name__)


class FlushWorker:
    """Periodic flush driver for one environment."""

    def __init__(
        self,
        env: Environment,
        interval_seconds: float | None = None,
        idle_seconds: float | None = None,
    ) -> None:
        settings = env.config.flush
        self._env = env
        self._interval = interval_seconds if interval_seconds is not None else settings.interval_seconds
        self._idle = idle_seconds if idle_seconds is not None else settings.idle_seconds
        self._last_flushed = env.update_counter
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="db-env-flush", daemon=True)
        self._thread.start()
        logger.info("flush_worker_started", interval=self._interval, idle=self._idle)

    def stop(self, timeout: float | None = None) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout if timeout is not None else self._interval + 1.0)
            self._thread = None
        logger.info("flush_worker_stopped")

    def _run(self) -> None:
        while not self._stop_event.wait(self._interval):
            self.tick()

    def tick(self) -> bool:
        """Run one pass. Returns True if a flush was issued."""
        counter = self._env.update_counter
        if counter == self._last_flushed or not self._env.is_open:
            return False
        if time.monotonic() - self._env.last_update < self._idle:
            return False
        self._env.flush(shutdown=False)
        self._last_flushed = counter
        logger.debug("flush_worker_flushed", updates=counter)
        return True


def shutdown(env: Environment, worker: FlushWorker | None = None) -> bool:
    """Stop background flushing, then flush and close the environment.

    Returns:
        True if the environment closed, False if handles are still open.
    """
    if worker is not None:
        worker.stop()
    env.flush(shutdown=True)
    return env.close()
