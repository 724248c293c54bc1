"""
Background drain loop

A daemon thread that probes the server every ``interval`` seconds. Coming
back online drains the outbox (``SyncEngine.probe`` does that); while online
any leftovers are drained on every tick.
"""

import threading

from lifelines_core.kernel.errors import LifelinesError
from lifelines_core.kernel.logging import get_logger
from lifelines_core.kernel.settings import get_settings
from lifelines_core.sync.engine import SyncEngine

logger = get_logger(__name__)


class SyncWorker:
    """
    Example:
        >>> worker = SyncWorker(engine)   # LIFELINES_DRAIN_INTERVAL_SECONDS
        >>> worker.start()
        >>> ...
        >>> worker.stop()
    """

    def __init__(self, engine: SyncEngine, interval: float | None = None) -> None:
        if interval is None:
            interval = get_settings().drain_interval_seconds
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.engine = engine
        self.interval = interval
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="lifelines-sync", daemon=True)
        self._thread.start()
        logger.info("Sync worker started", interval=self.interval)

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Sync worker stopped", ticks=self.ticks)

    def tick(self) -> None:
        """One probe-and-drain pass"""
        self.ticks += 1
        if self.engine.session is None:
            return
        if self.engine.probe() and len(self.engine.queue):
            self.engine.drain()

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.tick()
            except LifelinesError as e:
                logger.warning("Sync tick failed", kind=e.kind, error=e.message)
