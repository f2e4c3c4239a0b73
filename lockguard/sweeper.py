import logging
import threading

from lockguard.store import AttemptStore

logger = logging.getLogger(__name__)


class Sweeper:
    """Periodically evicts idle, unlocked records to bound memory.

    Lock expiry never depends on this thread.
    """

    def __init__(self, store: AttemptStore, interval_s: float = 300, idle_s: float = 3600):
        if interval_s <= 0:
            raise ValueError("sweep interval must be positive")
        self.store = store
        self.interval_s = interval_s
        self.idle_s = idle_s
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="lockguard-sweeper", daemon=True)
        self._thread.start()
        logger.info("sweeper started (interval=%ss, idle=%ss)", self.interval_s, self.idle_s)

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _run(self) -> None:
        while not self._stop.wait(self.interval_s):
            try:
                self.store.sweep(self.idle_s)
            except Exception:
                # a corrupted store stops the sweeper; request paths surface the error
                logger.exception("sweep failed, stopping sweeper")
                return

    def __enter__(self) -> "Sweeper":
        self.start()
        return self

    def __exit__(self, *exc) -> None:
        self.stop()
