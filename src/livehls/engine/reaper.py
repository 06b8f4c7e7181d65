"""Background loop that deletes sessions nobody has touched for a while."""
from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional

LOGGER = logging.getLogger(__name__)


class IdleReaper:
    """Invoke ``reap`` every ``interval`` seconds on a daemon thread."""

    def __init__(self, interval: float, reap: Callable[[], List[str]]) -> None:
        self._interval = max(1.0, float(interval))
        self._reap = reap
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        thread = self._thread
        if thread and thread.is_alive():
            return
        self._stop_event.clear()
        thread = threading.Thread(target=self._worker, name="session-idle-reaper", daemon=True)
        self._thread = thread
        thread.start()
        LOGGER.info("Idle session reaper running every %.0fs", self._interval)

    def stop(self) -> None:
        thread = self._thread
        self._thread = None
        self._stop_event.set()
        if thread is not None and thread.is_alive():
            thread.join(timeout=2.0)

    def running(self) -> bool:
        thread = self._thread
        return bool(thread and thread.is_alive())

    def _worker(self) -> None:
        while not self._stop_event.wait(self._interval):
            try:
                reaped = self._reap()
            except Exception:
                LOGGER.exception("Idle session sweep failed")
                continue
            if reaped:
                LOGGER.info("Reaped %d idle session(s): %s", len(reaped), ", ".join(reaped))


__all__ = ["IdleReaper"]
