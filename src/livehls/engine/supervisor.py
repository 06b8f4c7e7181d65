"""Supervise one external process and translate its output into session events."""
from __future__ import annotations

import logging
import signal
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from ..events import (
    MarkerMatched,
    ProcessActivity,
    ProcessExited,
    ProcessFailed,
    ProcessLaunched,
    SessionEvent,
)
from ..exceptions import ProcessSpawnError
from .process import ProcessHandle, ProcessLauncher
from .stop_strategy import StopResult, StopStrategy

LOGGER = logging.getLogger(__name__)

INPUT_OPENED = "input_opened"
CLEAR_PLAYLIST_OPENED = "clear_playlist_opened"


@dataclass(frozen=True)
class Marker:
    """Substring that identifies a lifecycle milestone in a diagnostic stream."""

    name: str
    needle: str

    def matches(self, line: str) -> bool:
        return self.needle in line


TRANSCODER_MARKERS = (Marker(INPUT_OPENED, "Input #0"),)


class ProcessSupervisor:
    """Own one process: spawn it, scan its diagnostics, report its exit."""

    def __init__(
        self,
        source: str,
        *,
        launcher: ProcessLauncher,
        emit: Callable[[SessionEvent], None],
        markers: Sequence[Marker] = (),
        echo_output: bool = False,
        activity_interval: Optional[float] = None,
    ) -> None:
        self.source = source
        self._launcher = launcher
        self._emit = emit
        self._markers = tuple(markers)
        self._echo_output = echo_output
        self._activity_interval = activity_interval
        self._handle: Optional[ProcessHandle] = None
        self._reader: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def handle(self) -> Optional[ProcessHandle]:
        return self._handle

    def running(self) -> bool:
        handle = self._handle
        return handle is not None and handle.poll() is None

    def launch(self, argv: Sequence[str]) -> Optional[ProcessHandle]:
        """Spawn the process; on failure emit ``ProcessFailed`` and return ``None``."""

        with self._lock:
            if self._handle is not None:
                raise RuntimeError(f"{self.source} has already been launched")
            try:
                handle = self._launcher.launch(argv, name=self.source)
            except ProcessSpawnError as exc:
                LOGGER.error("%s", exc)
                self._emit(ProcessFailed(self.source, str(exc)))
                return None
            self._handle = handle
            self._emit(ProcessLaunched(self.source, handle.pid))
            reader = threading.Thread(
                target=self._watch,
                args=(handle,),
                name=f"{self.source}-reader",
                daemon=True,
            )
            self._reader = reader
            reader.start()
            return handle

    def interrupt(self) -> bool:
        handle = self._handle
        if handle is None or handle.poll() is not None:
            return False
        LOGGER.info("Sending SIGINT to %s (pid=%s)", self.source, handle.pid)
        handle.kill(signal.SIGINT)
        return True

    def terminate(self, stopper: StopStrategy) -> Optional[StopResult]:
        handle = self._handle
        if handle is None:
            return None
        return stopper.shutdown(handle)

    def join(self, timeout: Optional[float] = None) -> bool:
        reader = self._reader
        if reader is None:
            return True
        reader.join(timeout)
        return not reader.is_alive()

    # ------------------------------------------------------------------
    # Reader thread
    # ------------------------------------------------------------------
    def _watch(self, handle: ProcessHandle) -> None:
        pending = list(self._markers)
        interval = self._activity_interval
        last_activity: Optional[float] = None
        try:
            for line in handle.lines():
                if self._echo_output:
                    LOGGER.debug("[%s] %s", self.source, line)
                if interval is not None:
                    now = time.monotonic()
                    if last_activity is None or now - last_activity >= interval:
                        last_activity = now
                        self._emit(ProcessActivity(self.source))
                if not pending:
                    continue
                for marker in list(pending):
                    if marker.matches(line):
                        pending.remove(marker)
                        LOGGER.info("%s reached %s", self.source, marker.name)
                        self._emit(MarkerMatched(self.source, marker.name, line))
        except (OSError, ValueError):
            LOGGER.warning("Lost diagnostic stream for %s", self.source, exc_info=True)

        returncode = handle.wait()
        LOGGER.info("%s (pid=%s) exited with %s", self.source, handle.pid, returncode)
        self._emit(ProcessExited(self.source, returncode))


__all__ = [
    "CLEAR_PLAYLIST_OPENED",
    "INPUT_OPENED",
    "Marker",
    "ProcessSupervisor",
    "TRANSCODER_MARKERS",
]
