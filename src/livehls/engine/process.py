"""Process handle abstraction over ``subprocess.Popen``."""
from __future__ import annotations

import logging
import shlex
import signal
import subprocess
from typing import Iterator, Optional, Protocol, Sequence

from ..exceptions import ProcessSpawnError

LOGGER = logging.getLogger(__name__)


class ProcessHandle(Protocol):
    """Capabilities the engine needs from an external process."""

    name: str

    @property
    def pid(self) -> Optional[int]: ...

    def lines(self) -> Iterator[str]: ...

    def wait(self, timeout: Optional[float] = None) -> Optional[int]: ...

    def poll(self) -> Optional[int]: ...

    def kill(self, sig: int = signal.SIGTERM) -> None: ...


class ProcessLauncher(Protocol):
    def launch(self, argv: Sequence[str], *, name: str) -> ProcessHandle: ...


class PopenHandle:
    """``ProcessHandle`` over a Popen whose stderr carries the diagnostic stream."""

    def __init__(self, process: subprocess.Popen, name: str) -> None:
        self._process = process
        self.name = name

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid

    def lines(self) -> Iterator[str]:
        stream = self._process.stderr
        if stream is None:
            return
        for line in stream:
            yield line.rstrip("\r\n")

    def wait(self, timeout: Optional[float] = None) -> Optional[int]:
        try:
            return self._process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            return None

    def poll(self) -> Optional[int]:
        return self._process.poll()

    def kill(self, sig: int = signal.SIGTERM) -> None:
        if self._process.poll() is not None:
            return
        try:
            self._process.send_signal(sig)
        except ProcessLookupError:
            LOGGER.debug("%s (pid=%s) already gone", self.name, self.pid)


class SubprocessLauncher:
    """Spawn external tools with stdin closed and stderr piped as text."""

    def launch(self, argv: Sequence[str], *, name: str) -> ProcessHandle:
        command = [str(arg) for arg in argv]
        LOGGER.info("Starting %s: %s", name, shlex.join(command))
        try:
            process = subprocess.Popen(
                command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                text=True,
                errors="replace",
                bufsize=1,
            )
        except OSError as exc:
            raise ProcessSpawnError(f"Failed to start {name}: {exc}") from exc
        return PopenHandle(process, name)


__all__ = ["PopenHandle", "ProcessHandle", "ProcessLauncher", "SubprocessLauncher"]
