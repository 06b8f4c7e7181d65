"""Escalating signal sequence used to stop session processes."""
from __future__ import annotations

import logging
import signal
from dataclasses import dataclass
from typing import Optional

from .process import ProcessHandle

LOGGER = logging.getLogger(__name__)

_ESCALATION = (
    (signal.SIGINT, "SIGINT"),
    (signal.SIGTERM, "SIGTERM"),
    (signal.SIGKILL, "SIGKILL"),
)


@dataclass(frozen=True)
class StopResult:
    name: str
    returncode: Optional[int]
    escalated_to: Optional[str]


class StopStrategy:
    """Stop a process with SIGINT, then SIGTERM, then SIGKILL."""

    def __init__(
        self,
        *,
        graceful_timeout: float = 5.0,
        terminate_timeout: float = 5.0,
        kill_timeout: float = 2.0,
    ) -> None:
        self._timeouts = (
            max(0.0, graceful_timeout),
            max(0.0, terminate_timeout),
            max(0.0, kill_timeout),
        )

    def shutdown(self, handle: ProcessHandle) -> StopResult:
        name = handle.name
        returncode = handle.poll()
        if returncode is not None:
            return StopResult(name=name, returncode=returncode, escalated_to=None)

        sent: Optional[str] = None
        for (sig, label), timeout in zip(_ESCALATION, self._timeouts):
            if sent is not None:
                LOGGER.warning("%s still running after %s; sending %s", name, sent, label)
            else:
                LOGGER.info("Sending %s to %s (pid=%s)", label, name, handle.pid)
            try:
                handle.kill(sig)
            except OSError:
                LOGGER.exception("Failed to send %s to %s", label, name)
            sent = label
            returncode = handle.wait(timeout=timeout)
            if returncode is not None:
                break

        if returncode is None:
            LOGGER.error("%s still running after SIGKILL attempt", name)
        else:
            LOGGER.info("%s exited with %s", name, returncode)
        return StopResult(name=name, returncode=returncode, escalated_to=sent)


__all__ = ["StopResult", "StopStrategy"]
