"""Debounce filesystem activity until a file has been quiet for a full window."""
from __future__ import annotations

import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

Signature = Optional[Tuple[int, int]]


def _stat_signature(path: Path) -> Signature:
    try:
        stat = os.stat(path)
    except OSError:
        return None
    return (stat.st_size, stat.st_mtime_ns)


@dataclass
class _Pending:
    last_seen: float
    signature: Signature


class StabilityTracker:
    """Report a path as due once ``quiet_period`` passes after its last write."""

    def __init__(
        self,
        quiet_period: float = 0.3,
        *,
        stat: Callable[[Path], Signature] = _stat_signature,
    ) -> None:
        self.quiet_period = max(0.0, quiet_period)
        self._stat = stat
        self._pending: Dict[Path, _Pending] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)

    def observe(self, path: Path, now: float) -> None:
        signature = self._stat(path)
        with self._lock:
            self._pending[path] = _Pending(last_seen=now, signature=signature)

    def due(self, now: float) -> List[Path]:
        ready: List[Path] = []
        with self._lock:
            for path, entry in list(self._pending.items()):
                if now - entry.last_seen < self.quiet_period:
                    continue
                signature = self._stat(path)
                if signature is None:
                    del self._pending[path]
                    continue
                if signature != entry.signature:
                    # Written without an event reaching us; restart the window.
                    entry.signature = signature
                    entry.last_seen = now
                    continue
                del self._pending[path]
                ready.append(path)
        ready.sort()
        return ready


__all__ = ["StabilityTracker"]
