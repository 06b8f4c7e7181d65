"""Hold the master manifest until every rendition has a published segment."""
from __future__ import annotations

import threading
from pathlib import PurePath
from typing import Iterable

ROOT_FOLDER = ""


def folder_of(relative: PurePath) -> str:
    return relative.parts[0] if len(relative.parts) > 1 else ROOT_FOLDER


class ManifestGate:
    def __init__(self, folders: Iterable[str]) -> None:
        self._pending = set(folders)
        self._lock = threading.Lock()

    def record(self, relative: PurePath) -> bool:
        with self._lock:
            self._pending.discard(folder_of(relative))
            return not self._pending

    def is_open(self) -> bool:
        with self._lock:
            return not self._pending

    @property
    def pending(self) -> frozenset:
        with self._lock:
            return frozenset(self._pending)


__all__ = ["ManifestGate", "ROOT_FOLDER", "folder_of"]
