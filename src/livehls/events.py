"""Typed messages consumed by a session's event loop."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union


@dataclass(frozen=True)
class ProcessLaunched:
    source: str
    pid: Optional[int]


@dataclass(frozen=True)
class MarkerMatched:
    source: str
    marker: str
    line: str


@dataclass(frozen=True)
class ProcessActivity:
    source: str


@dataclass(frozen=True)
class ProcessExited:
    source: str
    returncode: Optional[int]


@dataclass(frozen=True)
class ProcessFailed:
    source: str
    error: str


@dataclass(frozen=True)
class PlaylistReady:
    path: Path


@dataclass(frozen=True)
class ReadinessTimedOut:
    path: Path
    waited: float


@dataclass(frozen=True)
class PublishCompleted:
    key: str
    kind: str
    started_at: float
    finished_at: float


@dataclass(frozen=True)
class PublishFailed:
    key: str
    kind: str
    error: str


@dataclass(frozen=True)
class StopRequested:
    requested_at: float


SessionEvent = Union[
    ProcessLaunched,
    MarkerMatched,
    ProcessActivity,
    ProcessExited,
    ProcessFailed,
    PlaylistReady,
    ReadinessTimedOut,
    PublishCompleted,
    PublishFailed,
    StopRequested,
]

__all__ = [
    "MarkerMatched",
    "PlaylistReady",
    "ProcessActivity",
    "ProcessExited",
    "ProcessFailed",
    "ProcessLaunched",
    "PublishCompleted",
    "PublishFailed",
    "ReadinessTimedOut",
    "SessionEvent",
    "StopRequested",
]
