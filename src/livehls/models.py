"""Domain records for live sessions: status machine, renditions, timings, key material."""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Optional, Tuple

from .exceptions import SessionStateError, ValidationError

if TYPE_CHECKING:  # pragma: no cover
    from .engine.process import ProcessHandle

LOGGER = logging.getLogger(__name__)


class SessionStatus(str, Enum):
    CREATED = "created"
    LISTENING = "listening"
    ACTIVE = "active"
    ENDED = "ended"
    ERROR = "error"
    STOPPED = "stopped"

    @property
    def terminal(self) -> bool:
        return self in _TERMINAL

    def can_become(self, target: "SessionStatus") -> bool:
        return target in _TRANSITIONS[self]


_TERMINAL = frozenset({SessionStatus.ENDED, SessionStatus.ERROR, SessionStatus.STOPPED})

_TRANSITIONS: Dict[SessionStatus, frozenset] = {
    SessionStatus.CREATED: frozenset(
        {SessionStatus.LISTENING, SessionStatus.ACTIVE, SessionStatus.ERROR, SessionStatus.STOPPED}
    ),
    SessionStatus.LISTENING: frozenset(
        {SessionStatus.ACTIVE, SessionStatus.ENDED, SessionStatus.ERROR, SessionStatus.STOPPED}
    ),
    SessionStatus.ACTIVE: frozenset(
        {SessionStatus.ENDED, SessionStatus.ERROR, SessionStatus.STOPPED}
    ),
    SessionStatus.ENDED: frozenset(),
    SessionStatus.ERROR: frozenset(),
    SessionStatus.STOPPED: frozenset(),
}


class IngestProtocol(str, Enum):
    SRT = "srt"
    RTMP = "rtmp"

    @classmethod
    def parse(cls, value: Any) -> "IngestProtocol":
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().lower()
        for member in cls:
            if member.value == text:
                return member
        raise ValidationError(f"Unsupported ingest protocol: {value!r}")


@dataclass(frozen=True)
class Rendition:
    """One output variant of the ABR ladder."""

    label: str
    width: int
    height: int
    video_bitrate: str
    audio_bitrate: str = "128k"

    def __post_init__(self) -> None:
        for name in ("width", "height"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise ValidationError(f"Rendition {name} must be a positive integer, got {value!r}")

    @property
    def resolution(self) -> str:
        return f"{self.width}x{self.height}"


@dataclass
class SessionTimings:
    """Monotonic latency milestones. ``0.0`` means the milestone has not happened."""

    ingest_start: float = 0.0
    ingest_active: float = 0.0
    first_publish_start: float = 0.0
    first_publish_end: float = 0.0
    ingest_exit: float = 0.0

    def mark(self, milestone: str, value: float) -> bool:
        """Record ``milestone`` once; later samples are ignored."""

        if milestone not in _TIMING_FIELDS:
            raise AttributeError(f"Unknown timing milestone: {milestone}")
        if getattr(self, milestone):
            return False
        setattr(self, milestone, value)
        return True

    def elapsed_ms(self, start: str, end: str) -> Optional[int]:
        begin = getattr(self, start)
        finish = getattr(self, end)
        if not begin or not finish:
            return None
        return int(round((finish - begin) * 1000))

    def copy(self) -> "SessionTimings":
        return SessionTimings(**{name: getattr(self, name) for name in _TIMING_FIELDS})


_TIMING_FIELDS = tuple(item.name for item in fields(SessionTimings))


@dataclass(frozen=True)
class DRMKeyMaterial:
    """Key material returned by the key server plus the built PSSH box."""

    key_id: str
    content_key: str
    iv: str
    pssh_box: str
    scheme: str = "widevine"
    protection_scheme: str = "cbcs"


@dataclass(frozen=True)
class StartOptions:
    """Parsed options for starting a session's pipeline."""

    resolutions: Tuple[Dict[str, Any], ...] = ()
    drm: bool = False
    drm_scheme: str = "widevine"
    protection_scheme: str = "cbcs"
    restream_url: Optional[str] = None


@dataclass(frozen=True)
class ConnectionInfo:
    session_id: str
    ingest_url: str
    push_url: str
    playback_url: str
    status: "SessionStatus"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "ingest_url": self.ingest_url,
            "push_url": self.push_url,
            "playback_url": self.playback_url,
            "status": self.status.value,
        }


@dataclass(frozen=True)
class SessionSnapshot:
    """Read-only copy of a session suitable for status endpoints."""

    id: str
    status: SessionStatus
    ingest_address: str
    output_dir: Path
    protocol: str
    port: int
    renditions: Tuple[Rendition, ...]
    timings: SessionTimings
    playback_url: str
    drm: bool
    last_error: Optional[str]
    created_at: datetime
    transcoder_pid: Optional[int]
    packager_pids: Dict[str, Optional[int]]
    last_activity: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        timings = self.timings
        return {
            "id": self.id,
            "status": self.status.value,
            "ingest_address": self.ingest_address,
            "output_dir": str(self.output_dir),
            "protocol": self.protocol,
            "port": self.port,
            "renditions": [
                {
                    "label": rendition.label,
                    "width": rendition.width,
                    "height": rendition.height,
                    "video_bitrate": rendition.video_bitrate,
                    "audio_bitrate": rendition.audio_bitrate,
                }
                for rendition in self.renditions
            ],
            "playback_url": self.playback_url,
            "drm": self.drm,
            "last_error": self.last_error,
            "created_at": self.created_at.isoformat(),
            "transcoder_pid": self.transcoder_pid,
            "packager_pids": dict(self.packager_pids),
            "metrics": {
                "active_after_ms": timings.elapsed_ms("ingest_start", "ingest_active"),
                "first_publish_after_ms": timings.elapsed_ms("ingest_active", "first_publish_end"),
                "first_publish_upload_ms": timings.elapsed_ms("first_publish_start", "first_publish_end"),
                "runtime_ms": timings.elapsed_ms("ingest_start", "ingest_exit"),
            },
        }


@dataclass
class StreamSession:
    """Mutable session record owned by the registry.

    After ``start`` only ``status``, ``timings``, ``last_error`` and
    ``last_activity`` change, and only from the session's event loop.
    """

    id: str
    ingest_address: str
    output_dir: Path
    port: int
    stream_key: str
    protocol: IngestProtocol = IngestProtocol.SRT
    status: SessionStatus = SessionStatus.CREATED
    renditions: Tuple[Rendition, ...] = ()
    timings: SessionTimings = field(default_factory=SessionTimings)
    playback_url: str = ""
    transcoder_handle: Optional["ProcessHandle"] = None
    packager_handles: Dict[str, "ProcessHandle"] = field(default_factory=dict)
    drm: Optional[DRMKeyMaterial] = None
    last_error: Optional[str] = None
    stop_requested: bool = False
    last_activity: float = 0.0
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)

    def transition(self, target: SessionStatus, *, error: Optional[str] = None) -> bool:
        with self.lock:
            current = self.status
            if not current.can_become(target):
                LOGGER.debug(
                    "Ignoring transition %s -> %s for session %s",
                    current.value,
                    target.value,
                    self.id,
                )
                return False
            self.status = target
            if error and target is SessionStatus.ERROR:
                self.last_error = error
        LOGGER.info("Session %s: %s -> %s", self.id, current.value, target.value)
        return True

    def assign_pipeline(
        self,
        renditions: Tuple[Rendition, ...],
        drm: Optional[DRMKeyMaterial] = None,
    ) -> None:
        with self.lock:
            if self.renditions or self.drm is not None:
                raise SessionStateError(f"Session {self.id} already has a pipeline assigned")
            self.renditions = tuple(renditions)
            self.drm = drm

    def mark(self, milestone: str, value: float) -> bool:
        with self.lock:
            return self.timings.mark(milestone, value)

    def touch(self, now: float) -> None:
        with self.lock:
            self.last_activity = max(self.last_activity, now)

    def status_text(self) -> str:
        with self.lock:
            text = f"Status: {self.status.value}"
            if self.status is SessionStatus.ERROR and self.last_error:
                text = f"{text} ({self.last_error})"
            return text

    def snapshot(self) -> SessionSnapshot:
        with self.lock:
            transcoder = self.transcoder_handle
            return SessionSnapshot(
                id=self.id,
                status=self.status,
                ingest_address=self.ingest_address,
                output_dir=self.output_dir,
                protocol=self.protocol.value,
                port=self.port,
                renditions=self.renditions,
                timings=self.timings.copy(),
                playback_url=self.playback_url,
                drm=self.drm is not None,
                last_error=self.last_error,
                created_at=self.created_at,
                transcoder_pid=transcoder.pid if transcoder is not None else None,
                packager_pids={label: handle.pid for label, handle in self.packager_handles.items()},
                last_activity=self.last_activity,
            )


__all__ = [
    "ConnectionInfo",
    "DRMKeyMaterial",
    "IngestProtocol",
    "Rendition",
    "SessionSnapshot",
    "SessionStatus",
    "SessionTimings",
    "StartOptions",
    "StreamSession",
]
