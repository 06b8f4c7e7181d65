"""Incremental publishing of a session's output directory to object storage."""
from __future__ import annotations

import logging
import os
import threading
import time
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from pathlib import Path
from threading import Condition, Event, Lock
from typing import Callable, Iterable, List, Optional, Set, Tuple

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from ..events import PublishCompleted, PublishFailed, SessionEvent
from ..exceptions import PublishError
from .artifacts import (
    DEFAULT_MASTER_NAMES,
    ArtifactKind,
    cache_control_for,
    classify,
    content_type_for,
    destination_key,
    rewrite_base_urls,
)
from .gate import ManifestGate
from .stability import StabilityTracker
from .storage import ObjectStore

LOGGER = logging.getLogger(__name__)


class PublishEventHandler(FileSystemEventHandler):
    """Forward file writes and renames to the publisher's stability tracker."""

    def __init__(self, publisher: "OutputPublisher") -> None:
        super().__init__()
        self._publisher = publisher

    def _forward(self, raw_path) -> None:
        self._publisher.notify(Path(os.fsdecode(raw_path)))

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._forward(event.src_path)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._forward(event.src_path)

    def on_closed(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._forward(event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._forward(event.dest_path)


class OutputPublisher:
    """Watch ``output_dir`` and upload stable artifacts under ``remote_prefix``."""

    def __init__(
        self,
        *,
        session_id: str,
        output_dir: Path,
        store: ObjectStore,
        bucket: str,
        remote_prefix: str,
        acl: Optional[str] = "public-read",
        quiet_period: float = 0.3,
        poll_interval: float = 0.1,
        max_workers: int = 4,
        manifest_timeout: float = 15.0,
        gate_folders: Optional[Iterable[str]] = None,
        gate_timeout: float = 30.0,
        master_names: Iterable[str] = DEFAULT_MASTER_NAMES,
        on_event: Optional[Callable[[SessionEvent], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.session_id = session_id
        self.output_dir = Path(output_dir).expanduser().resolve()
        self.store = store
        self.bucket = bucket
        self.remote_prefix = remote_prefix
        self.acl = acl
        self.poll_interval = max(0.01, poll_interval)
        self.manifest_timeout = max(0.0, manifest_timeout)
        self.gate_timeout = max(0.0, gate_timeout)
        self.master_names = frozenset(master_names)
        self._on_event = on_event
        self._clock = clock

        self._tracker = StabilityTracker(quiet_period)
        self._gate = ManifestGate(gate_folders) if gate_folders is not None else None
        self._held_master: Optional[Tuple[Path, float]] = None
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, max_workers),
            thread_name_prefix=f"publish-{session_id}",
        )
        self._lock = Lock()
        self._condition = Condition(self._lock)
        self._segment_sequence = 0
        self._inflight_segments: dict[int, Path] = {}
        self._futures: Set[Future] = set()
        self._stop_event = Event()
        self._closed = False
        self._observer: Optional[Observer] = None
        self._poll_thread: Optional[threading.Thread] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self) -> None:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        observer = Observer()
        observer.schedule(PublishEventHandler(self), str(self.output_dir), recursive=True)
        observer.daemon = True
        observer.start()
        self._observer = observer
        self._backfill()

        thread = threading.Thread(
            target=self._poll_loop,
            name=f"publish-poll-{self.session_id}",
            daemon=True,
        )
        self._poll_thread = thread
        thread.start()
        LOGGER.info(
            "Publishing %s to s3://%s/%s",
            self.output_dir,
            self.bucket,
            self.remote_prefix,
        )

    def stop(self, *, drain: bool = True, timeout: float = 10.0) -> None:
        """Stop watching; with ``drain`` flush pending files and wait for uploads."""

        observer = self._observer
        self._observer = None
        if observer is not None:
            observer.stop()
            observer.join(timeout=2.0)

        if drain:
            deadline = time.monotonic() + max(0.0, timeout)
            while len(self._tracker) and time.monotonic() < deadline:
                self.poll()
                if len(self._tracker):
                    time.sleep(self.poll_interval)
            self._release_master(force=True)
            self.wait_idle(max(0.0, deadline - time.monotonic()))

        self._stop_event.set()
        thread = self._poll_thread
        self._poll_thread = None
        if thread is not None and thread.is_alive():
            thread.join(timeout=2.0)

        with self._lock:
            self._closed = True
            self._condition.notify_all()
        self._executor.shutdown(wait=drain, cancel_futures=not drain)
        LOGGER.info("Publisher for %s stopped", self.session_id)

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            with self._lock:
                pending = [future for future in self._futures if not future.done()]
            if not pending:
                return True
            remaining = None if deadline is None else deadline - time.monotonic()
            if remaining is not None and remaining <= 0:
                LOGGER.warning("%d upload(s) still in flight for %s", len(pending), self.session_id)
                return False
            try:
                pending[0].exception(timeout=remaining)
            except (CancelledError, FutureTimeout):
                continue

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def notify(self, path: Path, now: Optional[float] = None) -> None:
        relative = self._relative(path)
        if relative is None or classify(relative, master_names=self.master_names) is None:
            return
        self._tracker.observe(path, self._clock() if now is None else now)

    def poll(self, now: Optional[float] = None) -> List[Path]:
        """Dispatch every file whose quiet window has elapsed."""

        current = self._clock() if now is None else now
        ready = self._tracker.due(current)
        for path in ready:
            self._dispatch(path, current)
        self._release_master(now=current)
        return ready

    def publish(self, path: Path) -> Optional[str]:
        """Upload one file synchronously; returns the object key on success."""

        relative = self._relative(path)
        if relative is None:
            return None
        kind = classify(relative, master_names=self.master_names)
        if kind is None:
            return None
        return self._upload(path, relative, kind)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------
    def _backfill(self) -> None:
        """Queue files that were written before the observer started."""

        now = self._clock()
        count = 0
        for path in sorted(self.output_dir.rglob("*")):
            if path.is_file():
                self.notify(path, now)
                count += 1
        if count:
            LOGGER.debug("Backfilled %d existing file(s) for %s", count, self.session_id)

    def _relative(self, path: Path) -> Optional[Path]:
        try:
            return Path(path).resolve().relative_to(self.output_dir)
        except ValueError:
            LOGGER.debug("Skipping %s: outside of %s", path, self.output_dir)
            return None

    def _dispatch(self, path: Path, now: float) -> None:
        relative = self._relative(path)
        if relative is None:
            return
        kind = classify(relative, master_names=self.master_names)
        if kind is None:
            return
        if kind is ArtifactKind.MASTER_MANIFEST and self._gate is not None and not self._gate.is_open():
            with self._lock:
                held_since = self._held_master[1] if self._held_master else now
                self._held_master = (path, held_since)
            LOGGER.info(
                "Holding %s until first segments exist for %s",
                relative,
                ", ".join(sorted(self._gate.pending)) or "(root)",
            )
            return
        self._submit(path, relative, kind)

    def _submit(self, path: Path, relative: Path, kind: ArtifactKind) -> None:
        with self._condition:
            if self._closed:
                LOGGER.debug("Publisher closed; dropping %s", relative)
                return
            token: Optional[int] = None
            marker = self._segment_sequence
            if not kind.manifest:
                self._segment_sequence += 1
                token = self._segment_sequence
                self._inflight_segments[token] = relative
            future = self._executor.submit(self._run_upload, path, relative, kind, token, marker)
            self._futures.add(future)
        future.add_done_callback(self._forget)

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._futures.discard(future)

    def _run_upload(
        self,
        path: Path,
        relative: Path,
        kind: ArtifactKind,
        token: Optional[int],
        marker: int,
    ) -> None:
        try:
            if kind.manifest:
                self._await_segments(marker)
            self._upload(path, relative, kind)
        finally:
            if token is not None:
                with self._condition:
                    self._inflight_segments.pop(token, None)
                    self._condition.notify_all()

    def _await_segments(self, marker: int) -> None:
        deadline = time.monotonic() + self.manifest_timeout
        with self._condition:
            while any(token <= marker for token in self._inflight_segments):
                remaining = deadline - time.monotonic()
                if remaining <= 0 or self._closed:
                    LOGGER.warning(
                        "Manifest wait timed out (marker=%d inflight=%d)",
                        marker,
                        len(self._inflight_segments),
                    )
                    return
                self._condition.wait(timeout=min(remaining, 0.5))

    def _upload(self, path: Path, relative: Path, kind: ArtifactKind) -> Optional[str]:
        key = destination_key(self.remote_prefix, relative)
        started = self._clock()
        try:
            if kind.manifest:
                body = rewrite_base_urls(path.read_text(encoding="utf-8")).encode("utf-8")
                self._put(key, body, relative, kind)
            else:
                with path.open("rb") as handle:
                    self._put(key, handle, relative, kind)
        except FileNotFoundError:
            LOGGER.debug("Skipping %s: removed before upload", relative)
            return None
        except (PublishError, OSError) as exc:
            LOGGER.warning("[%s] %s failed: %s", kind.value.upper(), relative.as_posix(), exc)
            self._emit(PublishFailed(key=key, kind=kind.value, error=str(exc)))
            return None

        finished = self._clock()
        LOGGER.info("[%s] %s (%.0f ms)", kind.value.upper(), key, (finished - started) * 1000)
        self._emit(PublishCompleted(key=key, kind=kind.value, started_at=started, finished_at=finished))
        if not kind.manifest and self._gate is not None:
            if self._gate.record(relative):
                self._release_master()
        return key

    def _put(self, key: str, body, relative: Path, kind: ArtifactKind) -> None:
        self.store.put(
            bucket=self.bucket,
            key=key,
            body=body,
            content_type=content_type_for(relative),
            cache_control=cache_control_for(kind),
            acl=self.acl,
        )

    def _release_master(self, *, now: Optional[float] = None, force: bool = False) -> None:
        with self._lock:
            held = self._held_master
            if held is None:
                return
            path, held_since = held
            gate_open = self._gate is None or self._gate.is_open()
            current = self._clock() if now is None else now
            expired = current - held_since >= self.gate_timeout
            if not (gate_open or expired or force):
                return
            self._held_master = None
        if not gate_open:
            LOGGER.warning(
                "Releasing master manifest without segments for %s",
                ", ".join(sorted(self._gate.pending)) if self._gate else "",
            )
        relative = self._relative(path)
        if relative is not None:
            self._submit(path, relative, ArtifactKind.MASTER_MANIFEST)

    def _emit(self, event: SessionEvent) -> None:
        if self._on_event is None:
            return
        try:
            self._on_event(event)
        except Exception:
            LOGGER.exception("Publish event handler failed for %s", self.session_id)

    def _poll_loop(self) -> None:
        while not self._stop_event.wait(self.poll_interval):
            try:
                self.poll()
            except Exception:
                LOGGER.exception("Publisher poll failed for %s", self.session_id)


__all__ = ["OutputPublisher", "PublishEventHandler"]
