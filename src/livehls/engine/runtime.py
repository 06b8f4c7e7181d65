"""Per-session event loop tying process supervision, publishing and status together."""
from __future__ import annotations

import logging
import queue
import threading
import time
from pathlib import Path
from typing import Callable, Dict, Optional, Sequence

from ..events import (
    MarkerMatched,
    PlaylistReady,
    ProcessActivity,
    ProcessExited,
    ProcessFailed,
    ProcessLaunched,
    PublishCompleted,
    PublishFailed,
    ReadinessTimedOut,
    SessionEvent,
    StopRequested,
)
from ..exceptions import ProcessRuntimeError
from ..models import SessionStatus, StreamSession
from ..packager import PackagerJob
from ..publisher import OutputPublisher
from .process import ProcessLauncher
from .stop_strategy import StopStrategy
from .supervisor import (
    CLEAR_PLAYLIST_OPENED,
    INPUT_OPENED,
    TRANSCODER_MARKERS,
    Marker,
    ProcessSupervisor,
)

LOGGER = logging.getLogger(__name__)

TRANSCODER = "transcoder"
PACKAGER_PREFIX = "packager:"

PublisherFactory = Callable[[Callable[[SessionEvent], None]], OutputPublisher]


class SessionRuntime:
    """Consume one session's events on a dedicated thread.

    Reader threads, the readiness waiter and the publisher only post events;
    status and timings change here, one event at a time.
    """

    def __init__(
        self,
        session: StreamSession,
        *,
        transcoder_argv: Sequence[str],
        launcher: ProcessLauncher,
        publisher_factory: PublisherFactory,
        stopper: StopStrategy,
        packager_jobs: Sequence[PackagerJob] = (),
        clear_master_path: Optional[Path] = None,
        ready_timeout: float = 20.0,
        ready_poll_interval: float = 0.2,
        drain_timeout: float = 10.0,
        echo_output: bool = False,
        activity_interval: Optional[float] = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.session = session
        self._transcoder_argv = list(transcoder_argv)
        self._launcher = launcher
        self._publisher_factory = publisher_factory
        self._stopper = stopper
        self._packager_jobs = tuple(packager_jobs)
        self._clear_master_path = clear_master_path
        self._ready_timeout = max(0.0, ready_timeout)
        self._ready_poll_interval = max(0.01, ready_poll_interval)
        self._drain_timeout = drain_timeout
        self._echo_output = echo_output
        self._clock = clock

        self._events: "queue.Queue[SessionEvent]" = queue.Queue()
        self._halt = threading.Event()
        self._publisher: Optional[OutputPublisher] = None
        self._packagers: Dict[str, ProcessSupervisor] = {}
        self._thread: Optional[threading.Thread] = None
        self._readiness_started = False
        self._transcoder_exited = False
        self._discard_output = False
        self._done = False

        markers = list(TRANSCODER_MARKERS)
        if self.encrypted:
            markers.append(Marker(CLEAR_PLAYLIST_OPENED, clear_master_path.name))
        self._transcoder = ProcessSupervisor(
            TRANSCODER,
            launcher=launcher,
            emit=self.post,
            markers=markers,
            echo_output=echo_output,
            activity_interval=activity_interval,
        )
        self._handlers = {
            ProcessLaunched: self._on_launched,
            MarkerMatched: self._on_marker,
            ProcessActivity: self._on_activity,
            ProcessExited: self._on_exited,
            ProcessFailed: self._on_failed,
            PlaylistReady: self._on_playlist_ready,
            ReadinessTimedOut: self._on_readiness_timeout,
            PublishCompleted: self._on_publish_completed,
            PublishFailed: self._on_publish_failed,
            StopRequested: self._on_stop_requested,
        }

    @property
    def encrypted(self) -> bool:
        return bool(self._packager_jobs) and self._clear_master_path is not None

    @property
    def finished(self) -> bool:
        thread = self._thread
        return self._done and (thread is None or not thread.is_alive())

    # ------------------------------------------------------------------
    # Control surface (any thread)
    # ------------------------------------------------------------------
    def start(self) -> None:
        session = self.session
        self._publisher = self._publisher_factory(self.post)
        self._publisher.start()

        thread = threading.Thread(target=self._run, name=f"session-{session.id}", daemon=True)
        self._thread = thread
        thread.start()

        session.mark("ingest_start", self._clock())
        self._transcoder.launch(self._transcoder_argv)

    def post(self, event: SessionEvent) -> None:
        self._events.put(event)

    def request_stop(self) -> None:
        self.post(StopRequested(requested_at=self._clock()))

    def join(self, timeout: Optional[float] = None) -> bool:
        thread = self._thread
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    def shutdown(self, timeout: float = 10.0) -> None:
        """Kill every process and wait for the loop, discarding pending uploads."""

        self._discard_output = True
        self._halt.set()
        with self.session.lock:
            self.session.stop_requested = True
        for supervisor in list(self._packagers.values()):
            supervisor.terminate(self._stopper)
        self._transcoder.terminate(self._stopper)
        if not self.join(timeout):
            LOGGER.warning("Session %s loop did not finish within %.1fs", self.session.id, timeout)

    # ------------------------------------------------------------------
    # Event loop
    # ------------------------------------------------------------------
    def _run(self) -> None:
        session_id = self.session.id
        LOGGER.debug("Event loop for %s started", session_id)
        while True:
            try:
                event = self._events.get(timeout=0.25)
            except queue.Empty:
                if self._done:
                    break
                continue
            handler = self._handlers.get(type(event))
            if handler is None:
                LOGGER.warning("Session %s: unhandled event %r", session_id, event)
            else:
                try:
                    handler(event)
                except Exception:
                    LOGGER.exception("Session %s: failed handling %r", session_id, event)
            if self._done and self._events.empty():
                break
        LOGGER.info("Event loop for %s finished (%s)", session_id, self.session.status.value)

    def _finish(self) -> None:
        if self._done:
            return
        self._halt.set()
        publisher = self._publisher
        if publisher is not None:
            publisher.stop(drain=not self._discard_output, timeout=self._drain_timeout)
        self._done = True

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------
    def _on_launched(self, event: ProcessLaunched) -> None:
        session = self.session
        session.touch(self._clock())
        if event.source == TRANSCODER:
            with session.lock:
                session.transcoder_handle = self._transcoder.handle
            session.transition(SessionStatus.LISTENING)
            return
        LOGGER.info("Session %s: %s running (pid=%s)", session.id, event.source, event.pid)

    def _on_marker(self, event: MarkerMatched) -> None:
        session = self.session
        session.touch(self._clock())
        if event.marker == INPUT_OPENED:
            session.mark("ingest_active", self._clock())
            session.transition(SessionStatus.ACTIVE)
            timings = session.timings
            LOGGER.info(
                "Session %s: input detected after %s ms",
                session.id,
                timings.elapsed_ms("ingest_start", "ingest_active"),
            )
        elif event.marker == CLEAR_PLAYLIST_OPENED and self.encrypted and not self._readiness_started:
            self._readiness_started = True
            threading.Thread(
                target=self._await_clear_playlist,
                name=f"readiness-{session.id}",
                daemon=True,
            ).start()

    def _on_activity(self, event: ProcessActivity) -> None:
        self.session.touch(self._clock())

    def _on_exited(self, event: ProcessExited) -> None:
        if event.source == TRANSCODER:
            self._on_transcoder_exit(event.returncode)
        else:
            self._on_packager_exit(event.source, event.returncode)

    def _on_transcoder_exit(self, returncode: Optional[int]) -> None:
        session = self.session
        self._transcoder_exited = True
        self._halt.set()
        session.mark("ingest_exit", self._clock())
        for supervisor in list(self._packagers.values()):
            supervisor.terminate(self._stopper)

        if session.stop_requested:
            session.transition(SessionStatus.STOPPED)
        elif returncode == 0:
            session.transition(SessionStatus.ENDED)
        else:
            session.transition(
                SessionStatus.ERROR,
                error=f"transcoder exited with code {returncode}",
            )
        LOGGER.info(
            "Session %s: transcoder ran for %s ms",
            session.id,
            session.timings.elapsed_ms("ingest_start", "ingest_exit"),
        )
        self._finish()

    def _on_packager_exit(self, source: str, returncode: Optional[int]) -> None:
        session = self.session
        if self._transcoder_exited or session.stop_requested or returncode == 0:
            LOGGER.info("Session %s: %s exited with %s", session.id, source, returncode)
            return
        session.transition(
            SessionStatus.ERROR,
            error=f"{source} exited with code {returncode}",
        )
        self._transcoder.interrupt()

    def _on_failed(self, event: ProcessFailed) -> None:
        session = self.session
        session.transition(SessionStatus.ERROR, error=event.error)
        if event.source == TRANSCODER:
            self._transcoder_exited = True
            session.mark("ingest_exit", self._clock())
            self._finish()
            return
        self._transcoder.interrupt()

    def _on_playlist_ready(self, event: PlaylistReady) -> None:
        session = self.session
        if self._transcoder_exited or session.status.terminal:
            return
        LOGGER.info("Session %s: %s ready; starting packagers", session.id, event.path.name)
        for job in self._packager_jobs:
            source = f"{PACKAGER_PREFIX}{job.rendition.label}"
            job.rendition_dir.mkdir(parents=True, exist_ok=True)
            supervisor = ProcessSupervisor(
                source,
                launcher=self._launcher,
                emit=self.post,
                echo_output=self._echo_output,
            )
            self._packagers[job.rendition.label] = supervisor
            handle = supervisor.launch(job.command())
            if handle is None:
                break
            with session.lock:
                session.packager_handles[job.rendition.label] = handle

    def _on_readiness_timeout(self, event: ReadinessTimedOut) -> None:
        session = self.session
        if self._transcoder_exited or session.status.terminal:
            return
        error = ProcessRuntimeError(
            f"{event.path.name} did not appear within {event.waited:.1f}s"
        )
        session.transition(SessionStatus.ERROR, error=str(error))
        self._transcoder.interrupt()

    def _on_publish_completed(self, event: PublishCompleted) -> None:
        session = self.session
        if session.mark("first_publish_start", event.started_at):
            LOGGER.info("Session %s: first artifact upload started (%s)", session.id, event.key)
        if session.mark("first_publish_end", event.finished_at):
            LOGGER.info(
                "Session %s: first artifact published %s ms after input",
                session.id,
                session.timings.elapsed_ms("ingest_active", "first_publish_end"),
            )
        session.touch(self._clock())

    def _on_publish_failed(self, event: PublishFailed) -> None:
        LOGGER.debug("Session %s: publish of %s failed: %s", self.session.id, event.key, event.error)
        # Failed uploads still count as activity.
        self.session.touch(self._clock())

    def _on_stop_requested(self, event: StopRequested) -> None:
        session = self.session
        if session.status.terminal:
            return
        with session.lock:
            session.stop_requested = True
        if self._transcoder.interrupt():
            return
        if self._transcoder.handle is None:
            session.transition(SessionStatus.STOPPED)
            self._finish()

    # ------------------------------------------------------------------
    # Readiness
    # ------------------------------------------------------------------
    def _await_clear_playlist(self) -> None:
        path = self._clear_master_path
        started = self._clock()
        while not self._halt.is_set():
            try:
                if path.stat().st_size > 0:
                    self.post(PlaylistReady(path))
                    return
            except FileNotFoundError:
                pass
            waited = self._clock() - started
            if waited >= self._ready_timeout:
                self.post(ReadinessTimedOut(path, waited))
                return
            self._halt.wait(self._ready_poll_interval)


__all__ = ["PACKAGER_PREFIX", "PublisherFactory", "SessionRuntime", "TRANSCODER"]
