"""Own live sessions and compose the engine components into their lifecycle."""
from __future__ import annotations

import logging
import shutil
import threading
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from ..config import ServiceSettings
from ..drm import DRMKeyClient
from ..encoder import EncoderSettings, FFmpegHlsCommand
from ..events import SessionEvent
from ..exceptions import (
    ConfigurationError,
    KeyExchangeError,
    ProcessSpawnError,
    SessionNotFoundError,
    SessionStateError,
    ValidationError,
)
from ..manifest import MASTER_PLAYLIST_NAME, ManifestComposer
from ..models import (
    ConnectionInfo,
    DRMKeyMaterial,
    IngestProtocol,
    SessionSnapshot,
    SessionStatus,
    StartOptions,
    StreamSession,
)
from ..packager import PackagerJob, packager_input_url
from ..pipeline import (
    DEFAULT_DRM_LADDER,
    PipelineSpec,
    build_pipeline_spec,
    parse_rendition_requests,
    parse_start_options,
)
from ..publisher import ObjectStore, OutputPublisher, S3ObjectStore
from ..publisher.gate import ROOT_FOLDER
from ..simulator import SIMULATOR_PREFIX, build_simulation_command
from ..utils import join_key
from .process import ProcessLauncher, SubprocessLauncher
from .reaper import IdleReaper
from .runtime import SessionRuntime
from .stop_strategy import StopStrategy
from .supervisor import ProcessSupervisor

LOGGER = logging.getLogger(__name__)

LOOPBACK_HOST = "127.0.0.1"


@dataclass(frozen=True)
class StartResult:
    session_id: str
    status: SessionStatus
    playback_url: str
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "status": self.status.value,
            "playback_url": self.playback_url,
            "message": self.message,
        }


@dataclass(frozen=True)
class SimulationInfo:
    session_id: str
    push_url: str
    pid: Optional[int]

    def to_dict(self) -> Dict[str, Any]:
        return {"session_id": self.session_id, "push_url": self.push_url, "pid": self.pid}


class SessionRegistry:
    """Registry of live sessions; every public method is thread-safe."""

    def __init__(
        self,
        settings: Optional[ServiceSettings] = None,
        *,
        launcher: Optional[ProcessLauncher] = None,
        store: Optional[ObjectStore] = None,
        key_client: Optional[DRMKeyClient] = None,
        composer: Optional[ManifestComposer] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings or ServiceSettings.from_env()
        self._launcher = launcher or SubprocessLauncher()
        self._store = store
        self._key_client = key_client
        self._composer = composer or ManifestComposer()
        self._clock = clock
        self._stopper = StopStrategy(
            graceful_timeout=self.settings.graceful_timeout,
            terminate_timeout=self.settings.terminate_timeout,
            kill_timeout=self.settings.kill_timeout,
        )
        self._sessions: Dict[str, StreamSession] = {}
        self._runtimes: Dict[str, SessionRuntime] = {}
        self._simulations: Dict[str, ProcessSupervisor] = {}
        self._starting: set[str] = set()
        self._lock = threading.Lock()
        self._reaper: Optional[IdleReaper] = None

    # ------------------------------------------------------------------
    # Lifecycle operations
    # ------------------------------------------------------------------
    def create(
        self,
        port: Any,
        stream_key: Optional[str] = None,
        *,
        protocol: Union[str, IngestProtocol] = IngestProtocol.SRT,
    ) -> ConnectionInfo:
        port_number = _validate_port(port)
        ingest = IngestProtocol.parse(protocol)
        key = (stream_key or "").strip() or uuid.uuid4().hex
        if "/" in key or "?" in key or "#" in key:
            raise ValidationError("stream key may not contain '/', '?' or '#'")

        with self._lock:
            session_id = self._allocate_id()
            output_dir = self.settings.output_root / session_id
            output_dir.mkdir(parents=True, exist_ok=False)
            session = StreamSession(
                id=session_id,
                ingest_address=self._listener_url(ingest, port_number, key),
                output_dir=output_dir,
                port=port_number,
                stream_key=key,
                protocol=ingest,
                playback_url=self._playback_url(session_id),
                last_activity=self._clock(),
            )
            self._sessions[session_id] = session

        LOGGER.info(
            "Created session %s (%s on port %d, output %s)",
            session_id,
            ingest.value,
            port_number,
            output_dir,
        )
        return ConnectionInfo(
            session_id=session_id,
            ingest_url=session.ingest_address,
            push_url=self._push_url(ingest, port_number, key),
            playback_url=session.playback_url,
            status=session.status,
        )

    def start(
        self,
        session_id: str,
        options: Union[StartOptions, Mapping[str, Any], None] = None,
    ) -> StartResult:
        if not isinstance(options, StartOptions):
            options = parse_start_options(options)
        requests = parse_rendition_requests(list(options.resolutions))
        if options.drm and not requests:
            requests = parse_rendition_requests(list(DEFAULT_DRM_LADDER))
        spec = build_pipeline_spec(requests)
        if options.drm:
            self.settings.key_server.require()
        bucket = self._require_bucket()

        session = self._get(session_id)
        with self._lock:
            if (
                session_id in self._runtimes
                or session_id in self._starting
                or session.status is not SessionStatus.CREATED
            ):
                raise SessionStateError(
                    f"Session {session_id} cannot be started from {session.status.value}"
                )
            self._starting.add(session_id)

        try:
            drm: Optional[DRMKeyMaterial] = None
            if options.drm:
                try:
                    drm = self._key_client_for().fetch_key_material(
                        session_id,
                        scheme=options.drm_scheme,
                        protection_scheme=options.protection_scheme,
                    )
                except KeyExchangeError as exc:
                    LOGGER.error("Session %s: key exchange failed: %s", session_id, exc)
                    session.transition(SessionStatus.ERROR, error=str(exc))
                    return StartResult(session_id, session.status, session.playback_url, str(exc))

            with self._lock:
                self._ensure_startable(session)
            session.assign_pipeline(spec.renditions, drm)
            runtime = self._build_runtime(session, spec, drm, bucket, restream_url=options.restream_url)
            with self._lock:
                self._ensure_startable(session)
                self._runtimes[session_id] = runtime
        finally:
            with self._lock:
                self._starting.discard(session_id)

        try:
            runtime.start()
        except OSError as exc:
            LOGGER.error("Session %s: failed to start: %s", session_id, exc)
            session.transition(SessionStatus.ERROR, error=str(exc))
            return StartResult(session_id, session.status, session.playback_url, str(exc))

        mode = "passthrough" if spec.passthrough else spec.variant_map
        return StartResult(
            session_id=session_id,
            status=session.status,
            playback_url=session.playback_url,
            message=(
                f"Session {session_id} starting ({mode}"
                f"{', drm' if drm else ''}{', restream' if options.restream_url else ''})"
            ),
        )

    def stop(self, session_id: str) -> bool:
        session = self._get(session_id)
        with self._lock:
            runtime = self._runtimes.get(session_id)
            if session.status.terminal:
                return False
            if runtime is None:
                with session.lock:
                    session.stop_requested = True
                return session.transition(SessionStatus.STOPPED)
        runtime.request_stop()
        return True

    def get(self, session_id: str) -> SessionSnapshot:
        return self._get(session_id).snapshot()

    def list(self) -> List[SessionSnapshot]:
        with self._lock:
            sessions = list(self._sessions.values())
        return [session.snapshot() for session in sessions]

    def status_text(self, session_id: str) -> str:
        return self._get(session_id).status_text()

    def wait(self, session_id: str, timeout: Optional[float] = None) -> SessionSnapshot:
        session = self._get(session_id)
        with self._lock:
            runtime = self._runtimes.get(session_id)
        if runtime is not None and not runtime.join(timeout):
            LOGGER.warning("Session %s still running after %.1fs", session_id, timeout or 0.0)
        return session.snapshot()

    def delete(self, session_id: str) -> bool:
        with self._lock:
            session = self._sessions.pop(session_id, None)
            runtime = self._runtimes.pop(session_id, None)
            simulation = self._simulations.pop(session_id, None)
        if session is None:
            raise SessionNotFoundError(f"Stream {session_id} not found")

        if simulation is not None:
            simulation.terminate(self._stopper)
        if runtime is not None:
            runtime.shutdown()
        elif not session.status.terminal:
            session.transition(SessionStatus.STOPPED)
        shutil.rmtree(session.output_dir, ignore_errors=True)
        LOGGER.info("Deleted session %s", session_id)
        return True

    def simulate(self, session_id: str, source: Union[str, Path]) -> SimulationInfo:
        """Loop ``source`` into the session's listener from this host."""

        session = self._get(session_id)
        if session.status.terminal:
            raise SessionStateError(
                f"Session {session_id} cannot be simulated from {session.status.value}"
            )
        push_url = self._push_url(
            session.protocol, session.port, session.stream_key, host=LOOPBACK_HOST
        )
        argv = build_simulation_command(
            Path(source),
            push_url,
            protocol=session.protocol,
            ffmpeg_binary=self.settings.ffmpeg_binary,
        )
        with self._lock:
            existing = self._simulations.get(session_id)
            if existing is not None and existing.running():
                raise SessionStateError(f"Session {session_id} already has a running simulation")
            supervisor = ProcessSupervisor(
                f"{SIMULATOR_PREFIX}{session_id}",
                launcher=self._launcher,
                emit=self._on_simulation_event,
                echo_output=self.settings.echo_process_output,
            )
            handle = supervisor.launch(argv)
            if handle is None:
                raise ProcessSpawnError(f"Failed to start simulation for {session_id}")
            self._simulations[session_id] = supervisor

        LOGGER.info("Session %s: simulating ingest from %s (pid=%s)", session_id, source, handle.pid)
        return SimulationInfo(session_id=session_id, push_url=push_url, pid=handle.pid)

    def stop_simulation(self, session_id: str) -> bool:
        self._get(session_id)
        with self._lock:
            supervisor = self._simulations.pop(session_id, None)
        if supervisor is None or not supervisor.running():
            return False
        supervisor.terminate(self._stopper)
        return True

    def reap_idle(self, now: Optional[float] = None) -> List[str]:
        """Delete non-DRM sessions whose last activity is older than the idle timeout."""

        timeout = self.settings.idle_timeout
        if timeout <= 0:
            return []
        current = self._clock() if now is None else now
        with self._lock:
            candidates = [
                session
                for session in self._sessions.values()
                if session.drm is None and current - session.last_activity > timeout
            ]
        reaped = []
        for session in candidates:
            LOGGER.info(
                "Reaping idle session %s (%s, idle %.0fs)",
                session.id,
                session.status.value,
                current - session.last_activity,
            )
            try:
                self.delete(session.id)
            except SessionNotFoundError:
                continue
            reaped.append(session.id)
        return reaped

    def start_reaper(self) -> None:
        if self.settings.idle_timeout <= 0:
            return
        if self._reaper is None:
            self._reaper = IdleReaper(self.settings.reap_interval, self.reap_idle)
        self._reaper.start()

    def shutdown(self) -> None:
        if self._reaper is not None:
            self._reaper.stop()
        with self._lock:
            session_ids = list(self._sessions)
        for session_id in session_ids:
            try:
                self.delete(session_id)
            except SessionNotFoundError:
                continue
        if self._key_client is not None:
            self._key_client.close()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _ensure_startable(self, session: StreamSession) -> None:
        if session.status is not SessionStatus.CREATED or session.id not in self._sessions:
            raise SessionStateError(f"Session {session.id} was stopped while starting")

    def _on_simulation_event(self, event: SessionEvent) -> None:
        LOGGER.debug("Simulation event: %r", event)

    def _get(self, session_id: str) -> StreamSession:
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Stream {session_id} not found")
        return session

    def _allocate_id(self) -> str:
        while True:
            candidate = f"stream-{uuid.uuid4().hex[:12]}"
            if candidate not in self._sessions:
                return candidate

    def _listener_url(self, protocol: IngestProtocol, port: int, key: str) -> str:
        if protocol is IngestProtocol.RTMP:
            return f"rtmp://0.0.0.0:{port}/live/{key}"
        return f"srt://0.0.0.0:{port}?mode=listener&streamid=#!::r={key}"

    def _push_url(
        self, protocol: IngestProtocol, port: int, key: str, *, host: Optional[str] = None
    ) -> str:
        host = host or self.settings.public_host
        if protocol is IngestProtocol.RTMP:
            return f"rtmp://{host}:{port}/live/{key}"
        return f"srt://{host}:{port}?streamid=#!::r={key}"

    def _remote_prefix(self, session_id: str) -> str:
        return join_key(self.settings.storage.prefix, session_id)

    def _playback_url(self, session_id: str) -> str:
        base = self.settings.storage.playback_base()
        return f"{base}/{self._remote_prefix(session_id)}/{MASTER_PLAYLIST_NAME}"

    def _require_bucket(self) -> str:
        bucket = self.settings.storage.bucket
        if not bucket:
            raise ConfigurationError("Object storage is not configured; missing AWS_S3_BUCKET")
        return bucket

    def _store_for(self) -> ObjectStore:
        if self._store is None:
            storage = self.settings.storage
            publisher = self.settings.publisher
            self._store = S3ObjectStore(
                region=storage.region,
                endpoint_url=storage.endpoint_url,
                retry_attempts=publisher.retry_attempts,
                retry_delay=publisher.retry_delay,
                retry_backoff=publisher.retry_backoff,
            )
        return self._store

    def _key_client_for(self) -> DRMKeyClient:
        if self._key_client is None:
            self._key_client = DRMKeyClient(self.settings.key_server)
        return self._key_client

    def _build_runtime(
        self,
        session: StreamSession,
        spec: PipelineSpec,
        drm: Optional[DRMKeyMaterial],
        bucket: str,
        *,
        restream_url: Optional[str] = None,
    ) -> SessionRuntime:
        settings = self.settings
        output_dir = session.output_dir
        packager_jobs: List[PackagerJob] = []
        packager_inputs: List[str] = []
        if drm is not None:
            for index, rendition in enumerate(spec.renditions):
                url = packager_input_url(settings.packager_base_port, index)
                packager_inputs.append(url)
                packager_jobs.append(
                    PackagerJob(
                        binary=settings.packager_binary,
                        rendition=rendition,
                        input_url=url,
                        output_dir=output_dir,
                        key_material=drm,
                        segment_duration=float(settings.segment_duration),
                    )
                )

        encoder_settings = EncoderSettings(
            ffmpeg_binary=settings.ffmpeg_binary,
            loglevel=settings.ffmpeg_loglevel,
            segment_duration=settings.segment_duration,
            input_args=("-listen", "1") if session.protocol is IngestProtocol.RTMP else (),
        )
        command = FFmpegHlsCommand(
            encoder_settings,
            spec,
            ingest_url=session.ingest_address,
            output_dir=output_dir,
            packager_inputs=packager_inputs,
            restream_url=restream_url,
        )

        if command.encrypted:
            command.clear_dir.mkdir(parents=True, exist_ok=True)
        for rendition in spec.renditions:
            (output_dir / rendition.label).mkdir(parents=True, exist_ok=True)
        if not spec.passthrough:
            self._composer.write(output_dir, spec.renditions, drm)

        gate_folders = (
            [ROOT_FOLDER] if spec.passthrough else [rendition.label for rendition in spec.renditions]
        )
        store = self._store_for()
        publisher_settings = settings.publisher

        def _publisher(emit: Callable[[SessionEvent], None]) -> OutputPublisher:
            return OutputPublisher(
                session_id=session.id,
                output_dir=output_dir,
                store=store,
                bucket=bucket,
                remote_prefix=self._remote_prefix(session.id),
                acl=settings.storage.acl,
                quiet_period=publisher_settings.quiet_period,
                poll_interval=publisher_settings.poll_interval,
                max_workers=publisher_settings.max_workers,
                manifest_timeout=publisher_settings.manifest_timeout,
                gate_folders=gate_folders,
                gate_timeout=publisher_settings.gate_timeout,
                on_event=emit,
            )

        return SessionRuntime(
            session,
            transcoder_argv=command.build(),
            launcher=self._launcher,
            publisher_factory=_publisher,
            stopper=self._stopper,
            packager_jobs=packager_jobs,
            clear_master_path=command.clear_master_path if command.encrypted else None,
            ready_timeout=settings.packager_ready_timeout,
            ready_poll_interval=settings.readiness_poll_interval,
            drain_timeout=publisher_settings.drain_timeout,
            echo_output=settings.echo_process_output,
            activity_interval=settings.activity_interval,
            clock=self._clock,
        )


def _validate_port(port: Any) -> int:
    if isinstance(port, bool):
        raise ValidationError(f"Invalid port: {port!r}")
    if isinstance(port, str) and port.strip().isdigit():
        port = int(port.strip())
    if not isinstance(port, int):
        raise ValidationError(f"Invalid port: {port!r}")
    if not 1 <= port <= 65535:
        raise ValidationError(f"Port out of range: {port}")
    return port


__all__ = ["SessionRegistry", "SimulationInfo", "StartResult"]
