from __future__ import annotations

from pathlib import Path

from fakes import RecordingStore
from livehls.events import PublishCompleted, PublishFailed
from livehls.publisher import OutputPublisher

PREFIX = "live-streams/stream-abc"


class FakeClock:
    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _write(path: Path, data: bytes = b"\x47" * 188) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return path


def _publisher(tmp_path: Path, store: RecordingStore, **overrides) -> OutputPublisher:
    options = dict(
        session_id="stream-abc",
        output_dir=tmp_path,
        store=store,
        bucket="live-bucket",
        remote_prefix=PREFIX,
        quiet_period=0.3,
        max_workers=2,
        manifest_timeout=1.0,
        clock=FakeClock(),
    )
    options.update(overrides)
    return OutputPublisher(**options)


def test_uploads_segments_before_their_playlist(tmp_path: Path) -> None:
    store = RecordingStore()
    publisher = _publisher(tmp_path, store)
    segment = _write(tmp_path / "stream_720p" / "segment_000.ts")
    playlist = _write(tmp_path / "stream_720p" / "stream.m3u8", b"#EXTM3U\nsegment_000.ts\n")

    publisher.notify(segment, now=0.0)
    publisher.notify(playlist, now=0.0)
    assert publisher.poll(now=0.1) == []
    assert publisher.poll(now=1.0) == [segment, playlist]
    assert publisher.wait_idle(2.0)

    assert store.keys() == [
        f"{PREFIX}/stream_720p/segment_000.ts",
        f"{PREFIX}/stream_720p/stream.m3u8",
    ]
    segment_call, playlist_call = store.calls
    assert segment_call["bucket"] == "live-bucket"
    assert segment_call["content_type"] == "video/MP2T"
    assert segment_call["cache_control"] == "public, max-age=31536000"
    assert segment_call["acl"] == "public-read"
    assert playlist_call["content_type"] == "application/vnd.apple.mpegurl"
    assert playlist_call["cache_control"] == "no-cache"
    publisher.stop(drain=False)


def test_failed_upload_does_not_block_others(tmp_path: Path) -> None:
    store = RecordingStore(fail_suffixes=("segment_000.ts",))
    events = []
    publisher = _publisher(tmp_path, store, on_event=events.append)
    first = _write(tmp_path / "segment_000.ts")
    second = _write(tmp_path / "segment_001.ts")

    publisher.notify(first, now=0.0)
    publisher.notify(second, now=0.0)
    publisher.poll(now=1.0)
    assert publisher.wait_idle(2.0)

    assert store.keys() == [f"{PREFIX}/segment_001.ts"]
    failed = [event for event in events if isinstance(event, PublishFailed)]
    completed = [event for event in events if isinstance(event, PublishCompleted)]
    assert [event.key for event in failed] == [f"{PREFIX}/segment_000.ts"]
    assert [event.key for event in completed] == [f"{PREFIX}/segment_001.ts"]
    assert completed[0].kind == "segment"
    publisher.stop(drain=False)


def test_master_waits_for_every_rendition(tmp_path: Path) -> None:
    store = RecordingStore()
    clock = FakeClock()
    publisher = _publisher(
        tmp_path,
        store,
        clock=clock,
        gate_folders=["stream_720p", "stream_480p"],
        gate_timeout=30.0,
    )
    master = _write(tmp_path / "master.m3u8", b"#EXTM3U\n")

    publisher.notify(master, now=0.0)
    publisher.poll(now=1.0)
    publisher.wait_idle(2.0)
    assert store.keys() == []

    publisher.notify(_write(tmp_path / "stream_720p" / "segment_000.ts"), now=1.0)
    publisher.poll(now=2.0)
    publisher.wait_idle(2.0)
    assert store.keys() == [f"{PREFIX}/stream_720p/segment_000.ts"]

    clock.now = 3.0
    publisher.notify(_write(tmp_path / "stream_480p" / "segment_000.ts"), now=2.0)
    publisher.poll(now=3.0)
    assert publisher.wait_idle(2.0)

    assert store.keys()[-1] == f"{PREFIX}/master.m3u8"
    assert len(store.keys()) == 3
    publisher.stop(drain=False)


def test_master_is_released_after_gate_timeout(tmp_path: Path) -> None:
    store = RecordingStore()
    publisher = _publisher(tmp_path, store, gate_folders=["stream_720p"], gate_timeout=5.0)
    master = _write(tmp_path / "master.m3u8", b"#EXTM3U\n")

    publisher.notify(master, now=0.0)
    publisher.poll(now=1.0)
    publisher.poll(now=3.0)
    publisher.wait_idle(2.0)
    assert store.keys() == []

    publisher.poll(now=7.0)
    assert publisher.wait_idle(2.0)
    assert store.keys() == [f"{PREFIX}/master.m3u8"]
    publisher.stop(drain=False)


def test_hidden_and_temporary_files_are_ignored(tmp_path: Path) -> None:
    store = RecordingStore()
    publisher = _publisher(tmp_path, store)

    publisher.notify(_write(tmp_path / ".clear" / "stream_720p_000.ts"), now=0.0)
    publisher.notify(_write(tmp_path / "master.m3u8.tmp"), now=0.0)
    publisher.notify(_write(tmp_path.parent / "elsewhere.ts"), now=0.0)

    assert publisher.poll(now=5.0) == []
    publisher.stop(drain=True, timeout=1.0)
    assert store.keys() == []


def test_dash_manifests_are_rewritten_before_upload(tmp_path: Path) -> None:
    store = RecordingStore()
    publisher = _publisher(tmp_path, store)
    manifest = _write(
        tmp_path / "dash" / "manifest.mpd",
        b"<MPD><BaseURL>video_$RepresentationID$</BaseURL></MPD>",
    )

    key = publisher.publish(manifest)

    assert key == f"{PREFIX}/dash/manifest.mpd"
    assert store.body(key) == b"<MPD><BaseURL>video_/video_$RepresentationID$</BaseURL></MPD>"
    assert store.calls[0]["content_type"] == "application/dash+xml"
    publisher.stop(drain=False)


def test_stop_drains_pending_files(tmp_path: Path) -> None:
    store = RecordingStore()
    publisher = OutputPublisher(
        session_id="stream-abc",
        output_dir=tmp_path,
        store=store,
        bucket="live-bucket",
        remote_prefix=PREFIX,
        quiet_period=0.05,
        poll_interval=0.02,
    )
    segment = _write(tmp_path / "segment_000.ts")

    publisher.notify(segment)
    publisher.stop(drain=True, timeout=2.0)

    assert store.keys() == [f"{PREFIX}/segment_000.ts"]


def test_start_backfills_existing_files(tmp_path: Path) -> None:
    store = RecordingStore()
    _write(tmp_path / "stream_720p" / "segment_000.ts")
    publisher = OutputPublisher(
        session_id="stream-abc",
        output_dir=tmp_path,
        store=store,
        bucket="live-bucket",
        remote_prefix=PREFIX,
        quiet_period=0.05,
        poll_interval=0.02,
    )

    publisher.start()
    publisher.stop(drain=True, timeout=2.0)

    assert f"{PREFIX}/stream_720p/segment_000.ts" in store.keys()
