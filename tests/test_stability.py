from __future__ import annotations

from pathlib import Path

from livehls.publisher.stability import StabilityTracker


class FakeStat:
    def __init__(self) -> None:
        self.signatures = {}

    def __call__(self, path: Path):
        return self.signatures.get(path)


def test_file_is_due_only_after_quiet_window() -> None:
    stat = FakeStat()
    path = Path("/out/stream_720p/segment_000.ts")
    stat.signatures[path] = (100, 1)
    tracker = StabilityTracker(0.3, stat=stat)

    tracker.observe(path, 0.0)
    stat.signatures[path] = (200, 2)
    tracker.observe(path, 0.1)

    assert tracker.due(0.35) == []
    assert tracker.due(0.41) == [path]
    assert len(tracker) == 0


def test_silent_growth_restarts_window() -> None:
    stat = FakeStat()
    path = Path("/out/segment_001.ts")
    stat.signatures[path] = (100, 1)
    tracker = StabilityTracker(0.3, stat=stat)

    tracker.observe(path, 0.0)
    stat.signatures[path] = (150, 2)

    assert tracker.due(0.5) == []
    assert tracker.due(0.7) == []
    assert tracker.due(0.81) == [path]


def test_removed_files_are_dropped() -> None:
    stat = FakeStat()
    path = Path("/out/segment_002.ts")
    stat.signatures[path] = (10, 1)
    tracker = StabilityTracker(0.3, stat=stat)

    tracker.observe(path, 0.0)
    del stat.signatures[path]

    assert tracker.due(1.0) == []
    assert len(tracker) == 0


def test_real_files_use_size_and_mtime(tmp_path: Path) -> None:
    path = tmp_path / "segment_000.ts"
    path.write_bytes(b"x" * 188)
    tracker = StabilityTracker(0.0)

    tracker.observe(path, 0.0)

    assert tracker.due(0.0) == [path]
