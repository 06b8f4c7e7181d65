from __future__ import annotations

from pathlib import Path

import pytest

from livehls.exceptions import SessionStateError, ValidationError
from livehls.models import Rendition, SessionStatus, SessionTimings, StreamSession


def _session(tmp_path: Path) -> StreamSession:
    return StreamSession(
        id="stream-abc",
        ingest_address="srt://0.0.0.0:9000?mode=listener&streamid=#!::r=abc",
        output_dir=tmp_path,
        port=9000,
        stream_key="abc",
    )


def test_happy_path_transitions(tmp_path: Path) -> None:
    session = _session(tmp_path)

    assert session.status_text() == "Status: created"
    assert session.transition(SessionStatus.LISTENING)
    assert session.transition(SessionStatus.ACTIVE)
    assert session.transition(SessionStatus.ENDED)
    assert session.status_text() == "Status: ended"


def test_terminal_states_are_final(tmp_path: Path) -> None:
    for terminal in (SessionStatus.ENDED, SessionStatus.ERROR, SessionStatus.STOPPED):
        assert terminal.terminal
        for target in SessionStatus:
            assert not terminal.can_become(target)

    session = _session(tmp_path)
    assert session.transition(SessionStatus.STOPPED)
    assert not session.transition(SessionStatus.ACTIVE)
    assert not session.transition(SessionStatus.ERROR, error="late failure")
    assert session.status is SessionStatus.STOPPED
    assert session.last_error is None


def test_cannot_go_backwards_or_skip_to_ended(tmp_path: Path) -> None:
    session = _session(tmp_path)

    assert not session.transition(SessionStatus.ENDED)
    session.transition(SessionStatus.ACTIVE)
    assert not session.transition(SessionStatus.LISTENING)
    assert session.status is SessionStatus.ACTIVE


def test_error_status_text_carries_reason(tmp_path: Path) -> None:
    session = _session(tmp_path)

    session.transition(SessionStatus.ERROR, error="transcoder exited with code 1")

    assert session.status_text() == "Status: error (transcoder exited with code 1)"


def test_timings_are_recorded_once() -> None:
    timings = SessionTimings()

    assert timings.mark("ingest_start", 10.0)
    assert timings.mark("ingest_active", 10.25)
    assert not timings.mark("ingest_active", 12.0)
    assert timings.elapsed_ms("ingest_start", "ingest_active") == 250
    assert timings.elapsed_ms("ingest_active", "first_publish_end") is None
    with pytest.raises(AttributeError):
        timings.mark("unknown", 1.0)


def test_pipeline_is_assigned_once(tmp_path: Path) -> None:
    session = _session(tmp_path)
    rendition = Rendition("stream_720p", 1280, 720, "2800k")

    session.assign_pipeline((rendition,))

    with pytest.raises(SessionStateError):
        session.assign_pipeline((rendition,))


def test_rendition_dimensions_must_be_positive_integers() -> None:
    with pytest.raises(ValidationError):
        Rendition("stream_0p", 1280, 0, "800k")
    with pytest.raises(ValidationError):
        Rendition("stream_720p", True, 720, "800k")


def test_snapshot_is_a_copy(tmp_path: Path) -> None:
    session = _session(tmp_path)
    session.mark("ingest_start", 1.0)

    snapshot = session.snapshot()
    session.mark("ingest_exit", 3.0)

    assert snapshot.timings.ingest_exit == 0.0
    payload = snapshot.to_dict()
    assert payload["status"] == "created"
    assert payload["metrics"]["runtime_ms"] is None
    assert payload["transcoder_pid"] is None
