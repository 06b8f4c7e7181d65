from __future__ import annotations

import signal

from fakes import FakeLauncher, FakeProcess
from livehls.engine.stop_strategy import StopStrategy
from livehls.engine.supervisor import INPUT_OPENED, TRANSCODER_MARKERS, ProcessSupervisor
from livehls.events import MarkerMatched, ProcessActivity, ProcessExited, ProcessFailed, ProcessLaunched


def test_supervisor_reports_markers_once_then_exit() -> None:
    launcher = FakeLauncher()
    launcher.script(
        "transcoder",
        lambda: FakeProcess(
            [
                "ffmpeg version 6.1",
                "Input #0, mpegts, from 'srt://0.0.0.0:9000':",
                "Input #0 again",
                "frame=  100 fps= 30",
            ],
            exit_code=0,
        ),
    )
    events = []
    supervisor = ProcessSupervisor(
        "transcoder", launcher=launcher, emit=events.append, markers=TRANSCODER_MARKERS
    )

    handle = supervisor.launch(["ffmpeg", "-i", "srt://"])
    assert supervisor.join(2.0)

    assert handle is not None
    assert isinstance(events[0], ProcessLaunched)
    assert events[0].pid == handle.pid
    markers = [event for event in events if isinstance(event, MarkerMatched)]
    assert [marker.marker for marker in markers] == [INPUT_OPENED]
    assert markers[0].line.startswith("Input #0, mpegts")
    assert events[-1] == ProcessExited("transcoder", 0)


def test_spawn_failure_is_reported_as_event() -> None:
    launcher = FakeLauncher()
    launcher.fail("transcoder")
    events = []
    supervisor = ProcessSupervisor("transcoder", launcher=launcher, emit=events.append)

    assert supervisor.launch(["ffmpeg"]) is None
    assert len(events) == 1
    assert isinstance(events[0], ProcessFailed)
    assert "No such file" in events[0].error
    assert not supervisor.running()


def test_interrupt_sends_sigint_only_while_running() -> None:
    launcher = FakeLauncher()
    supervisor = ProcessSupervisor("transcoder", launcher=launcher, emit=lambda event: None)
    supervisor.launch(["ffmpeg"])
    process = launcher.processes("transcoder")[0]

    assert supervisor.interrupt()
    assert process.signals == [signal.SIGINT]
    assert supervisor.join(2.0)
    assert not supervisor.interrupt()


def test_stop_strategy_escalates_to_sigterm() -> None:
    process = FakeProcess(ignore=[signal.SIGINT])
    result = StopStrategy(graceful_timeout=0.05, terminate_timeout=1.0).shutdown(process)

    assert process.signals == [signal.SIGINT, signal.SIGTERM]
    assert result.escalated_to == "SIGTERM"
    assert result.returncode == -int(signal.SIGTERM)


def test_stop_strategy_escalates_to_sigkill() -> None:
    process = FakeProcess(ignore=[signal.SIGINT, signal.SIGTERM])
    result = StopStrategy(graceful_timeout=0.05, terminate_timeout=0.05, kill_timeout=1.0).shutdown(process)

    assert process.signals == [signal.SIGINT, signal.SIGTERM, signal.SIGKILL]
    assert result.escalated_to == "SIGKILL"


def test_stop_strategy_skips_finished_processes() -> None:
    process = FakeProcess(exit_code=0)

    result = StopStrategy().shutdown(process)

    assert process.signals == []
    assert result.returncode == 0
    assert result.escalated_to is None


def _activity_count(interval) -> int:
    launcher = FakeLauncher()
    launcher.script("transcoder", lambda: FakeProcess(["frame=1", "frame=2", "frame=3"], exit_code=0))
    events = []
    supervisor = ProcessSupervisor(
        "transcoder", launcher=launcher, emit=events.append, activity_interval=interval
    )
    supervisor.launch(["ffmpeg"])
    assert supervisor.join(2.0)
    return sum(1 for event in events if event == ProcessActivity("transcoder"))


def test_output_activity_is_throttled() -> None:
    assert _activity_count(None) == 0
    assert _activity_count(0.0) == 3
    assert _activity_count(3600.0) == 1
