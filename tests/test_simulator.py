from __future__ import annotations

from pathlib import Path

import pytest

from livehls.exceptions import ValidationError
from livehls.models import IngestProtocol
from livehls.simulator import build_simulation_command


def test_srt_simulation_sends_mpegts(tmp_path: Path) -> None:
    source = tmp_path / "clip.mp4"
    source.write_bytes(b"\x00" * 16)

    argv = build_simulation_command(
        source, "srt://127.0.0.1:9000?streamid=#!::r=abc", protocol=IngestProtocol.SRT
    )

    assert argv[:3] == ["ffmpeg", "-hide_banner", "-re"]
    assert argv[argv.index("-i") + 1] == str(source)
    assert argv[argv.index("-g") + 1] == "60"
    assert argv[-3:] == ["-f", "mpegts", "srt://127.0.0.1:9000?streamid=#!::r=abc"]


def test_simulation_source_must_be_a_file(tmp_path: Path) -> None:
    with pytest.raises(ValidationError):
        build_simulation_command(tmp_path, "rtmp://127.0.0.1/live/x", protocol=IngestProtocol.RTMP)
