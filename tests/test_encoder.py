from __future__ import annotations

from pathlib import Path

import pytest

from livehls.encoder import CLEAR_MASTER_NAME, EncoderSettings, FFmpegHlsCommand
from livehls.exceptions import ValidationError
from livehls.packager import PackagerJob, packager_input_url
from livehls.pipeline import build_pipeline_spec, parse_rendition_requests

INGEST = "srt://0.0.0.0:9000?mode=listener&streamid=#!::r=abc"


def _ladder():
    return build_pipeline_spec(
        parse_rendition_requests([{"width": 1280, "height": 720}, {"width": 854, "height": 480}])
    )


def _value_after(argv, flag):
    return argv[argv.index(flag) + 1]


def test_passthrough_copies_video_into_output_root(tmp_path: Path) -> None:
    command = FFmpegHlsCommand(
        EncoderSettings(),
        build_pipeline_spec(()),
        ingest_url=INGEST,
        output_dir=tmp_path,
    )

    argv = command.build()

    assert argv[0] == "ffmpeg"
    assert _value_after(argv, "-i") == INGEST
    assert _value_after(argv, "-c:v") == "copy"
    assert _value_after(argv, "-hls_list_size") == "0"
    assert _value_after(argv, "-hls_flags") == "independent_segments+append_list"
    assert _value_after(argv, "-hls_segment_filename") == str(tmp_path / "segment_%03d.ts")
    assert argv[-1] == str(tmp_path / "master.m3u8")
    assert "-filter_complex" not in argv


def test_ladder_writes_per_rendition_directories(tmp_path: Path) -> None:
    command = FFmpegHlsCommand(EncoderSettings(), _ladder(), ingest_url=INGEST, output_dir=tmp_path)

    argv = command.build()

    assert _value_after(argv, "-var_stream_map") == (
        "v:0,a:0,name:stream_720p v:1,a:1,name:stream_480p"
    )
    assert _value_after(argv, "-b:v:0") == "2800k"
    assert _value_after(argv, "-b:v:1") == "1400k"
    assert argv.count("-map") == 4
    assert argv[-1] == str(tmp_path / "%v" / "stream.m3u8")
    assert "-master_pl_name" not in argv
    assert _value_after(argv, "-force_key_frames") == "expr:gte(t,n_forced*4)"


def test_input_args_precede_input(tmp_path: Path) -> None:
    settings = EncoderSettings(input_args=("-listen", "1"))
    argv = FFmpegHlsCommand(settings, _ladder(), ingest_url="rtmp://x", output_dir=tmp_path).build()

    assert argv.index("-listen") < argv.index("-i")


def test_encrypted_ladder_feeds_packagers(tmp_path: Path) -> None:
    inputs = [packager_input_url(40000, 0), packager_input_url(40000, 1)]
    command = FFmpegHlsCommand(
        EncoderSettings(), _ladder(), ingest_url=INGEST, output_dir=tmp_path, packager_inputs=inputs
    )

    argv = command.build()

    assert command.encrypted
    assert command.clear_master_path == tmp_path / ".clear" / CLEAR_MASTER_NAME
    assert _value_after(argv, "-loglevel") == "verbose"
    assert _value_after(argv, "-master_pl_name") == CLEAR_MASTER_NAME
    assert str(tmp_path / ".clear" / "%v.m3u8") in argv
    assert "udp://127.0.0.1:40000?pkt_size=1316" in argv
    assert "udp://127.0.0.1:40001?pkt_size=1316" in argv
    assert "[v1t1]" in argv
    assert "split=2" in _value_after(argv, "-filter_complex")


def test_packager_inputs_must_match_renditions(tmp_path: Path) -> None:
    with pytest.raises(ValidationError):
        FFmpegHlsCommand(
            EncoderSettings(),
            _ladder(),
            ingest_url=INGEST,
            output_dir=tmp_path,
            packager_inputs=["udp://127.0.0.1:40000"],
        )
    with pytest.raises(ValidationError):
        FFmpegHlsCommand(
            EncoderSettings(),
            build_pipeline_spec(()),
            ingest_url=INGEST,
            output_dir=tmp_path,
            packager_inputs=["udp://127.0.0.1:40000"],
        )


def test_packager_command_carries_key_material(tmp_path: Path, key_material) -> None:
    rendition = _ladder().renditions[0]
    job = PackagerJob(
        binary="packager",
        rendition=rendition,
        input_url=packager_input_url(40000, 0),
        output_dir=tmp_path,
        key_material=key_material,
    )

    argv = job.command()

    assert argv[1].startswith("in=udp://127.0.0.1:40000,stream=video,")
    assert f"segment_template={tmp_path / 'stream_720p' / 'enc_video'}_$Number$.ts" in argv[1]
    assert "playlist_name=enc_stream.m3u8" in argv[1]
    assert _value_after(argv, "--keys") == (
        f"label=:key_id={key_material.key_id}:key={key_material.content_key}"
    )
    assert _value_after(argv, "--iv") == key_material.iv
    assert _value_after(argv, "--pssh") == key_material.pssh_box
    assert _value_after(argv, "--protection_scheme") == "cbcs"
    assert _value_after(argv, "--segment_duration") == "4"
    assert job.playlist_path == tmp_path / "stream_720p" / "enc_stream.m3u8"


def test_restream_output_copies_ingest_before_hls(tmp_path: Path) -> None:
    target = "rtmp://a.rtmp.youtube.com/live2/abcd"
    argv = FFmpegHlsCommand(
        EncoderSettings(), _ladder(), ingest_url=INGEST, output_dir=tmp_path, restream_url=target
    ).build()

    position = argv.index(target)
    assert argv[position - 10 : position] == [
        "-map",
        "0:v:0?",
        "-map",
        "0:a:0?",
        "-c:v",
        "copy",
        "-c:a",
        "copy",
        "-f",
        "flv",
    ]
    assert position < argv.index("-filter_complex")
    assert argv[-1] == str(tmp_path / "%v" / "stream.m3u8")
