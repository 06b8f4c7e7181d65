"""FFmpeg command construction for live HLS sessions."""
from __future__ import annotations

import logging
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence

from .exceptions import ValidationError
from .manifest import CLEAR_PLAYLIST_NAME, MASTER_PLAYLIST_NAME
from .pipeline import PipelineSpec, video_pad

LOGGER = logging.getLogger(__name__)

CLEAR_DIR_NAME = ".clear"
CLEAR_MASTER_NAME = "master_unencrypted.m3u8"
SEGMENT_PATTERN = "segment_%03d.ts"


@dataclass(slots=True)
class EncoderSettings:
    """Knobs shared by every transcoder invocation."""

    ffmpeg_binary: str = "ffmpeg"
    loglevel: str = "info"
    segment_duration: int = 4
    video_codec: str = "libx264"
    preset: str = "veryfast"
    audio_codec: str = "aac"
    gop_size: int = 48
    analyzeduration: str = "2M"
    probesize: str = "2M"
    input_args: Sequence[str] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if self.segment_duration <= 0:
            raise ValueError("segment_duration must be positive")
        self.input_args = tuple(str(arg) for arg in self.input_args)


class FFmpegHlsCommand:
    """Build the ffmpeg argv for one session.

    Passthrough and clear ladders write HLS straight into ``output_dir``.
    When ``packager_inputs`` is given the clear ladder goes to the hidden
    ``.clear`` directory and each rendition is also sent as MPEG-TS to its
    packager socket. A ``restream_url`` adds a stream-copied FLV output that
    relays the ingest unchanged.
    """

    def __init__(
        self,
        settings: EncoderSettings,
        spec: PipelineSpec,
        *,
        ingest_url: str,
        output_dir: Path,
        packager_inputs: Sequence[str] = (),
        restream_url: Optional[str] = None,
    ) -> None:
        if packager_inputs and spec.passthrough:
            raise ValidationError("Encrypted sessions require at least one rendition")
        if packager_inputs and len(packager_inputs) != len(spec.renditions):
            raise ValidationError("One packager input is required per rendition")
        self.settings = settings
        self.spec = spec
        self.ingest_url = ingest_url
        self.output_dir = output_dir
        self.packager_inputs = tuple(packager_inputs)
        self.restream_url = restream_url

    @property
    def encrypted(self) -> bool:
        return bool(self.packager_inputs)

    @property
    def clear_dir(self) -> Path:
        return self.output_dir / CLEAR_DIR_NAME

    @property
    def clear_master_path(self) -> Path:
        return self.clear_dir / CLEAR_MASTER_NAME

    def build(self) -> List[str]:
        cmd = self._input_args()
        if self.restream_url:
            cmd.extend(self._restream_args())
        if self.spec.passthrough:
            cmd.extend(self._passthrough_args())
        else:
            taps = 2 if self.encrypted else 1
            cmd.extend(["-filter_complex", self.spec.filter_graph(taps=taps)])
            cmd.extend(self._ladder_args())
            if self.encrypted:
                cmd.extend(self._packager_feed_args())
        return cmd

    def describe(self) -> str:
        return shlex.join(self.build())

    # ------------------------------------------------------------------
    # Argument groups
    # ------------------------------------------------------------------
    def _input_args(self) -> List[str]:
        settings = self.settings
        loglevel = "verbose" if self.encrypted else settings.loglevel
        cmd = [
            settings.ffmpeg_binary,
            "-hide_banner",
            "-loglevel",
            loglevel,
            "-fflags",
            "+genpts",
            "-analyzeduration",
            settings.analyzeduration,
            "-probesize",
            settings.probesize,
        ]
        cmd.extend(settings.input_args)
        cmd.extend(["-i", self.ingest_url])
        return cmd

    def _hls_args(self, *, list_size: int, flags: str) -> List[str]:
        return [
            "-f",
            "hls",
            "-hls_time",
            str(self.settings.segment_duration),
            "-hls_list_size",
            str(list_size),
            "-hls_flags",
            flags,
        ]

    def _restream_args(self) -> List[str]:
        return [
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
            self.restream_url,
        ]

    def _passthrough_args(self) -> List[str]:
        cmd = [
            "-map",
            "0:v:0?",
            "-map",
            "0:a:0?",
            "-c:v",
            "copy",
            "-c:a",
            self.settings.audio_codec,
            "-b:a",
            self.spec.audio_bitrate,
        ]
        cmd.extend(self._hls_args(list_size=0, flags="independent_segments+append_list"))
        cmd.extend(
            [
                "-hls_segment_filename",
                str(self.output_dir / SEGMENT_PATTERN),
                str(self.output_dir / MASTER_PLAYLIST_NAME),
            ]
        )
        return cmd

    def _encode_args(self, index: int, output_index: int) -> List[str]:
        rendition = self.spec.renditions[index]
        return [
            f"-c:v:{output_index}",
            self.settings.video_codec,
            f"-b:v:{output_index}",
            rendition.video_bitrate,
            f"-c:a:{output_index}",
            self.settings.audio_codec,
            f"-b:a:{output_index}",
            rendition.audio_bitrate,
        ]

    def _keyframe_args(self) -> List[str]:
        settings = self.settings
        return [
            "-preset",
            settings.preset,
            "-g",
            str(settings.gop_size),
            "-keyint_min",
            str(settings.gop_size),
            "-sc_threshold",
            "0",
            "-force_key_frames",
            f"expr:gte(t,n_forced*{settings.segment_duration})",
        ]

    def _ladder_args(self) -> List[str]:
        cmd: List[str] = []
        for index in range(len(self.spec.renditions)):
            cmd.extend(["-map", f"[{video_pad(index)}]", "-map", "0:a:0?"])
        for index in range(len(self.spec.renditions)):
            cmd.extend(self._encode_args(index, index))
        cmd.extend(self._keyframe_args())

        if self.encrypted:
            target = self.clear_dir
            cmd.extend(self._hls_args(list_size=10, flags="independent_segments+delete_segments"))
            cmd.extend(
                [
                    "-master_pl_name",
                    CLEAR_MASTER_NAME,
                    "-var_stream_map",
                    self.spec.ffmpeg_var_stream_map,
                    "-hls_segment_filename",
                    str(target / "%v_%03d.ts"),
                    str(target / "%v.m3u8"),
                ]
            )
            return cmd

        cmd.extend(self._hls_args(list_size=0, flags="independent_segments+append_list"))
        cmd.extend(
            [
                "-var_stream_map",
                self.spec.ffmpeg_var_stream_map,
                "-hls_segment_filename",
                str(self.output_dir / "%v" / SEGMENT_PATTERN),
                str(self.output_dir / "%v" / CLEAR_PLAYLIST_NAME),
            ]
        )
        return cmd

    def _packager_feed_args(self) -> List[str]:
        cmd: List[str] = []
        for index, target in enumerate(self.packager_inputs):
            cmd.extend(["-map", f"[{video_pad(index, 1)}]", "-map", "0:a:0?"])
            cmd.extend(self._encode_args(index, 0))
            cmd.extend(self._keyframe_args())
            cmd.extend(["-f", "mpegts", f"{target}?pkt_size=1316"])
        return cmd


__all__ = [
    "CLEAR_DIR_NAME",
    "CLEAR_MASTER_NAME",
    "EncoderSettings",
    "FFmpegHlsCommand",
    "SEGMENT_PATTERN",
]
