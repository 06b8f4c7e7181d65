"""Push a looped media file at a session's listener to exercise it without a real encoder."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import List

from .exceptions import ValidationError
from .models import IngestProtocol

LOGGER = logging.getLogger(__name__)

SIMULATOR_PREFIX = "simulator:"


def build_simulation_command(
    source: Path,
    push_url: str,
    *,
    protocol: IngestProtocol,
    ffmpeg_binary: str = "ffmpeg",
    gop_size: int = 60,
) -> List[str]:
    """Return an ffmpeg argv that replays ``source`` in real time, forever.

    The file is re-encoded with fixed keyframes so segment boundaries on the
    receiving side are predictable. RTMP listeners receive FLV, SRT
    listeners MPEG-TS.
    """

    if not source.is_file():
        raise ValidationError(f"Simulation source {source} is not a file")
    container = "flv" if protocol is IngestProtocol.RTMP else "mpegts"
    return [
        ffmpeg_binary,
        "-hide_banner",
        "-re",
        "-stream_loop",
        "-1",
        "-i",
        str(source),
        "-c:v",
        "libx264",
        "-preset",
        "ultrafast",
        "-g",
        str(gop_size),
        "-keyint_min",
        str(gop_size),
        "-sc_threshold",
        "0",
        "-c:a",
        "aac",
        "-f",
        container,
        push_url,
    ]


__all__ = ["SIMULATOR_PREFIX", "build_simulation_command"]
