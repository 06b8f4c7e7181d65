"""Shaka Packager invocations for encrypted renditions."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List

from .manifest import AUDIO_PLAYLIST_NAME, ENCRYPTED_PLAYLIST_NAME, audio_group_id
from .models import DRMKeyMaterial, Rendition

LOGGER = logging.getLogger(__name__)

PACKAGER_MASTER_NAME = "enc_master.m3u8"


def packager_input_url(base_port: int, index: int) -> str:
    return f"udp://127.0.0.1:{base_port + index}"


@dataclass(slots=True)
class PackagerJob:
    """Encrypt one rendition fed over a local UDP socket into ``<output>/<label>/``."""

    binary: str
    rendition: Rendition
    input_url: str
    output_dir: Path
    key_material: DRMKeyMaterial
    segment_duration: float = 4.0
    include_audio: bool = True

    @property
    def rendition_dir(self) -> Path:
        return self.output_dir / self.rendition.label

    @property
    def playlist_path(self) -> Path:
        return self.rendition_dir / ENCRYPTED_PLAYLIST_NAME

    def _stream(self, stream: str, prefix: str, playlist: str, *extra: str) -> str:
        parts = [
            f"in={self.input_url}",
            f"stream={stream}",
            f"segment_template={self.rendition_dir / prefix}_$Number$.ts",
            f"playlist_name={playlist}",
        ]
        parts.extend(extra)
        return ",".join(parts)

    def command(self) -> List[str]:
        key = self.key_material
        cmd = [
            self.binary,
            self._stream("video", "enc_video", ENCRYPTED_PLAYLIST_NAME),
        ]
        if self.include_audio:
            cmd.append(
                self._stream(
                    "audio",
                    "enc_audio",
                    AUDIO_PLAYLIST_NAME,
                    f"hls_group_id={audio_group_id(self.rendition.label)}",
                    "hls_name=audio",
                )
            )
        cmd.extend(
            [
                "--enable_raw_key_encryption",
                "--keys",
                f"label=:key_id={key.key_id}:key={key.content_key}",
                "--iv",
                key.iv,
                "--pssh",
                key.pssh_box,
                "--protection_scheme",
                key.protection_scheme,
                "--hls_playlist_type",
                "LIVE",
                "--segment_duration",
                f"{self.segment_duration:g}",
                "--hls_master_playlist_output",
                str(self.rendition_dir / PACKAGER_MASTER_NAME),
            ]
        )
        return cmd


__all__ = [
    "PACKAGER_MASTER_NAME",
    "PackagerJob",
    "packager_input_url",
]
