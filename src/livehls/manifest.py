"""Master playlist synthesis for ladder sessions."""
from __future__ import annotations

import base64
import logging
import os
from pathlib import Path
from typing import Optional, Sequence

from .drm.pssh import DrmScheme
from .models import DRMKeyMaterial, Rendition
from .pipeline import parse_bitrate

LOGGER = logging.getLogger(__name__)

MASTER_PLAYLIST_NAME = "master.m3u8"
CLEAR_PLAYLIST_NAME = "stream.m3u8"
ENCRYPTED_PLAYLIST_NAME = "enc_stream.m3u8"
AUDIO_PLAYLIST_NAME = "enc_audio.m3u8"

_KEY_METHODS = {"cbcs": "SAMPLE-AES", "cenc": "SAMPLE-AES-CTR"}


def audio_group_id(label: str) -> str:
    return f"audio_{label}"


class ManifestComposer:
    """Compose the top-level HLS master playlist."""

    def __init__(self, *, version: int = 3) -> None:
        self.version = version

    def playlist_name(self, drm: Optional[DRMKeyMaterial]) -> str:
        return ENCRYPTED_PLAYLIST_NAME if drm is not None else CLEAR_PLAYLIST_NAME

    def compose(self, renditions: Sequence[Rendition], drm: Optional[DRMKeyMaterial] = None) -> str:
        lines = [
            "#EXTM3U",
            f"#EXT-X-VERSION:{self.version}",
            "#EXT-X-INDEPENDENT-SEGMENTS",
        ]
        if drm is not None:
            lines.append(self._session_key(drm))

        playlist = self.playlist_name(drm)
        for rendition in renditions:
            bandwidth = parse_bitrate(rendition.video_bitrate) + parse_bitrate(rendition.audio_bitrate)
            stream_inf = f"#EXT-X-STREAM-INF:BANDWIDTH={bandwidth},RESOLUTION={rendition.resolution}"
            if drm is not None:
                # Packagers write audio to its own playlist beside the video one.
                group = audio_group_id(rendition.label)
                lines.append(self._audio_media(group, rendition.label))
                stream_inf = f'{stream_inf},AUDIO="{group}"'
            lines.append(stream_inf)
            lines.append(f"{rendition.label}/{playlist}")
        return "\n".join(lines) + "\n"

    def write(
        self,
        output_dir: Path,
        renditions: Sequence[Rendition],
        drm: Optional[DRMKeyMaterial] = None,
        *,
        name: str = MASTER_PLAYLIST_NAME,
    ) -> Path:
        """Write the master playlist via a temp file so watchers never see a partial file."""

        output_dir.mkdir(parents=True, exist_ok=True)
        target = output_dir / name
        temp = output_dir / f"{name}.tmp"
        temp.write_text(self.compose(renditions, drm), encoding="utf-8")
        os.replace(temp, target)
        LOGGER.info("Wrote master playlist %s (%d variants)", target, len(renditions))
        return target

    def _audio_media(self, group: str, label: str) -> str:
        return (
            f'#EXT-X-MEDIA:TYPE=AUDIO,GROUP-ID="{group}",NAME="audio",'
            f'DEFAULT=YES,AUTOSELECT=YES,URI="{label}/{AUDIO_PLAYLIST_NAME}"'
        )

    def _session_key(self, drm: DRMKeyMaterial) -> str:
        scheme = DrmScheme.parse(drm.scheme)
        method = _KEY_METHODS.get(drm.protection_scheme.lower(), "SAMPLE-AES")
        pssh_b64 = base64.b64encode(bytes.fromhex(drm.pssh_box)).decode("ascii")
        return (
            f"#EXT-X-SESSION-KEY:METHOD={method},"
            f'URI="data:text/plain;base64,{pssh_b64}",'
            f"KEYID=0x{drm.key_id.upper()},"
            f'KEYFORMAT="{scheme.key_format}",'
            'KEYFORMATVERSIONS="1"'
        )


__all__ = [
    "AUDIO_PLAYLIST_NAME",
    "CLEAR_PLAYLIST_NAME",
    "ENCRYPTED_PLAYLIST_NAME",
    "MASTER_PLAYLIST_NAME",
    "ManifestComposer",
    "audio_group_id",
]
