"""Turn a requested rendition ladder into a deterministic transcode pipeline description."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from numbers import Number
from typing import Any, Iterable, Mapping, Optional, Sequence, Tuple

from .exceptions import ValidationError
from .models import Rendition, StartOptions

LOGGER = logging.getLogger(__name__)

DEFAULT_AUDIO_BITRATE = "128k"

# Named presets accepted alongside explicit width/height requests.
RENDITION_PRESETS: Mapping[str, Tuple[int, int, str, str]] = {
    "2160p": (3840, 2160, "8000k", "256k"),
    "1440p": (2560, 1440, "6000k", "192k"),
    "1080p": (1920, 1080, "5000k", "192k"),
    "720p": (1280, 720, "2800k", "128k"),
    "480p": (854, 480, "1400k", "96k"),
    "360p": (640, 360, "800k", "96k"),
    "240p": (426, 240, "400k", "64k"),
}

YOUTUBE_INGEST_BASE = "rtmp://a.rtmp.youtube.com/live2"
_RESTREAM_SCHEMES = ("rtmp://", "rtmps://")

# Ladder used by DRM sessions when the caller does not request one.
DEFAULT_DRM_LADDER: Tuple[Mapping[str, int], ...] = (
    {"width": 1280, "height": 720},
    {"width": 854, "height": 480},
    {"width": 640, "height": 360},
)

_BITRATE_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([kKmM]?)\s*$")


def default_bitrate(height: int) -> str:
    """Return the default video bitrate for a rendition height."""

    if height <= 360:
        return "800k"
    if height <= 480:
        return "1400k"
    if height <= 720:
        return "2800k"
    if height <= 1080:
        return "5000k"
    return "8000k"


def parse_bitrate(value: str) -> int:
    """Convert an ffmpeg-style rate (``2800k``, ``5M``, ``96000``) to bits per second."""

    match = _BITRATE_PATTERN.match(str(value))
    if not match:
        raise ValidationError(f"Invalid bitrate: {value!r}")
    number = float(match.group(1))
    unit = match.group(2).lower()
    if unit == "k":
        number *= 1_000
    elif unit == "m":
        number *= 1_000_000
    return int(number)


def rendition_label(height: int) -> str:
    return f"stream_{height}p"


class PipelineMode(str, Enum):
    PASSTHROUGH = "passthrough"
    LADDER = "ladder"


@dataclass(frozen=True)
class RenditionRequest:
    width: int
    height: int
    bitrate: Optional[str] = None
    audio_bitrate: Optional[str] = None


@dataclass(frozen=True)
class ScaleFilter:
    """Scale to fit inside ``width``x``height`` without upscaling the aspect box."""

    width: int
    height: int

    def describe(self) -> str:
        return f"scale=w={self.width}:h={self.height}:force_original_aspect_ratio=decrease"


@dataclass(frozen=True)
class VariantMapEntry:
    index: int
    name: str

    def describe(self) -> str:
        return f"video:{self.index},audio:{self.index},name:{self.name}"

    def ffmpeg_token(self) -> str:
        return f"v:{self.index},a:{self.index},name:{self.name}"


@dataclass(frozen=True)
class PipelineSpec:
    mode: PipelineMode
    renditions: Tuple[Rendition, ...] = ()
    scale_filters: Tuple[ScaleFilter, ...] = ()
    video_bitrates: Tuple[str, ...] = ()
    variant_entries: Tuple[VariantMapEntry, ...] = ()
    audio_bitrate: str = DEFAULT_AUDIO_BITRATE

    @property
    def passthrough(self) -> bool:
        return self.mode is PipelineMode.PASSTHROUGH

    @property
    def variant_map(self) -> str:
        return " ".join(entry.describe() for entry in self.variant_entries)

    @property
    def ffmpeg_var_stream_map(self) -> str:
        return " ".join(entry.ffmpeg_token() for entry in self.variant_entries)

    def filter_graph(self, *, taps: int = 1) -> Optional[str]:
        """Render the scaling graph; ``taps`` > 1 splits each scaled output."""

        if self.passthrough:
            return None
        taps = max(1, taps)
        chains = []
        for index, scale in enumerate(self.scale_filters):
            chain = f"[0:v]{scale.describe()}"
            if taps == 1:
                chains.append(f"{chain}[{video_pad(index)}]")
                continue
            outputs = "".join(f"[{video_pad(index, tap)}]" for tap in range(taps))
            chains.append(f"{chain},split={taps}{outputs}")
        return ";".join(chains)


def video_pad(index: int, tap: int = 0) -> str:
    return f"v{index}" if tap == 0 else f"v{index}t{tap}"


def _require_dimension(item: Mapping[str, Any], name: str, position: int) -> int:
    value = item.get(name)
    if isinstance(value, bool) or not isinstance(value, Number):
        raise ValidationError(
            f"Resolution #{position}: {name} must be a number, got {value!r}"
        )
    if int(value) != value or value <= 0:
        raise ValidationError(
            f"Resolution #{position}: {name} must be a positive whole number, got {value!r}"
        )
    return int(value)


def _optional_rate(item: Mapping[str, Any], keys: Iterable[str], position: int) -> Optional[str]:
    for key in keys:
        if key not in item or item[key] is None:
            continue
        value = item[key]
        if not isinstance(value, str):
            raise ValidationError(
                f"Resolution #{position}: {key} must be a string, got {value!r}"
            )
        parse_bitrate(value)
        return value.strip()
    return None


def parse_rendition_requests(payload: Any) -> Tuple[RenditionRequest, ...]:
    """Validate raw resolution requests.

    Accepts ``None`` or a sequence of mappings with numeric ``width``/``height``
    and optional string ``bitrate``, or a named ``preset``.
    """

    if payload is None:
        return ()
    if isinstance(payload, (str, bytes)) or not isinstance(payload, Sequence):
        raise ValidationError("resolutions must be a list of objects")

    requests = []
    for position, item in enumerate(payload):
        if not isinstance(item, Mapping):
            raise ValidationError(f"Resolution #{position} must be an object")
        preset_name = item.get("preset")
        if preset_name is not None:
            preset = RENDITION_PRESETS.get(str(preset_name).strip().lower())
            if preset is None:
                raise ValidationError(f"Resolution #{position}: unknown preset {preset_name!r}")
            width, height, video_rate, audio_rate = preset
            requests.append(
                RenditionRequest(
                    width=width,
                    height=height,
                    bitrate=_optional_rate(item, ("bitrate",), position) or video_rate,
                    audio_bitrate=_optional_rate(item, ("audio_bitrate", "audioBitrate"), position)
                    or audio_rate,
                )
            )
            continue
        requests.append(
            RenditionRequest(
                width=_require_dimension(item, "width", position),
                height=_require_dimension(item, "height", position),
                bitrate=_optional_rate(item, ("bitrate",), position),
                audio_bitrate=_optional_rate(item, ("audio_bitrate", "audioBitrate"), position),
            )
        )
    return tuple(requests)


def parse_restream_target(payload: Mapping[str, Any]) -> Optional[str]:
    """Return the RTMP URL the ingest is copied to, if any.

    Accepts a full ``restream_url`` or a bare YouTube stream key.
    """

    url = payload.get("restream_url", payload.get("restreamUrl"))
    key = payload.get("youtube_key", payload.get("youtubeKey", payload.get("youtubeStreamKey")))
    if url not in (None, "") and key not in (None, ""):
        raise ValidationError("Pass either restream_url or youtube_key, not both")
    if key not in (None, ""):
        if not isinstance(key, str) or not re.fullmatch(r"[A-Za-z0-9_-]+", key.strip()):
            raise ValidationError("youtube_key must contain only letters, digits, '-' or '_'")
        return f"{YOUTUBE_INGEST_BASE}/{key.strip()}"
    if url in (None, ""):
        return None
    if not isinstance(url, str) or not url.strip().lower().startswith(_RESTREAM_SCHEMES):
        raise ValidationError("restream_url must be an rtmp:// or rtmps:// URL")
    return url.strip()


def parse_start_options(payload: Optional[Mapping[str, Any]]) -> StartOptions:
    """Validate the body of a start request."""

    if payload is None:
        payload = {}
    if not isinstance(payload, Mapping):
        raise ValidationError("start options must be an object")
    resolutions = payload.get("resolutions")
    parse_rendition_requests(resolutions)
    drm = payload.get("drm", payload.get("isDRM", False))
    if not isinstance(drm, bool):
        raise ValidationError("drm must be a boolean")
    scheme = str(payload.get("drm_scheme") or "widevine").strip().lower()
    protection = str(payload.get("protection_scheme") or "cbcs").strip().lower()
    if protection not in {"cbcs", "cenc"}:
        raise ValidationError(f"Unsupported protection scheme: {protection!r}")
    return StartOptions(
        resolutions=tuple(dict(item) for item in resolutions or ()),
        drm=drm,
        drm_scheme=scheme,
        protection_scheme=protection,
        restream_url=parse_restream_target(payload),
    )


def build_pipeline_spec(
    requests: Sequence[RenditionRequest],
    *,
    audio_bitrate: str = DEFAULT_AUDIO_BITRATE,
) -> PipelineSpec:
    """Build a passthrough spec for an empty ladder, otherwise a ladder spec in input order."""

    if not requests:
        LOGGER.debug("No renditions requested; using passthrough pipeline")
        return PipelineSpec(mode=PipelineMode.PASSTHROUGH, audio_bitrate=audio_bitrate)

    renditions = []
    seen: set[str] = set()
    for request in requests:
        label = rendition_label(request.height)
        if label in seen:
            raise ValidationError(f"Duplicate rendition {label}; heights must be unique")
        seen.add(label)
        renditions.append(
            Rendition(
                label=label,
                width=request.width,
                height=request.height,
                video_bitrate=request.bitrate or default_bitrate(request.height),
                audio_bitrate=request.audio_bitrate or audio_bitrate,
            )
        )

    return PipelineSpec(
        mode=PipelineMode.LADDER,
        renditions=tuple(renditions),
        scale_filters=tuple(ScaleFilter(item.width, item.height) for item in renditions),
        video_bitrates=tuple(item.video_bitrate for item in renditions),
        variant_entries=tuple(
            VariantMapEntry(index=index, name=item.label) for index, item in enumerate(renditions)
        ),
        audio_bitrate=audio_bitrate,
    )


__all__ = [
    "DEFAULT_AUDIO_BITRATE",
    "DEFAULT_DRM_LADDER",
    "PipelineMode",
    "PipelineSpec",
    "RENDITION_PRESETS",
    "RenditionRequest",
    "ScaleFilter",
    "VariantMapEntry",
    "YOUTUBE_INGEST_BASE",
    "build_pipeline_spec",
    "default_bitrate",
    "parse_bitrate",
    "parse_rendition_requests",
    "parse_restream_target",
    "parse_start_options",
    "rendition_label",
    "video_pad",
]
