"""Classification and naming of files produced by a session."""
from __future__ import annotations

import mimetypes
import re
from enum import Enum
from pathlib import PurePosixPath, PurePath
from typing import Iterable, Optional

from ..utils import join_key

MANIFEST_SUFFIXES = frozenset({".m3u8", ".mpd"})
SEGMENT_SUFFIXES = frozenset({".ts", ".m4s", ".aac", ".vtt"})
FRAGMENT_SUFFIXES = frozenset({".mp4", ".m4a", ".m4v"})
DEFAULT_MASTER_NAMES = frozenset({"master.m3u8", "master.mpd"})
PACKAGER_TEMP_PREFIX = "packager-tempfile-"

IMMUTABLE_CACHE_CONTROL = "public, max-age=31536000"
MANIFEST_CACHE_CONTROL = "no-cache"

_CONTENT_TYPES = {
    ".m3u8": "application/vnd.apple.mpegurl",
    ".mpd": "application/dash+xml",
    ".ts": "video/MP2T",
    ".m4s": "video/iso.segment",
    ".mp4": "video/mp4",
    ".m4a": "audio/mp4",
    ".m4v": "video/mp4",
    ".aac": "audio/aac",
    ".vtt": "text/vtt",
}

_BASE_URL_PATTERN = re.compile(r"<BaseURL>([^<]+)</BaseURL>")
_REPRESENTATION_PLACEHOLDER = "$RepresentationID$"


class ArtifactKind(str, Enum):
    SEGMENT = "segment"
    FRAGMENT = "fragment"
    SUB_MANIFEST = "sub-manifest"
    MASTER_MANIFEST = "master-manifest"

    @property
    def manifest(self) -> bool:
        return self in (ArtifactKind.SUB_MANIFEST, ArtifactKind.MASTER_MANIFEST)


def is_ignored(relative: PurePath) -> bool:
    """Hidden directories, temp files and packager scratch files are never published."""

    parts = relative.parts
    if not parts:
        return True
    if any(part.startswith(".") for part in parts):
        return True
    if any(part.startswith(PACKAGER_TEMP_PREFIX) for part in parts):
        return True
    name = parts[-1].lower()
    return name.endswith(".tmp") or name.endswith("~")


def classify(
    relative: PurePath,
    *,
    master_names: Iterable[str] = DEFAULT_MASTER_NAMES,
) -> Optional[ArtifactKind]:
    if is_ignored(relative):
        return None
    suffix = relative.suffix.lower()
    if suffix in MANIFEST_SUFFIXES:
        if len(relative.parts) == 1 and relative.name in set(master_names):
            return ArtifactKind.MASTER_MANIFEST
        return ArtifactKind.SUB_MANIFEST
    if suffix in SEGMENT_SUFFIXES:
        return ArtifactKind.SEGMENT
    if suffix in FRAGMENT_SUFFIXES:
        return ArtifactKind.FRAGMENT
    return None


def destination_key(remote_prefix: str, relative: PurePath) -> str:
    return join_key(remote_prefix, PurePosixPath(*relative.parts).as_posix())


def content_type_for(relative: PurePath) -> str:
    suffix = relative.suffix.lower()
    known = _CONTENT_TYPES.get(suffix)
    if known:
        return known
    guessed, _ = mimetypes.guess_type(relative.name)
    return guessed or "application/octet-stream"


def cache_control_for(kind: ArtifactKind) -> str:
    return MANIFEST_CACHE_CONTROL if kind.manifest else IMMUTABLE_CACHE_CONTROL


def rewrite_base_urls(text: str) -> str:
    """Prefix templated ``<BaseURL>`` values with the folder left once the placeholder is removed.

    ``<BaseURL>video_$RepresentationID$</BaseURL>`` becomes
    ``<BaseURL>video_/video_$RepresentationID$</BaseURL>``.
    """

    def _replace(match: re.Match) -> str:
        base = match.group(1)
        if _REPRESENTATION_PLACEHOLDER not in base:
            return match.group(0)
        folder = base.replace(_REPRESENTATION_PLACEHOLDER, "", 1)
        return f"<BaseURL>{folder}/{base}</BaseURL>"

    return _BASE_URL_PATTERN.sub(_replace, text)


__all__ = [
    "ArtifactKind",
    "DEFAULT_MASTER_NAMES",
    "IMMUTABLE_CACHE_CONTROL",
    "MANIFEST_CACHE_CONTROL",
    "cache_control_for",
    "classify",
    "content_type_for",
    "destination_key",
    "is_ignored",
    "rewrite_base_urls",
]
