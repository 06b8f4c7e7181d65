"""Protection System Specific Header (PSSH) box construction."""
from __future__ import annotations

import base64
import binascii
import struct
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Union

from ..exceptions import KeyExchangeError, UnsupportedSchemeError

PSSH_HEADER_SIZE = 32
_BOX_TYPE = b"pssh"


class DrmScheme(str, Enum):
    WIDEVINE = "widevine"
    PLAYREADY = "playready"
    FAIRPLAY = "fairplay"

    @property
    def system_id(self) -> uuid.UUID:
        return _SYSTEM_IDS[self]

    @property
    def key_format(self) -> str:
        return _KEY_FORMATS[self]

    @classmethod
    def parse(cls, value: Union[str, "DrmScheme"]) -> "DrmScheme":
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().lower()
        for member in cls:
            if member.value == text:
                return member
        raise UnsupportedSchemeError(f"Unsupported DRM scheme: {value!r}")


_SYSTEM_IDS = {
    DrmScheme.WIDEVINE: uuid.UUID("edef8ba9-79d6-4ace-a3c8-27dcd51d21ed"),
    DrmScheme.PLAYREADY: uuid.UUID("9a04f079-9840-4286-ab92-e65be0885f95"),
    DrmScheme.FAIRPLAY: uuid.UUID("94ce86fb-07ff-4f43-adb8-93d2fa968ca2"),
}

_KEY_FORMATS = {
    DrmScheme.WIDEVINE: "urn:uuid:edef8ba9-79d6-4ace-a3c8-27dcd51d21ed",
    DrmScheme.PLAYREADY: "com.microsoft.playready",
    DrmScheme.FAIRPLAY: "com.apple.streamingkeydelivery",
}


@dataclass(frozen=True)
class PsshBox:
    system_id: uuid.UUID
    version: int
    flags: int
    data: bytes


def build_pssh_box(payload_b64: str, scheme: Union[str, DrmScheme] = DrmScheme.WIDEVINE) -> str:
    """Wrap a base64 PSSH payload in a version-0 box and return it as upper-case hex."""

    system = DrmScheme.parse(scheme)
    try:
        payload = base64.b64decode(payload_b64 or "", validate=True)
    except (binascii.Error, ValueError) as exc:
        raise KeyExchangeError(f"PSSH payload is not valid base64: {exc}") from exc
    header = struct.pack(
        ">I4sI16sI",
        PSSH_HEADER_SIZE + len(payload),
        _BOX_TYPE,
        0,
        system.system_id.bytes,
        len(payload),
    )
    return (header + payload).hex().upper()


def parse_pssh_box(box_hex: str) -> PsshBox:
    raw = bytes.fromhex(box_hex)
    if len(raw) < PSSH_HEADER_SIZE:
        raise ValueError("PSSH box is shorter than its header")
    size, box_type, version_flags, system_id, data_size = struct.unpack(
        ">I4sI16sI", raw[:PSSH_HEADER_SIZE]
    )
    if box_type != _BOX_TYPE:
        raise ValueError(f"Unexpected box type {box_type!r}")
    if size != len(raw) or data_size != len(raw) - PSSH_HEADER_SIZE:
        raise ValueError("PSSH box length fields do not match its contents")
    return PsshBox(
        system_id=uuid.UUID(bytes=system_id),
        version=version_flags >> 24,
        flags=version_flags & 0xFFFFFF,
        data=raw[PSSH_HEADER_SIZE:],
    )


__all__ = ["DrmScheme", "PSSH_HEADER_SIZE", "PsshBox", "build_pssh_box", "parse_pssh_box"]
