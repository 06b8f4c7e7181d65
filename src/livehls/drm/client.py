"""Signed key-exchange client for the DRM key server."""
from __future__ import annotations

import base64
import binascii
import hashlib
import json
import logging
from typing import Any, Dict, Mapping, Optional, Sequence, Union

import requests
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from ..config import KeyServerSettings
from ..exceptions import KeyExchangeError, SigningError
from ..models import DRMKeyMaterial
from .pssh import DrmScheme, build_pssh_box

LOGGER = logging.getLogger(__name__)

DEFAULT_TRACKS: Sequence[Mapping[str, str]] = (
    {"type": "SD"},
    {"type": "HD"},
    {"type": "AUDIO"},
)

_JSON_HEADERS = {"Accept": "application/json", "Content-Type": "application/json"}


def canonical_json(payload: Mapping[str, Any]) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"))


def build_key_request(
    content_id: str,
    *,
    schemes: Sequence[Union[str, DrmScheme]] = (DrmScheme.WIDEVINE,),
    protection_scheme: str = "cbcs",
    tracks: Sequence[Mapping[str, str]] = DEFAULT_TRACKS,
) -> str:
    """Return the canonical JSON text of a key request."""

    request = {
        "content_id": base64.b64encode(content_id.encode("utf-8")).decode("ascii"),
        "drm_types": [DrmScheme.parse(scheme).value.upper() for scheme in schemes],
        "protection_scheme": protection_scheme.upper(),
        "tracks": [dict(track) for track in tracks],
    }
    return canonical_json(request)


def _decode_hex(value: str, expected: int, name: str) -> bytes:
    try:
        raw = bytes.fromhex(value or "")
    except ValueError as exc:
        raise SigningError(f"Signing {name} is not valid hex") from exc
    if len(raw) != expected:
        raise SigningError(f"Signing {name} must be {expected} bytes, got {len(raw)}")
    return raw


def create_signature(request_json: str, key_hex: str, iv_hex: str) -> str:
    """Sign ``request_json``: base64(AES-256-CBC(SHA1(request))) with PKCS7 padding."""

    key = _decode_hex(key_hex, 32, "key")
    iv = _decode_hex(iv_hex, 16, "iv")
    digest = hashlib.sha1(request_json.encode("utf-8")).digest()
    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    padded = padder.update(digest) + padder.finalize()
    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    ciphertext = encryptor.update(padded) + encryptor.finalize()
    return base64.b64encode(ciphertext).decode("ascii")


def _normalize_key_field(value: Any, name: str) -> str:
    """Return 16-byte key material as lower-case hex; accepts hex or base64 input."""

    if not isinstance(value, str) or not value.strip():
        raise KeyExchangeError(f"Key server response is missing {name}")
    text = value.strip()
    compact = text.replace("-", "")
    if len(compact) == 32:
        try:
            return bytes.fromhex(compact).hex()
        except ValueError:
            pass
    try:
        raw = base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise KeyExchangeError(f"Key server returned malformed {name}") from exc
    if len(raw) != 16:
        raise KeyExchangeError(f"Key server returned {len(raw)}-byte {name}; expected 16")
    return raw.hex()


class DRMKeyClient:
    """Request content keys from the key server and build the PSSH box."""

    def __init__(
        self,
        settings: KeyServerSettings,
        *,
        session: Optional[requests.Session] = None,
        request_timeout: float = 10.0,
    ) -> None:
        self.settings = settings
        self.request_timeout = max(1.0, request_timeout)
        self._session = session or requests.Session()

    def close(self) -> None:
        self._session.close()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def fetch_key_material(
        self,
        content_id: str,
        *,
        scheme: Union[str, DrmScheme] = DrmScheme.WIDEVINE,
        protection_scheme: str = "cbcs",
    ) -> DRMKeyMaterial:
        settings = self.settings.require()
        system = DrmScheme.parse(scheme)
        request_json = build_key_request(
            content_id,
            schemes=(system,),
            protection_scheme=protection_scheme,
        )
        envelope = {
            "request": base64.b64encode(request_json.encode("utf-8")).decode("ascii"),
            "signature": create_signature(
                request_json, settings.signing_key_hex, settings.signing_iv_hex
            ),
            "signer": settings.signer,
        }

        LOGGER.info("Requesting %s keys for %s from %s", system.value, content_id, settings.url)
        try:
            response = self._session.post(
                settings.url,
                data=json.dumps(envelope),
                headers=_JSON_HEADERS,
                timeout=self.request_timeout,
            )
        except requests.RequestException as exc:
            raise KeyExchangeError(f"Key server request failed: {exc}") from exc

        if not 200 <= response.status_code < 300:
            raise KeyExchangeError(f"Key server returned HTTP {response.status_code}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise KeyExchangeError("Key server returned a non-JSON body") from exc

        material = self.parse_response(payload, scheme=system, protection_scheme=protection_scheme)
        LOGGER.info("Received key id %s for %s", material.key_id, content_id)
        return material

    @staticmethod
    def parse_response(
        payload: Any,
        *,
        scheme: Union[str, DrmScheme] = DrmScheme.WIDEVINE,
        protection_scheme: str = "cbcs",
    ) -> DRMKeyMaterial:
        system = DrmScheme.parse(scheme)
        body = _unwrap_response(payload)

        source: Mapping[str, Any] = body
        key_field, iv_field = "content_key", "key_iv"
        if "key_id" not in body and isinstance(body.get("tracks"), list) and body["tracks"]:
            first = body["tracks"][0]
            if not isinstance(first, Mapping):
                raise KeyExchangeError("Key server returned malformed tracks")
            source = first
            key_field, iv_field = "key", "iv"

        key_id = _normalize_key_field(source.get("key_id"), "key_id")
        content_key = _normalize_key_field(source.get(key_field), "content key")
        iv = _normalize_key_field(source.get(iv_field) or body.get("key_iv"), "iv")
        pssh_data = _select_pssh_data(source, system) or _select_pssh_data(body, system)
        if not pssh_data:
            raise KeyExchangeError(f"Key server response has no {system.value} PSSH data")

        return DRMKeyMaterial(
            key_id=key_id,
            content_key=content_key,
            iv=iv,
            pssh_box=build_pssh_box(pssh_data, system),
            scheme=system.value,
            protection_scheme=protection_scheme,
        )


def _unwrap_response(payload: Any) -> Dict[str, Any]:
    if not isinstance(payload, Mapping):
        raise KeyExchangeError("Key server response must be a JSON object")
    body = payload.get("response", payload)
    if isinstance(body, str):
        try:
            body = json.loads(base64.b64decode(body, validate=True).decode("utf-8"))
        except (binascii.Error, ValueError) as exc:
            raise KeyExchangeError("Key server response envelope could not be decoded") from exc
    if not isinstance(body, Mapping):
        raise KeyExchangeError("Key server response envelope must be an object")
    status = body.get("status")
    if isinstance(status, str) and status.upper() not in {"OK", "SUCCESS"}:
        raise KeyExchangeError(f"Key server reported status {status}")
    return dict(body)


def _select_pssh_data(source: Mapping[str, Any], scheme: DrmScheme) -> Optional[str]:
    entries = source.get("pssh")
    if isinstance(entries, list):
        fallback = None
        for entry in entries:
            if not isinstance(entry, Mapping):
                continue
            data = entry.get("data")
            if not isinstance(data, str):
                continue
            drm_type = str(entry.get("drm_type") or "").lower()
            if drm_type == scheme.value:
                return data
            if fallback is None and not drm_type:
                fallback = data
        return fallback
    for key in ("pssh_data", "pssh"):
        value = source.get(key)
        if isinstance(value, str) and value:
            return value
    return None


__all__ = [
    "DEFAULT_TRACKS",
    "DRMKeyClient",
    "build_key_request",
    "canonical_json",
    "create_signature",
]
