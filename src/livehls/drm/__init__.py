"""Key-server exchange and protection-system header helpers."""
from __future__ import annotations

from .client import DRMKeyClient, build_key_request, create_signature
from .pssh import DrmScheme, build_pssh_box, parse_pssh_box

__all__ = [
    "DRMKeyClient",
    "DrmScheme",
    "build_key_request",
    "build_pssh_box",
    "create_signature",
    "parse_pssh_box",
]
