"""URL and object-key helpers."""
from __future__ import annotations


def strip_trailing_slash(value: str) -> str:
    return value.rstrip("/") if value else value


def join_key(*parts: str) -> str:
    """Join object-key fragments with single slashes, dropping empty parts."""

    cleaned = [str(part).strip("/") for part in parts if part and str(part).strip("/")]
    return "/".join(cleaned)


__all__ = ["join_key", "strip_trailing_slash"]
