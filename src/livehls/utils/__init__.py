"""Utility helpers shared across the live session service."""
from __future__ import annotations

from .coerce import to_bool, to_float, to_int, to_optional_str
from .concurrency import sleep_with_stop
from .urls import join_key, strip_trailing_slash

__all__ = [
    "to_bool",
    "to_float",
    "to_int",
    "to_optional_str",
    "sleep_with_stop",
    "join_key",
    "strip_trailing_slash",
]
