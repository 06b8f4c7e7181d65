"""Accessors for objects the application factory attaches to the Flask app."""
from __future__ import annotations

from flask import Flask

from ..engine import SessionRegistry

REGISTRY_EXTENSION = "livehls_registry"


def get_registry(app: Flask) -> SessionRegistry:
    registry = app.extensions.get(REGISTRY_EXTENSION)
    if not isinstance(registry, SessionRegistry):
        raise RuntimeError("Session registry not initialised on Flask app.")
    return registry


__all__ = ["REGISTRY_EXTENSION", "get_registry"]
