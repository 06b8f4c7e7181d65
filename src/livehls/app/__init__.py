"""Live session service application factory."""
from __future__ import annotations

from typing import Optional

from flask import Flask

from ..config import ServiceSettings
from ..engine import SessionRegistry
from .bootstrap import ensure_single_worker, init_logging, load_configuration
from .extensions import init_session_registry, register_blueprints, register_error_handlers


def create_app(
    registry: Optional[SessionRegistry] = None,
    settings: Optional[ServiceSettings] = None,
) -> Flask:
    """Create and configure the live session Flask application."""

    init_logging()
    app = Flask(__name__)
    load_configuration(app, settings or (registry.settings if registry else None))

    ensure_single_worker()
    init_session_registry(app, registry)

    register_blueprints(app)
    register_error_handlers(app)
    return app


__all__ = ["create_app"]
