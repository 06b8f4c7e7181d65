"""Extension wiring for the live session Flask application."""
from __future__ import annotations

import atexit
import logging
from http import HTTPStatus
from typing import Optional

from flask import Flask, jsonify

from ..engine import SessionRegistry
from ..exceptions import (
    ConfigurationError,
    ProcessSpawnError,
    SessionNotFoundError,
    SessionStateError,
    ValidationError,
)
from .routes import api_bp
from .services import REGISTRY_EXTENSION

LOGGER = logging.getLogger(__name__)


def init_session_registry(app: Flask, registry: Optional[SessionRegistry] = None) -> SessionRegistry:
    if registry is None:
        registry = SessionRegistry(app.config["LIVEHLS_SETTINGS"])
        registry.start_reaper()
        atexit.register(registry.shutdown)
    app.extensions[REGISTRY_EXTENSION] = registry
    return registry


def register_blueprints(app: Flask) -> None:
    app.register_blueprint(api_bp)


def register_error_handlers(app: Flask) -> None:
    def _error(exc: Exception, status: HTTPStatus):
        return jsonify({"error": str(exc)}), status

    @app.errorhandler(ValidationError)
    def _validation(exc: ValidationError):
        return _error(exc, HTTPStatus.BAD_REQUEST)

    @app.errorhandler(SessionNotFoundError)
    def _not_found(exc: SessionNotFoundError):
        return _error(exc, HTTPStatus.NOT_FOUND)

    @app.errorhandler(SessionStateError)
    def _conflict(exc: SessionStateError):
        return _error(exc, HTTPStatus.CONFLICT)

    @app.errorhandler(ConfigurationError)
    def _unconfigured(exc: ConfigurationError):
        LOGGER.error("Request rejected: %s", exc)
        return _error(exc, HTTPStatus.SERVICE_UNAVAILABLE)

    @app.errorhandler(ProcessSpawnError)
    def _spawn_failed(exc: ProcessSpawnError):
        LOGGER.error("%s", exc)
        return _error(exc, HTTPStatus.INTERNAL_SERVER_ERROR)


__all__ = [
    "init_session_registry",
    "register_blueprints",
    "register_error_handlers",
]
