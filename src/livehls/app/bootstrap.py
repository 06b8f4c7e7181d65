"""Bootstrap helpers for the live session Flask application."""
from __future__ import annotations

import os
from typing import Optional

from flask import Flask

from ..config import ServiceSettings, build_default_config
from ..logging_config import configure_logging


def init_logging() -> None:
    configure_logging("livehls")


def load_configuration(app: Flask, settings: Optional[ServiceSettings] = None) -> None:
    """Populate the default configuration values on the Flask app."""

    app.config.from_mapping(build_default_config(settings))


def ensure_single_worker() -> None:
    """Sessions live in process memory, so only one worker may serve them."""

    worker_count = 1
    raw_worker_count = os.getenv("GUNICORN_WORKERS") or os.getenv("WEB_CONCURRENCY")
    if raw_worker_count:
        try:
            worker_count = max(1, int(raw_worker_count))
        except ValueError:
            worker_count = 1
    if worker_count != 1:
        raise RuntimeError(
            "The live session service requires a single worker process. "
            "Set GUNICORN_WORKERS=1 (or WEB_CONCURRENCY=1) before launching. "
            f"Detected {worker_count}."
        )


__all__ = ["ensure_single_worker", "init_logging", "load_configuration"]
