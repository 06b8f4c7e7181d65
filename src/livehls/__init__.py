"""Live ingest session orchestration with incremental HLS publishing."""
from __future__ import annotations

from .engine import SessionRegistry, StartResult
from .exceptions import (
    ConfigurationError,
    KeyExchangeError,
    LiveHlsError,
    ProcessRuntimeError,
    ProcessSpawnError,
    PublishError,
    SessionNotFoundError,
    SessionStateError,
    SigningError,
    UnsupportedSchemeError,
    ValidationError,
)
from .models import DRMKeyMaterial, Rendition, SessionSnapshot, SessionStatus, StreamSession

__version__ = "0.1.0"

__all__ = [
    "ConfigurationError",
    "DRMKeyMaterial",
    "KeyExchangeError",
    "LiveHlsError",
    "ProcessRuntimeError",
    "ProcessSpawnError",
    "PublishError",
    "Rendition",
    "SessionNotFoundError",
    "SessionRegistry",
    "SessionSnapshot",
    "SessionStateError",
    "SessionStatus",
    "SigningError",
    "StartResult",
    "StreamSession",
    "UnsupportedSchemeError",
    "ValidationError",
]
