"""Exception hierarchy for the live session engine."""
from __future__ import annotations


class LiveHlsError(RuntimeError):
    """Base class for live session failures."""


class ConfigurationError(LiveHlsError):
    """Raised when required service configuration is missing or invalid."""


class ValidationError(LiveHlsError, ValueError):
    """Raised when a caller supplies an invalid request."""


class SessionNotFoundError(LiveHlsError, KeyError):
    """Raised when a session id is not known to the registry."""

    def __str__(self) -> str:
        return RuntimeError.__str__(self)


class SessionStateError(LiveHlsError):
    """Raised when an operation is not valid for the session's current status."""


class ProcessSpawnError(LiveHlsError):
    """Raised when an external process could not be started."""


class ProcessRuntimeError(LiveHlsError):
    """Raised when an external process misbehaves after it was started."""


class PublishError(LiveHlsError):
    """Raised when an artifact could not be written to object storage."""


class KeyExchangeError(LiveHlsError):
    """Raised when the key server exchange fails."""


class SigningError(KeyExchangeError):
    """Raised when a key-server request cannot be signed."""


class UnsupportedSchemeError(KeyExchangeError):
    """Raised when a DRM scheme has no known system identifier."""


__all__ = [
    "ConfigurationError",
    "KeyExchangeError",
    "LiveHlsError",
    "ProcessRuntimeError",
    "ProcessSpawnError",
    "PublishError",
    "SessionNotFoundError",
    "SessionStateError",
    "SigningError",
    "UnsupportedSchemeError",
    "ValidationError",
]
