"""Incremental upload of session output to object storage."""
from __future__ import annotations

from .artifacts import ArtifactKind, classify, content_type_for, destination_key, rewrite_base_urls
from .gate import ManifestGate
from .publisher import OutputPublisher, PublishEventHandler
from .stability import StabilityTracker
from .storage import ObjectStore, S3ObjectStore

__all__ = [
    "ArtifactKind",
    "ManifestGate",
    "ObjectStore",
    "OutputPublisher",
    "PublishEventHandler",
    "S3ObjectStore",
    "StabilityTracker",
    "classify",
    "content_type_for",
    "destination_key",
    "rewrite_base_urls",
]
