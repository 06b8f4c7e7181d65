"""Configuration helpers for the live session service."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from dotenv import find_dotenv, load_dotenv

from .exceptions import ConfigurationError
from .utils import strip_trailing_slash, to_bool, to_float, to_int, to_optional_str


def _ensure_dotenv_loaded() -> None:
    dotenv_path = find_dotenv(usecwd=True)
    if dotenv_path:
        load_dotenv(dotenv_path, override=False)


_ensure_dotenv_loaded()

LOGGER = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parents[2]
DEFAULT_OUTPUT_ROOT = PROJECT_ROOT / "hls"


@dataclass(frozen=True)
class KeyServerSettings:
    url: Optional[str] = None
    signer: Optional[str] = None
    signing_key_hex: Optional[str] = None
    signing_iv_hex: Optional[str] = None

    ENV_NAMES = {
        "url": "KEY_SERVER_URL",
        "signer": "WIDEVINE_PROVIDER_NAME",
        "signing_key_hex": "WIDEVINE_SIGNING_KEY",
        "signing_iv_hex": "WIDEVINE_SIGNING_IV",
    }

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "KeyServerSettings":
        env = os.environ if environ is None else environ
        return cls(**{name: to_optional_str(env.get(var)) for name, var in cls.ENV_NAMES.items()})

    @property
    def configured(self) -> bool:
        return not self.missing()

    def missing(self) -> list[str]:
        return [var for name, var in self.ENV_NAMES.items() if not getattr(self, name)]

    def require(self) -> "KeyServerSettings":
        missing = self.missing()
        if missing:
            raise ConfigurationError(
                "Key server is not configured; missing " + ", ".join(missing)
            )
        return self


@dataclass(frozen=True)
class StorageSettings:
    bucket: Optional[str] = None
    region: Optional[str] = None
    endpoint_url: Optional[str] = None
    prefix: str = "live-streams"
    acl: Optional[str] = "public-read"
    public_base_url: Optional[str] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "StorageSettings":
        env = os.environ if environ is None else environ
        acl = env.get("LIVEHLS_S3_ACL")
        return cls(
            bucket=to_optional_str(env.get("AWS_S3_BUCKET")),
            region=to_optional_str(env.get("AWS_REGION")),
            endpoint_url=to_optional_str(env.get("AWS_S3_ENDPOINT_URL")),
            prefix=(to_optional_str(env.get("LIVEHLS_S3_PREFIX")) or "live-streams").strip("/"),
            acl="public-read" if acl is None else to_optional_str(acl),
            public_base_url=to_optional_str(env.get("LIVEHLS_PUBLIC_BASE_URL")),
        )

    def playback_base(self) -> str:
        if self.public_base_url:
            return strip_trailing_slash(self.public_base_url)
        if self.endpoint_url and self.bucket:
            return f"{strip_trailing_slash(self.endpoint_url)}/{self.bucket}"
        region = self.region or "us-east-1"
        return f"https://{self.bucket or 'bucket'}.s3.{region}.amazonaws.com"


@dataclass(frozen=True)
class PublisherSettings:
    quiet_period: float = 0.3
    poll_interval: float = 0.1
    max_workers: int = 4
    retry_attempts: int = 3
    retry_delay: float = 0.5
    retry_backoff: float = 2.0
    manifest_timeout: float = 15.0
    gate_timeout: float = 30.0
    drain_timeout: float = 10.0

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "PublisherSettings":
        env = os.environ if environ is None else environ
        defaults = cls()
        return cls(
            quiet_period=to_float(env.get("LIVEHLS_PUBLISH_QUIET_SECONDS"), defaults.quiet_period, minimum=0.0),
            poll_interval=to_float(env.get("LIVEHLS_PUBLISH_POLL_SECONDS"), defaults.poll_interval, minimum=0.01),
            max_workers=to_int(env.get("LIVEHLS_PUBLISH_WORKERS"), defaults.max_workers, minimum=1),
            retry_attempts=to_int(env.get("LIVEHLS_PUBLISH_RETRIES"), defaults.retry_attempts, minimum=1),
            retry_delay=to_float(env.get("LIVEHLS_PUBLISH_RETRY_DELAY"), defaults.retry_delay, minimum=0.0),
            retry_backoff=to_float(env.get("LIVEHLS_PUBLISH_RETRY_BACKOFF"), defaults.retry_backoff, minimum=1.0),
            manifest_timeout=to_float(env.get("LIVEHLS_MANIFEST_TIMEOUT"), defaults.manifest_timeout, minimum=0.0),
            gate_timeout=to_float(env.get("LIVEHLS_MASTER_GATE_TIMEOUT"), defaults.gate_timeout, minimum=0.0),
            drain_timeout=to_float(env.get("LIVEHLS_PUBLISH_DRAIN_TIMEOUT"), defaults.drain_timeout, minimum=0.0),
        )


@dataclass(frozen=True)
class ServiceSettings:
    output_root: Path = DEFAULT_OUTPUT_ROOT
    public_host: str = "localhost"
    ffmpeg_binary: str = "ffmpeg"
    packager_binary: str = "packager"
    ffmpeg_loglevel: str = "info"
    segment_duration: int = 4
    packager_base_port: int = 40000
    packager_ready_timeout: float = 20.0
    readiness_poll_interval: float = 0.2
    idle_timeout: float = 900.0
    reap_interval: float = 60.0
    activity_interval: float = 5.0
    graceful_timeout: float = 5.0
    terminate_timeout: float = 5.0
    kill_timeout: float = 2.0
    echo_process_output: bool = False
    storage: StorageSettings = field(default_factory=StorageSettings)
    publisher: PublisherSettings = field(default_factory=PublisherSettings)
    key_server: KeyServerSettings = field(default_factory=KeyServerSettings)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ServiceSettings":
        env = os.environ if environ is None else environ
        defaults = cls()
        output_root = to_optional_str(env.get("HLS_OUTPUT_DIR"))
        return cls(
            output_root=Path(output_root).expanduser() if output_root else defaults.output_root,
            public_host=to_optional_str(env.get("SERVER_PUBLIC_IP")) or defaults.public_host,
            ffmpeg_binary=to_optional_str(env.get("FFMPEG_BINARY")) or defaults.ffmpeg_binary,
            packager_binary=to_optional_str(env.get("PACKAGER_BINARY")) or defaults.packager_binary,
            ffmpeg_loglevel=to_optional_str(env.get("LIVEHLS_FFMPEG_LOGLEVEL")) or defaults.ffmpeg_loglevel,
            segment_duration=to_int(env.get("LIVEHLS_SEGMENT_SECONDS"), defaults.segment_duration, minimum=1),
            packager_base_port=to_int(env.get("LIVEHLS_PACKAGER_BASE_PORT"), defaults.packager_base_port, minimum=1024),
            packager_ready_timeout=to_float(
                env.get("LIVEHLS_PACKAGER_READY_TIMEOUT"), defaults.packager_ready_timeout, minimum=0.0
            ),
            idle_timeout=to_float(env.get("LIVEHLS_IDLE_TIMEOUT_SECONDS"), defaults.idle_timeout, minimum=0.0),
            reap_interval=to_float(env.get("LIVEHLS_REAP_INTERVAL_SECONDS"), defaults.reap_interval, minimum=1.0),
            activity_interval=to_float(
                env.get("LIVEHLS_ACTIVITY_INTERVAL_SECONDS"), defaults.activity_interval, minimum=0.0
            ),
            echo_process_output=to_bool(env.get("LIVEHLS_ECHO_PROCESS_OUTPUT"), defaults.echo_process_output),
            storage=StorageSettings.from_env(env),
            publisher=PublisherSettings.from_env(env),
            key_server=KeyServerSettings.from_env(env),
        )


def build_default_config(settings: Optional[ServiceSettings] = None) -> Dict[str, Any]:
    """Return the Flask configuration mapping for the HTTP surface."""

    settings = settings or ServiceSettings.from_env()
    return {
        "LIVEHLS_SETTINGS": settings,
        "LIVEHLS_OUTPUT_ROOT": str(settings.output_root),
        "LIVEHLS_PUBLIC_HOST": settings.public_host,
        "LIVEHLS_S3_BUCKET": settings.storage.bucket,
        "LIVEHLS_DRM_CONFIGURED": settings.key_server.configured,
        "JSON_SORT_KEYS": False,
    }


__all__ = [
    "DEFAULT_OUTPUT_ROOT",
    "KeyServerSettings",
    "PublisherSettings",
    "ServiceSettings",
    "StorageSettings",
    "build_default_config",
]
