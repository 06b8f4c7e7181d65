from __future__ import annotations

from pathlib import Path

import pytest

from livehls.config import KeyServerSettings, ServiceSettings, StorageSettings, build_default_config
from livehls.exceptions import ConfigurationError


def test_service_settings_from_env() -> None:
    settings = ServiceSettings.from_env(
        {
            "HLS_OUTPUT_DIR": "/srv/hls",
            "SERVER_PUBLIC_IP": "203.0.113.7",
            "LIVEHLS_PACKAGER_BASE_PORT": "41000",
            "LIVEHLS_IDLE_TIMEOUT_SECONDS": "not-a-number",
            "LIVEHLS_ECHO_PROCESS_OUTPUT": "yes",
            "LIVEHLS_ACTIVITY_INTERVAL_SECONDS": "1.5",
            "AWS_S3_BUCKET": "media",
            "AWS_REGION": "eu-central-1",
            "LIVEHLS_S3_PREFIX": "/live/",
            "LIVEHLS_PUBLISH_QUIET_SECONDS": "0.5",
        }
    )

    assert settings.output_root == Path("/srv/hls")
    assert settings.public_host == "203.0.113.7"
    assert settings.packager_base_port == 41000
    assert settings.idle_timeout == 900.0
    assert settings.echo_process_output is True
    assert settings.activity_interval == 1.5
    assert settings.storage.prefix == "live"
    assert settings.storage.acl == "public-read"
    assert settings.publisher.quiet_period == 0.5
    assert not settings.key_server.configured


def test_empty_acl_disables_acl() -> None:
    assert StorageSettings.from_env({"LIVEHLS_S3_ACL": ""}).acl is None


def test_playback_base_variants() -> None:
    assert StorageSettings(bucket="media", region="us-west-2").playback_base() == (
        "https://media.s3.us-west-2.amazonaws.com"
    )
    assert StorageSettings(bucket="media", endpoint_url="http://minio:9000/").playback_base() == (
        "http://minio:9000/media"
    )
    assert StorageSettings(public_base_url="https://cdn.example.com/").playback_base() == (
        "https://cdn.example.com"
    )


def test_key_server_require_names_missing_variables() -> None:
    settings = KeyServerSettings.from_env({"KEY_SERVER_URL": "https://keys", "WIDEVINE_SIGNING_IV": "00"})

    with pytest.raises(ConfigurationError) as excinfo:
        settings.require()

    message = str(excinfo.value)
    assert "WIDEVINE_PROVIDER_NAME" in message
    assert "WIDEVINE_SIGNING_KEY" in message
    assert "KEY_SERVER_URL" not in message


def test_default_flask_config(settings) -> None:
    config = build_default_config(settings)

    assert config["LIVEHLS_SETTINGS"] is settings
    assert config["LIVEHLS_S3_BUCKET"] == "live-bucket"
    assert config["LIVEHLS_DRM_CONFIGURED"] is True
