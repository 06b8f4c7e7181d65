from __future__ import annotations

import sys
from pathlib import Path

import pytest

TESTS_DIR = Path(__file__).resolve().parent
SRC_DIR = TESTS_DIR.parent / "src"
for entry in (SRC_DIR, TESTS_DIR):
    if str(entry) not in sys.path:
        sys.path.insert(0, str(entry))

from livehls.config import (  # noqa: E402
    KeyServerSettings,
    PublisherSettings,
    ServiceSettings,
    StorageSettings,
)
from livehls.drm.pssh import build_pssh_box  # noqa: E402
from livehls.models import DRMKeyMaterial  # noqa: E402

SIGNING_KEY_HEX = "1ae8ccd0e7985cc0b6203a55855a1034afc252980e970ca90e5202689f947ab9"
SIGNING_IV_HEX = "d58ce954203b7c9a9a9d467f59839249"
PSSH_PAYLOAD_B64 = "CAESEAAAAAAAAAAAAAAAAAAAAAEiBHRlc3Q="


@pytest.fixture(autouse=True)
def _isolated_log_dir(tmp_path_factory, monkeypatch):
    monkeypatch.setenv("LIVEHLS_LOG_DIR", str(tmp_path_factory.getbasetemp() / "logs"))


@pytest.fixture
def key_server_settings() -> KeyServerSettings:
    return KeyServerSettings(
        url="https://keys.example.com/v1/getcontentkey",
        signer="livehls-test",
        signing_key_hex=SIGNING_KEY_HEX,
        signing_iv_hex=SIGNING_IV_HEX,
    )


@pytest.fixture
def settings(tmp_path, key_server_settings) -> ServiceSettings:
    return ServiceSettings(
        output_root=tmp_path / "hls",
        public_host="media.example.com",
        packager_ready_timeout=2.0,
        readiness_poll_interval=0.02,
        idle_timeout=0.0,
        activity_interval=0.0,
        graceful_timeout=1.0,
        terminate_timeout=1.0,
        kill_timeout=1.0,
        storage=StorageSettings(bucket="live-bucket", region="eu-west-1"),
        publisher=PublisherSettings(
            quiet_period=0.05,
            poll_interval=0.02,
            max_workers=2,
            retry_delay=0.0,
            manifest_timeout=1.0,
            gate_timeout=1.0,
            drain_timeout=2.0,
        ),
        key_server=key_server_settings,
    )


@pytest.fixture
def key_material() -> DRMKeyMaterial:
    return DRMKeyMaterial(
        key_id="0123456789abcdef0123456789abcdef",
        content_key="fedcba9876543210fedcba9876543210",
        iv="00112233445566778899aabbccddeeff",
        pssh_box=build_pssh_box(PSSH_PAYLOAD_B64),
    )
