from __future__ import annotations

from http import HTTPStatus

import pytest

from fakes import FakeLauncher, RecordingStore
from livehls.app import create_app
from livehls.engine import SessionRegistry


@pytest.fixture
def registry(settings):
    registry = SessionRegistry(settings, launcher=FakeLauncher(), store=RecordingStore())
    yield registry
    registry.shutdown()


@pytest.fixture
def client(registry):
    app = create_app(registry=registry)
    app.config.update(TESTING=True)
    return app.test_client()


def _create(client, port: int = 9000, key: str = "abc") -> str:
    response = client.post(f"/streams?port={port}&key={key}")
    assert response.status_code == HTTPStatus.CREATED
    return response.get_json()["session_id"]


def test_health(client) -> None:
    response = client.get("/health")

    assert response.status_code == HTTPStatus.OK
    payload = response.get_json()
    assert payload["status"] == "ok"
    assert payload["drm_configured"] is True


def test_create_and_status(client) -> None:
    response = client.post("/streams", json={"port": 9000, "key": "abc"})

    assert response.status_code == HTTPStatus.CREATED
    payload = response.get_json()
    assert payload["status"] == "created"
    assert "9000" in payload["ingest_url"]

    status = client.get(f"/streams/{payload['session_id']}/status").get_json()
    assert status == {
        "session_id": payload["session_id"],
        "status": "created",
        "message": "Status: created",
    }


def test_create_requires_port(client) -> None:
    response = client.post("/streams", json={"key": "abc"})

    assert response.status_code == HTTPStatus.BAD_REQUEST
    assert "port" in response.get_json()["error"]


def test_invalid_start_options_are_bad_requests(client) -> None:
    session_id = _create(client)

    response = client.post(
        f"/streams/{session_id}/start",
        json={"resolutions": [{"width": "wide", "height": 720}]},
    )

    assert response.status_code == HTTPStatus.BAD_REQUEST
    assert client.get(f"/streams/{session_id}").get_json()["status"] == "created"


def test_stop_then_start_conflicts(client) -> None:
    session_id = _create(client)

    stopped = client.post(f"/streams/{session_id}/stop").get_json()
    assert stopped == {"session_id": session_id, "stopping": True, "message": "Status: stopped"}

    response = client.post(f"/streams/{session_id}/start", json={})
    assert response.status_code == HTTPStatus.CONFLICT


def test_unknown_stream_is_not_found(client) -> None:
    assert client.get("/streams/stream-missing").status_code == HTTPStatus.NOT_FOUND
    assert client.post("/streams/stream-missing/stop").status_code == HTTPStatus.NOT_FOUND


def test_list_and_delete(client) -> None:
    first = _create(client, 9000, "a")
    second = _create(client, 9001, "b")

    listed = client.get("/streams").get_json()["streams"]
    assert {item["id"] for item in listed} == {first, second}

    response = client.delete(f"/streams/{first}")
    assert response.status_code == HTTPStatus.OK
    assert [item["id"] for item in client.get("/streams").get_json()["streams"]] == [second]


def test_simulate_requires_source_and_reports_push_url(client, tmp_path) -> None:
    session_id = _create(client, 9000, "abc")

    missing = client.post(f"/streams/{session_id}/simulate", json={})
    assert missing.status_code == HTTPStatus.BAD_REQUEST

    source = tmp_path / "loop.ts"
    source.write_bytes(b"\x47" * 188)
    response = client.post(f"/streams/{session_id}/simulate", json={"source": str(source)})
    assert response.status_code == HTTPStatus.ACCEPTED
    assert response.get_json()["push_url"] == "srt://127.0.0.1:9000?streamid=#!::r=abc"

    stopped = client.delete(f"/streams/{session_id}/simulate").get_json()
    assert stopped == {"session_id": session_id, "stopped": True}
