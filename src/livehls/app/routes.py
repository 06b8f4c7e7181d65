"""HTTP routes that drive live sessions."""
from __future__ import annotations

from datetime import datetime, timezone
from http import HTTPStatus

from flask import Blueprint, current_app, jsonify, request

from ..engine import SessionRegistry
from ..exceptions import ValidationError
from .services import get_registry

api_bp = Blueprint("livehls_api", __name__)


def _registry() -> SessionRegistry:
    return get_registry(current_app)


@api_bp.route("/health", methods=["GET"])
def health_endpoint():
    return (
        jsonify(
            {
                "status": "ok",
                "service": "livehls",
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "drm_configured": bool(current_app.config.get("LIVEHLS_DRM_CONFIGURED")),
            }
        ),
        HTTPStatus.OK,
    )


@api_bp.route("/streams", methods=["POST"])
def create_stream():
    body = request.get_json(silent=True) or {}
    port = request.args.get("port", body.get("port"))
    if port is None:
        raise ValidationError("port is required")
    info = _registry().create(
        port,
        request.args.get("key", body.get("key")),
        protocol=request.args.get("protocol", body.get("protocol", "srt")),
    )
    return jsonify(info.to_dict()), HTTPStatus.CREATED


@api_bp.route("/streams", methods=["GET"])
def list_streams():
    streams = [snapshot.to_dict() for snapshot in _registry().list()]
    return jsonify({"streams": streams}), HTTPStatus.OK


@api_bp.route("/streams/<session_id>", methods=["GET"])
def get_stream(session_id: str):
    return jsonify(_registry().get(session_id).to_dict()), HTTPStatus.OK


@api_bp.route("/streams/<session_id>/start", methods=["POST"])
def start_stream(session_id: str):
    body = request.get_json(silent=True)
    if body is not None and not isinstance(body, dict):
        raise ValidationError("start options must be a JSON object")
    result = _registry().start(session_id, body or {})
    return jsonify(result.to_dict()), HTTPStatus.ACCEPTED


@api_bp.route("/streams/<session_id>/stop", methods=["POST"])
def stop_stream(session_id: str):
    registry = _registry()
    stopping = registry.stop(session_id)
    payload = {
        "session_id": session_id,
        "stopping": stopping,
        "message": registry.status_text(session_id),
    }
    return jsonify(payload), HTTPStatus.OK


@api_bp.route("/streams/<session_id>/status", methods=["GET"])
def stream_status(session_id: str):
    registry = _registry()
    snapshot = registry.get(session_id)
    payload = {
        "session_id": session_id,
        "status": snapshot.status.value,
        "message": registry.status_text(session_id),
    }
    return jsonify(payload), HTTPStatus.OK


@api_bp.route("/streams/<session_id>/simulate", methods=["POST"])
def simulate_stream(session_id: str):
    body = request.get_json(silent=True) or {}
    source = body.get("source") if isinstance(body, dict) else None
    if not source or not isinstance(source, str):
        raise ValidationError("source is required")
    info = _registry().simulate(session_id, source)
    return jsonify(info.to_dict()), HTTPStatus.ACCEPTED


@api_bp.route("/streams/<session_id>/simulate", methods=["DELETE"])
def stop_simulation(session_id: str):
    stopped = _registry().stop_simulation(session_id)
    return jsonify({"session_id": session_id, "stopped": stopped}), HTTPStatus.OK


@api_bp.route("/streams/<session_id>", methods=["DELETE"])
def delete_stream(session_id: str):
    _registry().delete(session_id)
    return jsonify({"session_id": session_id, "deleted": True}), HTTPStatus.OK


__all__ = ["api_bp"]
