from __future__ import annotations

from typing import Dict

from flask import Response, jsonify, make_response


def build_cors_headers() -> Dict[str, str]:
    return {
        "Access-Control-Allow-Origin": "*",
        "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
        "Access-Control-Allow-Headers": "Content-Type, Authorization",
    }


def error_response(message: str, error_type: str, status: int, code: int | None = None) -> Response:
    """Render ``{"error": {...}}`` with CORS headers attached."""
    body: Dict[str, object] = {"message": message, "type": error_type}
    if code is not None:
        body["code"] = code
    resp = make_response(jsonify({"error": body}), status)
    for k, v in build_cors_headers().items():
        resp.headers.setdefault(k, v)
    return resp
