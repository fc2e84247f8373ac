from __future__ import annotations

import os
from datetime import datetime, timezone

from flask import Flask, jsonify, make_response, request
from werkzeug.exceptions import MethodNotAllowed, NotFound

from . import __version__
from .config import DEFAULT_TIMEOUT, Variant, get_variant
from .http import build_cors_headers, error_response
from .routes_openai import openai_bp


def _load_upstream_api_key(variant: Variant) -> str | None:
    env_key = os.getenv(variant.api_key_env)
    if isinstance(env_key, str) and env_key.strip():
        return env_key.strip()
    return None


def create_app(
    variant: str | Variant | None = None,
    verbose: bool = False,
    api_key: str | None = None,
    timeout: float | None = None,
    normalize_envelope: bool = False,
) -> Flask:
    app = Flask(__name__)

    active = variant if isinstance(variant, Variant) else get_variant(variant)

    app.config.update(
        VERBOSE=bool(verbose),
        VARIANT=active,
        UPSTREAM_API_KEY=api_key if api_key is not None else _load_upstream_api_key(active),
        UPSTREAM_TIMEOUT=float(timeout) if timeout is not None else (active.timeout or DEFAULT_TIMEOUT),
        NORMALIZE_ENVELOPE=bool(normalize_envelope),
    )
    app.json.ensure_ascii = False

    @app.before_request
    def _preflight_and_log():
        if app.config.get("VERBOSE"):
            print(f"{datetime.now(timezone.utc).isoformat()} - {request.method} {request.path}")
        if request.method == "OPTIONS":
            resp = make_response("", 200)
            for k, v in build_cors_headers().items():
                resp.headers.setdefault(k, v)
            return resp
        return None

    @app.route("/", methods=["GET", "POST", "PUT", "PATCH", "DELETE"])
    def root():
        return jsonify(
            {
                "status": "online",
                "message": f"{active.display_name} is running",
                "version": __version__,
            }
        )

    @app.get("/health")
    def health():
        return jsonify({"status": "ok", "service": active.service})

    @app.errorhandler(NotFound)
    @app.errorhandler(MethodNotAllowed)
    def _route_not_found(_exc):
        print(f"404 - Route not found: {request.method} {request.path}")
        return error_response(f"Route not found: {request.path}", "invalid_request_error", 404)

    @app.after_request
    def _cors(resp):
        for k, v in build_cors_headers().items():
            resp.headers.setdefault(k, v)
        return resp

    app.register_blueprint(openai_bp)

    return app
