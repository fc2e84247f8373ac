from __future__ import annotations

import json
import time
from typing import Any, Dict, List

import requests
from flask import Blueprint, Response, current_app, jsonify, make_response, request, stream_with_context

from .config import Variant
from .http import build_cors_headers, error_response
from .upstream import build_chat_payload, start_upstream_request
from .utils import (
    clean_completion_choices,
    eprint,
    iter_sse_lines,
    normalize_completion_envelope,
    relay_chat_stream,
)

openai_bp = Blueprint("openai", __name__)


def _variant() -> Variant:
    return current_app.config["VARIANT"]


@openai_bp.route("/v1/chat/completions", methods=["POST"])
def chat_completions() -> Response:
    variant = _variant()
    verbose = bool(current_app.config.get("VERBOSE"))

    api_key = current_app.config.get("UPSTREAM_API_KEY")
    if not isinstance(api_key, str) or not api_key:
        eprint(f"{variant.api_key_env} not set")
        return error_response(f"{variant.service} API key not configured", "server_error", 500)

    raw = request.get_data(cache=True, as_text=True) or ""
    if verbose:
        print(f"IN POST {request.path}\n" + raw[:2000])
    try:
        payload = json.loads(raw) if raw else {}
    except ValueError:
        return error_response("Invalid JSON body", "invalid_request_error", 400)
    if not isinstance(payload, dict):
        return error_response("Request body must be a JSON object", "invalid_request_error", 400)

    requested_model = payload.get("model")
    messages = payload.get("messages")
    if not requested_model or not messages:
        return error_response("Missing required fields: model and messages", "invalid_request_error", 400)
    if not isinstance(messages, list):
        return error_response("messages must be a non-empty array", "invalid_request_error", 400)

    chat_payload = build_chat_payload(payload, variant)
    if verbose:
        print(f"Mapping {requested_model} -> {chat_payload['model']}")

    upstream, error_resp = start_upstream_request(
        variant,
        api_key,
        chat_payload,
        timeout=current_app.config.get("UPSTREAM_TIMEOUT"),
    )
    if error_resp is not None:
        return error_resp

    if chat_payload["stream"]:
        def _relay():
            try:
                yield from relay_chat_stream(
                    iter_sse_lines(upstream.iter_content(chunk_size=None)),
                    clean_reasoning=variant.clean_reasoning,
                    verbose=verbose,
                    vlog=print if verbose else None,
                )
            except requests.exceptions.ChunkedEncodingError as exc:
                eprint(f"Streaming upstream ended early: {exc}")
            except requests.exceptions.RequestException as exc:
                eprint(f"Streaming upstream error: {exc}")
            finally:
                upstream.close()

        resp = Response(
            stream_with_context(_relay()),
            status=200,
            mimetype="text/event-stream",
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
        )
        resp.headers.setdefault("X-Accel-Buffering", "no")
        for k, v in build_cors_headers().items():
            resp.headers.setdefault(k, v)
        return resp

    try:
        completion = upstream.json()
    except ValueError:
        eprint(f"Upstream returned a non-JSON body: {upstream.text[:200]!r}")
        return error_response("Upstream returned an invalid JSON response", "api_error", 502, code=502)
    finally:
        upstream.close()

    if isinstance(completion, dict):
        if variant.clean_reasoning:
            completion = clean_completion_choices(completion)
        if current_app.config.get("NORMALIZE_ENVELOPE"):
            completion = normalize_completion_envelope(completion, requested_model, int(time.time()))
    if verbose:
        print("Sending " + ("cleaned " if variant.clean_reasoning else "") + "response")

    resp = make_response(jsonify(completion), upstream.status_code)
    for k, v in build_cors_headers().items():
        resp.headers.setdefault(k, v)
    return resp


@openai_bp.route("/v1", methods=["POST"])
def chat_completions_legacy() -> Response:
    if not _variant().legacy_routes:
        return error_response(f"Route not found: {request.path}", "invalid_request_error", 404)
    return chat_completions()


@openai_bp.route("/v1/models", methods=["GET"])
def list_models() -> Response:
    variant = _variant()
    created = int(time.time())
    data: List[Dict[str, Any]] = [
        {"id": mid, "object": "model", "created": created, "owned_by": variant.owned_by}
        for mid in variant.model_map
    ]
    resp = make_response(jsonify({"object": "list", "data": data}), 200)
    for k, v in build_cors_headers().items():
        resp.headers.setdefault(k, v)
    return resp
