from __future__ import annotations

import json
from typing import Any, Dict, List, Tuple

import requests
from flask import Response, current_app

from .config import Variant
from .http import error_response
from .reasoning import apply_system_directive
from .utils import eprint


def resolve_max_tokens(requested: Any, variant: Variant) -> int:
    try:
        value = int(requested) if requested is not None and not isinstance(requested, bool) else 0
    except (TypeError, ValueError):
        value = 0
    if value <= 0:
        value = variant.default_max_tokens
    if variant.min_max_tokens is not None and value < variant.min_max_tokens:
        value = variant.min_max_tokens
    return value


def resolve_temperature(requested: Any, variant: Variant) -> float:
    if requested is None or isinstance(requested, bool):
        return variant.default_temperature
    try:
        return float(requested)
    except (TypeError, ValueError):
        return variant.default_temperature


def build_chat_payload(payload: Dict[str, Any], variant: Variant) -> Dict[str, Any]:
    """Translate a validated chat request into the upstream request body."""
    messages: List[Dict[str, Any]] = list(payload.get("messages") or [])
    if variant.system_prompt or variant.system_prefix:
        messages = apply_system_directive(messages, variant.system_prompt, variant.system_prefix)
    return {
        "model": variant.resolve_model(payload.get("model")),
        "messages": messages,
        "temperature": resolve_temperature(payload.get("temperature"), variant),
        "max_tokens": resolve_max_tokens(payload.get("max_tokens"), variant),
        "stream": bool(payload.get("stream", False)),
    }


def extract_upstream_error_message(upstream: requests.Response) -> str:
    try:
        body = upstream.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        err = body.get("error")
        if isinstance(err, dict) and isinstance(err.get("message"), str) and err.get("message"):
            return err["message"]
        if isinstance(body.get("detail"), str) and body.get("detail"):
            return body["detail"]
        if isinstance(err, str) and err:
            return err
        if isinstance(body.get("message"), str) and body.get("message"):
            return body["message"]
    text = (upstream.text or "").strip()
    return text or f"Upstream returned HTTP {upstream.status_code}"


def start_upstream_request(
    variant: Variant,
    api_key: str,
    chat_payload: Dict[str, Any],
    *,
    timeout: float | None = None,
) -> Tuple[requests.Response | None, Response | None]:
    verbose = False
    try:
        verbose = bool(current_app.config.get("VERBOSE"))
    except RuntimeError:
        verbose = False

    stream = bool(chat_payload.get("stream"))
    headers = {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
        "Accept": "text/event-stream" if stream else "application/json",
    }

    if verbose:
        try:
            preview_json = json.dumps(chat_payload, ensure_ascii=False, default=lambda o: repr(o))
            if len(preview_json) > 1000:
                preview = preview_json[:500] + "..." + preview_json[-500:]
            else:
                preview = preview_json
            print(f"UPSTREAM POST {variant.chat_completions_url}\n" + preview)
        except (TypeError, ValueError):
            pass

    try:
        upstream = requests.post(
            variant.chat_completions_url,
            headers=headers,
            json=chat_payload,
            stream=stream,
            timeout=timeout if timeout is not None else variant.timeout,
        )
    except requests.RequestException as e:
        eprint(f"Error while contacting {variant.service} upstream: {type(e).__name__}: {e}")
        return None, error_response(str(e) or type(e).__name__, "api_error", 500, code=500)

    if not 200 <= upstream.status_code < 300:
        message = extract_upstream_error_message(upstream)
        eprint(f"Upstream error {upstream.status_code}: {message}")
        upstream.close()
        return None, error_response(message, "api_error", upstream.status_code, code=upstream.status_code)

    return upstream, None
