from __future__ import annotations

import argparse
import json
import os
import sys

from .app import create_app
from .config import DEFAULT_TIMEOUT, DEFAULT_VARIANT, VARIANTS, Variant, get_variant
from .utils import eprint


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        eprint(f"Ignoring invalid {name}={raw!r}; using {default}")
        return default


def cmd_serve(
    host: str,
    port: int,
    variant: str,
    verbose: bool,
    timeout: float,
    normalize_envelope: bool,
) -> int:
    app = create_app(
        variant=variant,
        verbose=verbose,
        timeout=timeout,
        normalize_envelope=normalize_envelope,
    )
    active: Variant = app.config["VARIANT"]
    key_state = "SET" if app.config.get("UPSTREAM_API_KEY") else "NOT SET"

    print(f"{active.display_name} running on port {port}")
    print(f"Health check: http://localhost:{port}/health")
    print(f"{active.api_key_env}: {key_state}")
    print(f"Upstream: {active.base_url}")
    print(f"Mode: {active.mode}")

    app.run(host=host, debug=False, use_reloader=False, port=port, threaded=True)
    return 0


def cmd_info(variant_name: str, as_json: bool) -> int:
    variant = get_variant(variant_name)
    key_set = bool(os.getenv(variant.api_key_env, "").strip())
    info = {
        "variant": variant.name,
        "service": variant.service,
        "base_url": variant.base_url,
        "api_key_env": variant.api_key_env,
        "api_key_set": key_set,
        "default_model": variant.default_model,
        "default_temperature": variant.default_temperature,
        "default_max_tokens": variant.default_max_tokens,
        "min_max_tokens": variant.min_max_tokens,
        "system_prompt": bool(variant.system_prompt),
        "clean_reasoning": variant.clean_reasoning,
        "models": dict(variant.model_map),
    }
    if as_json:
        print(json.dumps(info, indent=2, ensure_ascii=False))
        return 0

    print(f"Variant: {variant.name} ({variant.mode})")
    print(f"  Upstream: {variant.base_url}")
    print(f"  {variant.api_key_env}: {'SET' if key_set else 'NOT SET'}")
    print(f"  Defaults: temperature={variant.default_temperature} max_tokens={variant.default_max_tokens}")
    if variant.min_max_tokens is not None:
        print(f"  max_tokens floor: {variant.min_max_tokens}")
    print(f"  System prompt injection: {'on' if variant.system_prompt else 'off'}")
    print(f"  Reasoning cleaning: {'on' if variant.clean_reasoning else 'off'}")
    print("  Models:")
    for name, target in variant.model_map.items():
        print(f"    {name} -> {target}")
    print(f"    (anything else) -> {variant.default_model}")
    return 0


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="OpenAI-compatible chat-completions relay for a single upstream")
    sub = parser.add_subparsers(dest="command", required=True)

    p_serve = sub.add_parser("serve", help="Run the OpenAI-compatible proxy server")
    p_serve.add_argument("--host", default=os.getenv("CHATRELAY_HOST", "0.0.0.0"))
    p_serve.add_argument("--port", type=int, default=int(os.getenv("PORT", "10000")))
    p_serve.add_argument(
        "--variant",
        choices=sorted(VARIANTS),
        default=os.getenv("CHATRELAY_VARIANT", DEFAULT_VARIANT).strip().lower(),
        help=f"Upstream variant to proxy (default: {DEFAULT_VARIANT})",
    )
    p_serve.add_argument(
        "--verbose",
        action="store_true",
        default=_env_flag("CHATRELAY_VERBOSE"),
        help="Log requests, bodies and upstream payload previews",
    )
    p_serve.add_argument(
        "--timeout",
        type=float,
        default=_env_float("CHATRELAY_TIMEOUT", DEFAULT_TIMEOUT),
        help=f"Seconds to wait for the upstream before failing (default: {DEFAULT_TIMEOUT:g})",
    )
    p_serve.add_argument(
        "--normalize-envelope",
        action="store_true",
        default=_env_flag("CHATRELAY_NORMALIZE_ENVELOPE"),
        help="Fill missing id/object/created/usage fields in non-streamed responses",
    )

    p_info = sub.add_parser("info", help="Print the active variant configuration")
    p_info.add_argument(
        "--variant",
        choices=sorted(VARIANTS),
        default=os.getenv("CHATRELAY_VARIANT", DEFAULT_VARIANT).strip().lower(),
    )
    p_info.add_argument("--json", action="store_true", help="Output as JSON")

    args = parser.parse_args(argv)

    if args.command == "serve":
        sys.exit(
            cmd_serve(
                host=args.host,
                port=args.port,
                variant=args.variant,
                verbose=args.verbose,
                timeout=args.timeout,
                normalize_envelope=args.normalize_envelope,
            )
        )
    elif args.command == "info":
        sys.exit(cmd_info(args.variant, args.json))
    else:
        parser.error("Unknown command")


if __name__ == "__main__":
    main()
