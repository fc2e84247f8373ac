from __future__ import annotations

import codecs
import json
import sys
import time
import uuid
from typing import Any, Dict, Iterable, Iterator

from .reasoning import ReasoningStreamFilter, clean_reasoning_text


def eprint(*args, **kwargs) -> None:
    print(*args, file=sys.stderr, **kwargs)


def iter_sse_lines(chunks: Iterable[bytes | str]) -> Iterator[str]:
    """Re-frame arbitrary upstream chunks into complete text lines.

    Chunks need not align on line (or UTF-8 character) boundaries. The
    trailing segment after the last newline waits for the next chunk and
    is discarded if the upstream ends without terminating it.
    """
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    buffer = ""
    for chunk in chunks:
        if not chunk:
            continue
        if isinstance(chunk, (bytes, bytearray)):
            buffer += decoder.decode(bytes(chunk))
        else:
            buffer += chunk
        lines = buffer.split("\n")
        buffer = lines.pop()
        for line in lines:
            yield line[:-1] if line.endswith("\r") else line


def _sse_data(line: str) -> str | None:
    if not line.startswith("data:"):
        return None
    data = line[len("data:"):]
    return data[1:] if data.startswith(" ") else data


def _clean_chunk(evt: Dict[str, Any], filters: Dict[int, ReasoningStreamFilter]) -> None:
    choices = evt.get("choices")
    if not isinstance(choices, list):
        return
    for pos, choice in enumerate(choices):
        if not isinstance(choice, dict):
            continue
        delta = choice.get("delta")
        finished = bool(choice.get("finish_reason"))
        if not isinstance(delta, dict) and not finished:
            continue
        idx = choice.get("index") if isinstance(choice.get("index"), int) else pos
        stream_filter = filters.setdefault(idx, ReasoningStreamFilter())
        if isinstance(delta, dict):
            content = delta.get("content")
            if isinstance(content, str) and content:
                delta["content"] = stream_filter.feed(content)
        if finished:
            tail = stream_filter.flush()
            if tail:
                if not isinstance(delta, dict):
                    delta = {}
                    choice["delta"] = delta
                delta["content"] = (delta.get("content") or "") + tail


def _flush_filters(filters: Dict[int, ReasoningStreamFilter], last: Dict[str, Any]) -> bytes | None:
    choices = []
    for idx in sorted(filters):
        tail = filters[idx].flush()
        if tail:
            choices.append({"index": idx, "delta": {"content": tail}, "finish_reason": None})
    if not choices:
        return None
    evt: Dict[str, Any] = {"object": "chat.completion.chunk"}
    for key in ("id", "created", "model"):
        if key in last:
            evt[key] = last[key]
    evt["choices"] = choices
    return f"data: {json.dumps(evt, ensure_ascii=False)}\n\n".encode("utf-8")


def relay_chat_stream(
    lines: Iterable[str],
    clean_reasoning: bool = False,
    verbose: bool = False,
    vlog=None,
) -> Iterator[bytes]:
    """Re-emit upstream SSE lines as chat.completion.chunk events.

    One upstream data line produces one output event, in the same order.
    ``[DONE]`` is forwarded verbatim and ends the relay. With cleaning on,
    text still held by a filter when the stream ends (``[DONE]`` or EOF
    without a ``finish_reason``) goes out in one extra event first.
    """
    filters: Dict[int, ReasoningStreamFilter] = {}
    last: Dict[str, Any] = {}
    for line in lines:
        if verbose and vlog:
            vlog(line)
        if not line.strip():
            continue
        data = _sse_data(line)
        if data is None:
            yield (line + "\n").encode("utf-8")
            continue
        if data.strip() == "[DONE]":
            tail = _flush_filters(filters, last)
            if tail:
                yield tail
            yield (line + "\n\n").encode("utf-8")
            return
        try:
            evt = json.loads(data)
        except ValueError:
            yield (line + "\n\n").encode("utf-8")
            continue
        if clean_reasoning and isinstance(evt, dict):
            last = evt
            _clean_chunk(evt, filters)
        yield f"data: {json.dumps(evt, ensure_ascii=False)}\n\n".encode("utf-8")
    tail = _flush_filters(filters, last)
    if tail:
        yield tail


def clean_completion_choices(completion: Dict[str, Any]) -> Dict[str, Any]:
    choices = completion.get("choices")
    if not isinstance(choices, list):
        return completion
    for choice in choices:
        if not isinstance(choice, dict):
            continue
        message = choice.get("message")
        if isinstance(message, dict) and isinstance(message.get("content"), str):
            message["content"] = clean_reasoning_text(message["content"])
    return completion


def normalize_completion_envelope(completion: Dict[str, Any], model: str, created: int | None = None) -> Dict[str, Any]:
    """Fill in missing chat.completion fields; existing upstream values win."""
    completion.setdefault("id", f"chatcmpl-{uuid.uuid4().hex[:24]}")
    completion.setdefault("object", "chat.completion")
    completion.setdefault("created", created if created is not None else int(time.time()))
    completion.setdefault("model", model)
    choices = completion.get("choices")
    if not isinstance(choices, list):
        choices = []
        completion["choices"] = choices
    for idx, choice in enumerate(choices):
        if not isinstance(choice, dict):
            continue
        choice.setdefault("index", idx)
        message = choice.get("message")
        if not isinstance(message, dict):
            message = {}
            choice["message"] = message
        message.setdefault("role", "assistant")
        message.setdefault("content", "")
        choice.setdefault("finish_reason", "stop")
    usage = completion.get("usage")
    if not isinstance(usage, dict):
        usage = {}
        completion["usage"] = usage
    for key in ("prompt_tokens", "completion_tokens", "total_tokens"):
        usage.setdefault(key, 0)
    return completion
