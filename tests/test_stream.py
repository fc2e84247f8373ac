from __future__ import annotations

import json

from chatrelay.utils import iter_sse_lines, normalize_completion_envelope, relay_chat_stream


def _relay(chunks, clean=False):
    return [out.decode("utf-8") for out in relay_chat_stream(iter_sse_lines(chunks), clean_reasoning=clean)]


def _payload(event: str):
    assert event.startswith("data: ") and event.endswith("\n\n")
    return json.loads(event[len("data: "):])


def test_lines_reassembled_across_chunks():
    chunks = [b"data: one\nda", b"ta: t", b"wo\n", b"\n"]
    assert list(iter_sse_lines(chunks)) == ["data: one", "data: two", ""]


def test_trailing_partial_line_is_discarded():
    assert list(iter_sse_lines([b"data: a\ndata: partial"])) == ["data: a"]


def test_crlf_and_split_multibyte_characters():
    encoded = "data: héllo\r\n".encode("utf-8")
    split = encoded.index(b"\xc3") + 1
    assert list(iter_sse_lines([encoded[:split], encoded[split:]])) == ["data: héllo"]


def test_line_iterator_is_lazy():
    consumed = []

    def chunks():
        for c in [b"data: 1\n", b"data: 2\n"]:
            consumed.append(c)
            yield c

    lines = iter_sse_lines(chunks())
    assert next(lines) == "data: 1"
    assert consumed == [b"data: 1\n"]


def test_chunk_split_mid_line_yields_one_event():
    chunks = [
        b'data: {"choices":[{"delta":{"content":"Hel',
        b'lo"}}]}\n\n',
    ]
    events = _relay(chunks)
    assert len(events) == 1
    assert _payload(events[0])["choices"][0]["delta"]["content"] == "Hello"


def test_non_json_lines_pass_through_and_stream_continues():
    chunks = [
        b": keep-alive\n\n",
        b"data: not-json\n\n",
        b'data: {"choices":[{"delta":{"content":"x"}}]}\n\n',
    ]
    events = _relay(chunks)
    assert events[0] == ": keep-alive\n"
    assert events[1] == "data: not-json\n\n"
    assert _payload(events[2])["choices"][0]["delta"]["content"] == "x"


def test_done_is_verbatim_and_ends_relay():
    chunks = [
        b'data: {"choices":[{"delta":{"content":"a"}}]}\n\n',
        b"data: [DONE]\n\n",
        b'data: {"choices":[{"delta":{"content":"after"}}]}\n\n',
    ]
    events = _relay(chunks)
    assert len(events) == 2
    assert events[-1] == "data: [DONE]\n\n"


def test_event_order_is_preserved():
    deltas = ["one", " two", " three", " four"]
    chunks = [
        ("data: " + json.dumps({"choices": [{"index": 0, "delta": {"content": d}}]}) + "\n\n").encode("utf-8")
        for d in deltas
    ]
    joined = b"".join(chunks)
    odd_chunks = [joined[i:i + 7] for i in range(0, len(joined), 7)]
    events = _relay(odd_chunks)
    assert [_payload(e)["choices"][0]["delta"]["content"] for e in events] == deltas


def test_cleaning_strips_reasoning_inside_stream():
    deltas = ["<think>", "hidden", "</think>", "Visible", " text"]
    chunks = [
        ("data: " + json.dumps({"choices": [{"index": 0, "delta": {"content": d}}]}) + "\n\n").encode("utf-8")
        for d in deltas
    ]
    events = _relay(chunks, clean=True)
    assert len(events) == len(deltas)
    text = "".join(_payload(e)["choices"][0]["delta"]["content"] for e in events)
    assert text == "Visible text"


def test_cleaning_flushes_held_text_on_finish():
    chunks = [
        b'data: {"choices":[{"index":0,"delta":{"content":"a <"}}]}\n\n',
        b'data: {"choices":[{"index":0,"delta":{},"finish_reason":"stop"}]}\n\n',
    ]
    events = _relay(chunks, clean=True)
    assert _payload(events[0])["choices"][0]["delta"]["content"] == "a "
    assert _payload(events[1])["choices"][0]["delta"]["content"] == "<"


def test_cleaning_flushes_on_finish_without_delta():
    chunks = [
        b'data: {"choices":[{"index":0,"delta":{"content":"x <"}}]}\n\n',
        b'data: {"choices":[{"index":0,"finish_reason":"stop"}]}\n\n',
    ]
    events = _relay(chunks, clean=True)
    assert len(events) == 2
    text = "".join(_payload(e)["choices"][0].get("delta", {}).get("content", "") for e in events)
    assert text == "x <"


def test_cleaning_flushes_held_text_before_done():
    chunks = [
        b'data: {"id":"c1","model":"m","created":7,"choices":[{"index":0,"delta":{"content":"see note ["}}]}\n\n',
        b"data: [DONE]\n\n",
    ]
    events = _relay(chunks, clean=True)
    assert len(events) == 3
    assert _payload(events[0])["choices"][0]["delta"]["content"] == "see note "
    tail = _payload(events[1])
    assert tail["id"] == "c1" and tail["model"] == "m" and tail["created"] == 7
    assert tail["object"] == "chat.completion.chunk"
    assert tail["choices"] == [{"index": 0, "delta": {"content": "["}, "finish_reason": None}]
    assert events[2] == "data: [DONE]\n\n"


def test_cleaning_releases_unclosed_span_at_eof():
    deltas = ["Use the ", "<think>", " tag to wrap thoughts.", " Then answer."]
    chunks = [
        ("data: " + json.dumps({"choices": [{"index": 0, "delta": {"content": d}}]}) + "\n\n").encode("utf-8")
        for d in deltas
    ]
    events = _relay(chunks, clean=True)
    assert len(events) == len(deltas) + 1
    text = "".join(_payload(e)["choices"][0]["delta"]["content"] for e in events)
    assert text == "Use the <think> tag to wrap thoughts. Then answer."


def test_no_extra_event_when_nothing_is_held():
    chunks = [
        b'data: {"choices":[{"index":0,"delta":{"content":"done"}}]}\n\n',
        b"data: [DONE]\n\n",
    ]
    assert len(_relay(chunks, clean=True)) == 2


def test_without_cleaning_content_is_untouched():
    chunks = [b'data: {"choices":[{"delta":{"content":"<think>x</think> y"}}]}\n\n']
    events = _relay(chunks)
    assert _payload(events[0])["choices"][0]["delta"]["content"] == "<think>x</think> y"


def test_normalize_envelope_fills_missing_fields_only():
    upstream = {
        "choices": [{"message": {"content": "hi"}, "finish_reason": "length"}],
        "usage": {"prompt_tokens": 4},
    }
    out = normalize_completion_envelope(upstream, "gpt-4", created=123)
    assert out["object"] == "chat.completion"
    assert out["created"] == 123
    assert out["model"] == "gpt-4"
    assert out["id"].startswith("chatcmpl-")
    assert out["choices"][0] == {
        "message": {"content": "hi", "role": "assistant"},
        "finish_reason": "length",
        "index": 0,
    }
    assert out["usage"] == {"prompt_tokens": 4, "completion_tokens": 0, "total_tokens": 0}
