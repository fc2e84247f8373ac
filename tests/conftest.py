from __future__ import annotations

import json
from typing import Any, Dict, List

import pytest

from chatrelay import upstream as upstream_module
from chatrelay.app import create_app


class FakeUpstream:
    def __init__(self, status_code: int = 200, body: Any = None, chunks: List[bytes] | None = None, text: str | None = None):
        self.status_code = status_code
        self._body = body
        self._chunks = chunks or []
        self._text = text
        self.closed = False

    @property
    def text(self) -> str:
        if self._text is not None:
            return self._text
        if self._body is not None:
            return json.dumps(self._body)
        return ""

    def json(self):
        if self._body is None:
            raise ValueError("no JSON body")
        return self._body

    def iter_content(self, chunk_size=None):
        for chunk in self._chunks:
            if isinstance(chunk, Exception):
                raise chunk
            yield chunk

    def close(self):
        self.closed = True


class RecordingPost:
    def __init__(self, response: FakeUpstream | Exception):
        self.response = response
        self.calls: List[Dict[str, Any]] = []

    def __call__(self, url, headers=None, json=None, stream=False, timeout=None):
        self.calls.append({"url": url, "headers": headers, "json": json, "stream": stream, "timeout": timeout})
        if isinstance(self.response, Exception):
            raise self.response
        return self.response

    @property
    def last_json(self) -> Dict[str, Any]:
        return self.calls[-1]["json"]


@pytest.fixture
def fake_post(monkeypatch):
    def _install(response: FakeUpstream | Exception) -> RecordingPost:
        recorder = RecordingPost(response)
        monkeypatch.setattr(upstream_module.requests, "post", recorder)
        return recorder

    return _install


@pytest.fixture
def make_client():
    def _make(variant: str = "creative", api_key: str | None = "test-key", **kwargs):
        app = create_app(variant=variant, api_key=api_key, **kwargs)
        app.config["TESTING"] = True
        return app.test_client()

    return _make


def completion_body(content: str) -> Dict[str, Any]:
    return {
        "id": "chatcmpl-upstream",
        "object": "chat.completion",
        "created": 1700000000,
        "model": "deepseek-v3.2",
        "choices": [{"index": 0, "message": {"role": "assistant", "content": content}, "finish_reason": "stop"}],
        "usage": {"prompt_tokens": 3, "completion_tokens": 5, "total_tokens": 8},
    }


def sse_events(raw: bytes) -> List[str]:
    return [block for block in raw.decode("utf-8").split("\n\n") if block]


