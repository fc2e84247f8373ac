from __future__ import annotations

import re
from typing import Any, Dict, List, Tuple

# (opening, closing) delimiters of provider reasoning markup
REASONING_TAGS: Tuple[Tuple[str, str], ...] = (
    ("<think>", "</think>"),
    ("[Reasoning]", "[/Reasoning]"),
    ("[思考]", "[/思考]"),
    ("<thinking>", "</thinking>"),
)

_SPAN_PATTERNS = [
    re.compile(re.escape(opening) + r"[\s\S]*?" + re.escape(closing), re.IGNORECASE)
    for opening, closing in REASONING_TAGS
]
_OPENING_RE = re.compile("|".join(re.escape(opening) for opening, _ in REASONING_TAGS), re.IGNORECASE)
_CLOSING_RE = {
    opening.lower(): re.compile(re.escape(closing), re.IGNORECASE) for opening, closing in REASONING_TAGS
}
_OPENING_TAGS = tuple(opening.lower() for opening, _ in REASONING_TAGS)


def _remove_spans(text: str) -> str:
    cleaned = text
    while True:
        previous = cleaned
        for pattern in _SPAN_PATTERNS:
            cleaned = pattern.sub("", cleaned)
        if cleaned == previous:
            return cleaned


def clean_reasoning_text(text: str | None) -> str | None:
    """Strip reasoning/thinking spans from a complete text and trim it.

    Removal repeats until nothing matches, so markup that only becomes a
    span after an inner span is removed is handled too. An opening tag
    without its closing tag is left in place.
    """
    if not text or not isinstance(text, str):
        return text
    return _remove_spans(text).strip()


def _partial_tag_length(text: str, tags: Tuple[str, ...]) -> int:
    longest = max(len(tag) for tag in tags) - 1
    for size in range(min(len(text), longest), 0, -1):
        tail = text[-size:].lower()
        if any(tag.startswith(tail) for tag in tags):
            return size
    return 0


class ReasoningStreamFilter:
    """Suppress reasoning spans in text that arrives as incremental deltas.

    A span may open in one delta and close several deltas later. Text after
    an opening tag is withheld until its closing tag arrives and the span is
    dropped; if the stream ends first, :meth:`flush` releases the withheld
    text with its opening tag, matching :func:`clean_reasoning_text` on the
    whole text. A delta ending in what could be the start of a tag is held
    back until the next delta decides it. Output is never trimmed, so
    spacing between deltas survives.
    """

    def __init__(self) -> None:
        self._opening: str | None = None
        self._withheld = ""
        self._pending = ""

    @property
    def inside_reasoning(self) -> bool:
        return self._opening is not None

    def feed(self, text: str) -> str:
        buf = self._pending + (text or "")
        self._pending = ""
        out: List[str] = []
        while buf:
            if self._opening is not None:
                # a closing tag may straddle deltas
                held = self._withheld + buf
                match = _CLOSING_RE[self._opening.lower()].search(held)
                if match is None:
                    self._withheld = held
                    break
                buf = held[match.end():]
                self._opening = None
                self._withheld = ""
                continue

            match = _OPENING_RE.search(buf)
            if match is None:
                keep = _partial_tag_length(buf, _OPENING_TAGS)
                if keep:
                    out.append(buf[:-keep])
                    self._pending = buf[-keep:]
                else:
                    out.append(buf)
                break
            out.append(buf[: match.start()])
            self._opening = match.group(0)
            buf = buf[match.end():]
        return "".join(out)

    def flush(self) -> str:
        """Release held-back text at the end of a stream."""
        if self._opening is None:
            released = self._pending
        else:
            released = _remove_spans(self._opening + self._withheld + self._pending)
        self._opening = None
        self._withheld = ""
        self._pending = ""
        return released


def apply_system_directive(
    messages: List[Dict[str, Any]],
    system_prompt: str | None,
    system_prefix: str | None,
) -> List[Dict[str, Any]]:
    """Return a copy of ``messages`` carrying the fixed system directive.

    A leading system message gets ``system_prefix`` prepended to its content;
    otherwise a new system message with ``system_prompt`` is inserted first.
    """
    out = [dict(m) if isinstance(m, dict) else m for m in messages]
    first = out[0] if out else None
    if isinstance(first, dict) and first.get("role") == "system":
        if not system_prefix:
            return out
        content = first.get("content")
        if isinstance(content, list):
            first["content"] = [{"type": "text", "text": system_prefix}] + list(content)
        else:
            first["content"] = system_prefix + (content if isinstance(content, str) else "")
        return out
    if system_prompt:
        out.insert(0, {"role": "system", "content": system_prompt})
    return out
