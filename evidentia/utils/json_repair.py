from __future__ import annotations

import json
import re
from typing import Any

from evidentia.errors import MalformedStructured
from evidentia.utils.text import to_ascii_punctuation

_FENCE_OPEN = re.compile(r"^\s*```[A-Za-z0-9_-]*[ \t]*\n?")
_FENCE_CLOSE = re.compile(r"\n?```\s*$")
_STRING_CLOSERS = {",", "}", "]", ":"}


def strip_code_fences(text: str) -> str:
    stripped = _FENCE_OPEN.sub("", text, count=1)
    stripped = _FENCE_CLOSE.sub("", stripped, count=1)
    return stripped.strip()


def _next_significant(text: str, start: int) -> str | None:
    for ch in text[start:]:
        if not ch.isspace():
            return ch
    return None


def escape_interior_quotes(text: str) -> str:
    """Single pass that escapes quotes which cannot be closing a JSON string.

    A quote seen inside a string closes it only when the next non-whitespace
    character is one of ``, } ] :`` or the end of input. Any other quote is an
    unescaped interior quote and gets a backslash. Raw control whitespace
    inside strings is escaped in the same pass.
    """
    out: list[str] = []
    in_string = False
    escaped = False
    for index, ch in enumerate(text):
        if not in_string:
            if ch == '"':
                in_string = True
            out.append(ch)
            continue
        if escaped:
            out.append(ch)
            escaped = False
        elif ch == "\\":
            out.append(ch)
            escaped = True
        elif ch == '"':
            follower = _next_significant(text, index + 1)
            if follower is None or follower in _STRING_CLOSERS:
                in_string = False
                out.append(ch)
            else:
                out.append('\\"')
        elif ch == "\n":
            out.append("\\n")
        elif ch == "\r":
            out.append("\\r")
        elif ch == "\t":
            out.append("\\t")
        else:
            out.append(ch)
    return "".join(out)


def repair_json_text(text: str) -> str:
    cleaned = strip_code_fences(text or "")
    cleaned = to_ascii_punctuation(cleaned)
    return escape_interior_quotes(cleaned)


def _outer_json_slice(text: str) -> str | None:
    starts = [pos for pos in (text.find("{"), text.find("[")) if pos >= 0]
    if not starts:
        return None
    start = min(starts)
    closer = "}" if text[start] == "{" else "]"
    end = text.rfind(closer)
    if end <= start:
        return None
    return text[start : end + 1]


def parse_near_json(text: str) -> Any:
    """Parse generated text that is supposed to be JSON, repairing common defects first."""
    raw = text or ""
    candidates: list[str] = []
    stripped = strip_code_fences(raw)
    candidates.append(stripped)
    repaired = repair_json_text(raw)
    candidates.append(repaired)
    sliced = _outer_json_slice(stripped)
    if sliced and sliced != stripped:
        candidates.append(escape_interior_quotes(to_ascii_punctuation(sliced)))

    last_error: Exception | None = None
    for candidate in candidates:
        if not candidate:
            continue
        try:
            return json.loads(candidate)
        except json.JSONDecodeError as exc:
            last_error = exc
    reason = str(last_error) if last_error else "empty response"
    raise MalformedStructured(f"Cleanup output is not valid JSON after repair: {reason}", raw_text=raw)
