from __future__ import annotations

import re
from typing import Any, Iterable

TYPOGRAPHIC_TO_ASCII: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile("[\u2018\u2019\u201a\u201b\u2032]"), "'"),
    (re.compile("[\u201c\u201d\u201e\u201f\u2033]"), '"'),
    (re.compile("[\u2013\u2014\u2015\u2212]"), "-"),
    (re.compile("\u2026"), "..."),
    (re.compile("[\u00a0\u2007\u2009\u202f]"), " "),
    (re.compile("[\u200b-\u200f\u2060\ufeff]"), ""),
)

_MARKDOWN_LINK = re.compile(r"\[([^\]]+)\]\((https?://[^)\s]+)\)")
_FOOTNOTE_MARKER = re.compile(r"\s*\[(?:\d+|[a-z])\](?!\()")
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]")

_URL_MALFORMED = re.compile(r"^(https://[^\]\s]+)\]")
_URL_MARKDOWN = re.compile(r"\[[^\]]*\]\((https://[^)\s]+)\)")
_URL_TOKEN = re.compile(r"https://[^\s\[\]()<>\"']+")
_URL_WELL_FORMED = re.compile(r"^https://[A-Za-z0-9-]+(?:\.[A-Za-z0-9-]+)*\.[A-Za-z]{2,}(?::\d+)?(?:[/?#]\S*)?$")

_EMAIL_MAILTO_MARKDOWN = re.compile(r"\[([^\]]+)\]\(mailto:([^)]+)\)", re.IGNORECASE)
_EMAIL_MAILTO = re.compile(r"mailto:([^\s)\]>]+)", re.IGNORECASE)
_EMAIL_MARKDOWN = re.compile(r"\[([^\]]+)\]\([^)]+\)")
_EMAIL_SHAPE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def to_ascii_punctuation(value: str) -> str:
    for pattern, replacement in TYPOGRAPHIC_TO_ASCII:
        value = pattern.sub(replacement, value)
    return value


def collapse_whitespace(value: str) -> str:
    return re.sub(r"\s+", " ", value).strip()


def clean_plain_text(value: Any) -> str:
    """Normalise free text produced by the generation service for display.

    Typographic punctuation becomes ASCII, markdown links become ``label (url)``,
    footnote markers are removed, each line is trimmed and runs of blank lines
    collapse to one.
    """
    if not isinstance(value, str):
        return ""
    text = value.replace("\r\n", "\n").replace("\r", "\n")
    text = to_ascii_punctuation(text)
    text = _CONTROL_CHARS.sub(" ", text)
    text = _MARKDOWN_LINK.sub(lambda m: f"{m.group(1).strip()} ({m.group(2)})", text)
    text = _FOOTNOTE_MARKER.sub("", text)
    lines: list[str] = []
    for raw in text.split("\n"):
        line = re.sub(r"[ \t]+", " ", raw).strip()
        if not line and (not lines or not lines[-1]):
            continue
        lines.append(line)
    return "\n".join(lines).strip()


def clean_url_strict(value: Any) -> str | None:
    """Return the first well-formed https URL in ``value`` or None."""
    if not isinstance(value, str):
        return None
    text = to_ascii_punctuation(value).strip()
    if not text:
        return None

    candidate: str | None = None
    malformed = _URL_MALFORMED.match(text)
    if malformed:
        candidate = malformed.group(1)
    else:
        markdown = _URL_MARKDOWN.search(text)
        if markdown:
            candidate = markdown.group(1)
        else:
            token = _URL_TOKEN.search(text)
            if token:
                candidate = token.group(0)
    if not candidate:
        return None
    candidate = candidate.rstrip(".,;:!*")
    if not _URL_WELL_FORMED.match(candidate):
        return None
    return candidate


def clean_email_strict(value: Any) -> str | None:
    """Unwrap markdown/mailto email wrappers and lower-case; None when no address is present."""
    if not isinstance(value, str):
        return None
    text = to_ascii_punctuation(value).strip()
    if not text:
        return None

    extracted: str | None = None
    mailto_markdown = _EMAIL_MAILTO_MARKDOWN.search(text)
    if mailto_markdown:
        extracted = mailto_markdown.group(1)
        if "@" not in extracted:
            extracted = mailto_markdown.group(2)
    else:
        mailto = _EMAIL_MAILTO.search(text)
        if mailto:
            extracted = mailto.group(1)
        else:
            markdown = _EMAIL_MARKDOWN.search(text)
            if markdown and "@" in markdown.group(1):
                extracted = markdown.group(1)
            else:
                extracted = text

    email = extracted.strip().strip("<>\"'()[]").rstrip(".,;:").lower()
    if not _EMAIL_SHAPE.match(email):
        return None
    return email


def split_string_list(value: Any) -> list[str]:
    """Coerce a list-ish value into cleaned strings; bare strings split on newlines, bullets, ';' and '|'."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        out = []
        for item in value:
            if isinstance(item, (int, float)) and not isinstance(item, bool):
                item = str(item)
            cleaned = clean_plain_text(item)
            if cleaned:
                out.append(cleaned)
        return out
    if isinstance(value, str):
        cleaned = clean_plain_text(value)
        parts = re.split(r"\n|[\u2022\u00b7]|;|\|", cleaned)
        return [part.strip() for part in parts if part.strip()]
    return []


def limit_list(items: Iterable[Any], limit: int) -> list[str]:
    out: list[str] = []
    for item in items or []:
        cleaned = clean_plain_text(item)
        if cleaned:
            out.append(cleaned)
        if len(out) >= limit:
            break
    return out


def truncate_for_prompt(text: str, limit: int) -> tuple[str, bool]:
    if len(text) <= limit:
        return text, False
    return f"{text[:limit]}\n\n[Truncated input to {limit} characters for the request]", True


def slugify(value: str, max_length: int = 80) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", to_ascii_punctuation(value).lower()).strip("-")
    slug = slug[:max_length].strip("-")
    return slug or "entry"
