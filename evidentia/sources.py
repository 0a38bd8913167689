from __future__ import annotations

import html
import re
from pathlib import Path
from typing import Optional

from evidentia.schemas.models import SourceDocument
from evidentia.utils.identifiers import normalize_doi
from evidentia.utils.logging import log_event

SUPPORTED_SUFFIXES = {".txt", ".md", ".markdown"}

_TITLE_LINE = re.compile(r"^\s*(?:#+\s*)?title\s*:\s*(.+)$", re.IGNORECASE | re.MULTILINE)
_AUTHORS_LINE = re.compile(r"^\s*(?:#+\s*)?authors?\s*:\s*(.+)$", re.IGNORECASE | re.MULTILINE)
_DOI_LINE = re.compile(r"^\s*doi\s*:\s*(.+)$", re.IGNORECASE | re.MULTILINE)
_AUTHOR_SPLIT = re.compile(r"\s*(?:;|,|\band\b|&)\s*")


def _clean_input_text(raw: str) -> str:
    cleaned = html.unescape(raw)
    cleaned = cleaned.replace("\r\n", "\n")
    cleaned = cleaned.replace("\u00a0", " ")
    cleaned = re.sub(r"[ \t]+", " ", cleaned)
    cleaned = re.sub(r"\n{3,}", "\n\n", cleaned)
    return cleaned.strip()


def derive_title(text: str) -> Optional[str]:
    match = _TITLE_LINE.search(text)
    if match:
        return match.group(1).strip() or None
    for line in text.splitlines():
        stripped = line.strip().lstrip("#").strip()
        if stripped:
            return stripped
    return None


def derive_authors(text: str) -> list[str]:
    match = _AUTHORS_LINE.search(text)
    if not match:
        return []
    return [name for name in (part.strip(" .") for part in _AUTHOR_SPLIT.split(match.group(1))) if name]


def derive_doi(text: str) -> Optional[str]:
    match = _DOI_LINE.search(text)
    if match:
        doi = normalize_doi(match.group(1))
        if doi:
            return doi
    # Fall back to the first DOI-shaped token in the opening part of the document.
    return normalize_doi(text[:5000])


def load_source_document(
    path: str | Path,
    *,
    title: Optional[str] = None,
    authors: Optional[list[str]] = None,
    doi: Optional[str] = None,
) -> SourceDocument:
    """Read a plain-text paper and derive its bibliographic hints.

    Explicit ``title``/``authors``/``doi`` override whatever the text suggests.
    """
    source_path = Path(path)
    if not source_path.exists():
        raise FileNotFoundError(f"Input file not found: {source_path}")
    if source_path.suffix.lower() not in SUPPORTED_SUFFIXES:
        raise ValueError(f"Unsupported source type {source_path.suffix!r}; expected plain text or markdown.")

    text = _clean_input_text(source_path.read_text(encoding="utf-8"))
    document = SourceDocument(
        path=str(source_path.resolve()),
        original_file_name=source_path.name,
        title=title or derive_title(text),
        authors=authors if authors else derive_authors(text),
        doi=doi or derive_doi(text),
        text=text,
    )
    log_event(
        "source.loaded",
        {
            "path": document.path,
            "chars": len(text),
            "title": document.title,
            "authors": len(document.authors),
            "doi": document.doi,
        },
    )
    return document
