from __future__ import annotations

import re
from typing import Any

from evidentia.utils.text import clean_plain_text

DOI_PATTERN = re.compile(r"10\.\d{4,9}/[^\s\"'<>\]\[]+", re.IGNORECASE)
_DOI_LEADING = re.compile(r"^[\s\"'(<\[]+")
_DOI_TRAILING = re.compile(r"[\s<>\]\).,;:]+$")
_ORCID_PATTERN = re.compile(r"\b(\d{4}-\d{4}-\d{4}-\d{3}[\dX])\b", re.IGNORECASE)


def normalize_doi(value: Any) -> str | None:
    """Pull the first DOI-shaped token out of ``value`` and canonicalise it."""
    if not isinstance(value, str) or not value.strip():
        return None
    match = DOI_PATTERN.search(value)
    if not match:
        return None
    doi = _DOI_LEADING.sub("", match.group(0))
    doi = _DOI_TRAILING.sub("", doi)
    # Unbalanced closing parens come from prose like "(doi:10.1/x)".
    while doi.endswith(")") and doi.count(")") > doi.count("("):
        doi = doi[:-1]
    return doi.lower() or None


def normalize_title_key(value: Any) -> str | None:
    cleaned = clean_plain_text(value)
    if not cleaned:
        return None
    return re.sub(r"\s+", " ", cleaned).lower()


def normalize_orcid(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    match = _ORCID_PATTERN.search(value)
    if not match:
        return None
    return match.group(1).upper()


def compact_patent_number(value: Any) -> str:
    text = clean_plain_text(value)
    return re.sub(r"[\s,/-]+", "", text).upper()
