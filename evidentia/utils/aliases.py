from __future__ import annotations

import re
from typing import Any

STRENGTHS = ("High", "Moderate", "Low", "Unclear")
VERIFICATION_STATUSES = ("Verified", "Partially Verified", "Contradicted", "Insufficient Evidence")
CONFIDENCE_LEVELS = ("High", "Moderate", "Low")
RISK_STATUSES = ("met", "partial", "missing", "unclear")
DATA_AVAILABILITY = ("yes", "no", "unknown")
DATA_ACCESS = ("public", "restricted", "unknown")
EVIDENCE_SOURCES = ("Similar Paper", "Research Group", "Patent", "Thesis")
CLUSTER_LABELS = ("Sample and model", "Field deployments", "Insight primers")

# Fallbacks are the weakest member of each closed set.
STRENGTH_FALLBACK = "Unclear"
STATUS_FALLBACK = "Insufficient Evidence"
CONFIDENCE_FALLBACK = "Low"
RISK_FALLBACK = "unclear"
AVAILABILITY_FALLBACK = "unknown"
ACCESS_FALLBACK = "unknown"
EVIDENCE_SOURCE_FALLBACK = "Similar Paper"
CLUSTER_FALLBACK = "Insight primers"

_STRENGTH_MAP = {
    "high": "High",
    "strong": "High",
    "moderate": "Moderate",
    "medium": "Moderate",
    "low": "Low",
    "weak": "Low",
    "unclear": "Unclear",
    "tentative": "Unclear",
    "unknown": "Unclear",
}

_STATUS_MAP = {
    "verified": "Verified",
    "partially verified": "Partially Verified",
    "partiallyverified": "Partially Verified",
    "partial": "Partially Verified",
    "partly verified": "Partially Verified",
    "contradicted": "Contradicted",
    "refuted": "Contradicted",
    "insufficient evidence": "Insufficient Evidence",
    "insufficientevidence": "Insufficient Evidence",
    "insufficient": "Insufficient Evidence",
    "unverified": "Insufficient Evidence",
}

_CONFIDENCE_MAP = {
    "high": "High",
    "moderate": "Moderate",
    "medium": "Moderate",
    "low": "Low",
}

_AVAILABILITY_MAP = {
    "yes": "yes",
    "true": "yes",
    "public": "yes",
    "available": "yes",
    "no": "no",
    "false": "no",
    "unavailable": "no",
    "unknown": "unknown",
}

_ACCESS_MAP = {
    "public": "public",
    "open": "public",
    "restricted": "restricted",
    "embargoed": "restricted",
    "upon request": "restricted",
    "on request": "restricted",
    "unknown": "unknown",
}

_EVIDENCE_SOURCE_MAP = {
    "similar paper": "Similar Paper",
    "similar papers": "Similar Paper",
    "similarpaper": "Similar Paper",
    "paper": "Similar Paper",
    "papers": "Similar Paper",
    "research group": "Research Group",
    "research groups": "Research Group",
    "researchgroup": "Research Group",
    "group": "Research Group",
    "patent": "Patent",
    "patents": "Patent",
    "thesis": "Thesis",
    "phd thesis": "Thesis",
    "theses": "Thesis",
    "phd theses": "Thesis",
}

_CLUSTER_MAP = {
    "sample and model": "Sample and model",
    "sample & model": "Sample and model",
    "field deployments": "Field deployments",
    "field deployment": "Field deployments",
    "insight primers": "Insight primers",
    "insight primer": "Insight primers",
}


def _fold(value: Any) -> str:
    if not isinstance(value, str):
        return ""
    text = value.replace("_", " ").replace("-", " ")
    text = re.sub(r"[\[\]\"'`*.]", "", text)
    return re.sub(r"\s+", " ", text.strip().lower())


def normalize_choice(value: Any, table: dict[str, str], fallback: str) -> str:
    folded = _fold(value)
    if not folded:
        return fallback
    if folded in table:
        return table[folded]
    return table.get(folded.replace(" ", ""), fallback)


def normalize_strength(value: Any) -> str:
    return normalize_choice(value, _STRENGTH_MAP, STRENGTH_FALLBACK)


def normalize_verification_status(value: Any) -> str:
    return normalize_choice(value, _STATUS_MAP, STATUS_FALLBACK)


def normalize_confidence(value: Any) -> str:
    return normalize_choice(value, _CONFIDENCE_MAP, CONFIDENCE_FALLBACK)


def normalize_risk_status(value: Any) -> str:
    folded = _fold(value)
    if folded in RISK_STATUSES:
        return folded
    if not folded or folded in {"na", "n/a", "not applicable"}:
        return RISK_FALLBACK
    words = set(folded.split())
    if "yes" in words:
        return "met"
    if "no" in words:
        return "missing"
    if "partially" in words or "partly" in words:
        return "partial"
    return RISK_FALLBACK


def normalize_data_availability(value: Any) -> str:
    if isinstance(value, bool):
        return "yes" if value else "no"
    return normalize_choice(value, _AVAILABILITY_MAP, AVAILABILITY_FALLBACK)


def normalize_data_access(value: Any) -> str:
    return normalize_choice(value, _ACCESS_MAP, ACCESS_FALLBACK)


def canonical_evidence_source(value: Any) -> str | None:
    """Alias lookup for evidence sources; None when the value names no known source."""
    folded = _fold(value)
    if not folded:
        return None
    return _EVIDENCE_SOURCE_MAP.get(folded) or _EVIDENCE_SOURCE_MAP.get(folded.replace(" ", ""))


def normalize_cluster_label(value: Any) -> str:
    return normalize_choice(value, _CLUSTER_MAP, CLUSTER_FALLBACK)
