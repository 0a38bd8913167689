from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from evidentia.errors import MissingDependency
from evidentia.schemas.models import ClaimsAnalysis, Entry, StageOutput
from evidentia.utils.text import clean_plain_text, limit_list

NOTES_DIVIDER = "--- ANALYST NOTES ---"
NOTES_END = "---"
CLEANUP_CLOSING = "Return the JSON object now."
BATCH_SEPARATOR = "\n\n---\n\n"

MAX_SIMILAR_PAPERS = 5
MAX_AUTHORS_PER_PAPER = 3
MAX_GROUPS_PER_PAPER = 6
MAX_SUMMARY_LINES = 3
MAX_METHOD_SIGNALS = 4
MAX_CLAIMS_OVERVIEW = 6
MAX_SEARCH_QUERIES = 5
MAX_QUERY_WORDS = 5
MAX_GAP_HIGHLIGHTS = 4
MAX_RISK_ITEMS = 4
MAX_OPEN_QUESTIONS = 5
MAX_THESIS_RESEARCHERS = 10
MAX_SOURCE_CHARS = 30000

NO_USER_IN_LOOP = (
    "You do not have a live user in the loop. Do not ask clarifying questions or offer option menus; "
    "decide and move straight to the notes."
)

CLEANUP_RULES = """Conversion rules:
- Output a single JSON object. No markdown, no code fences, no commentary before or after it.
- Use only information present in the analyst notes. Do not invent people, papers, patents or links.
- Use null for any scalar the notes do not provide and [] for any missing list.
- URLs must be plain https:// strings. Do not wrap them in markdown.
- Use straight ASCII quotes and hyphens. Escape any double quote that appears inside a string value.
- Put caveats about missing or uncertain information in promptNotes."""


def build_cleanup_prompt(header: str, notes: str) -> str:
    """Wrap discovery notes for the strict JSON conversion call."""
    return "\n".join(
        [
            header.strip(),
            "",
            CLEANUP_RULES,
            "",
            NOTES_DIVIDER,
            notes,
            NOTES_END,
            "",
            CLEANUP_CLOSING,
        ]
    )


def bullet_block(items: Iterable[str], indent: str = "- ", empty: str | None = None) -> list[str]:
    lines = [f"{indent}{item}" for item in items if item]
    if not lines and empty:
        lines.append(f"{indent}{empty}")
    return lines


def require_structured(entry: Optional[Entry], attribute: str, stage_name: str) -> Any:
    """Return the structured record of an upstream stage or raise MissingDependency."""
    if entry is None:
        raise MissingDependency(stage_name)
    output: Optional[StageOutput] = getattr(entry, attribute, None)
    if output is None or output.structured is None:
        raise MissingDependency(stage_name)
    return output.structured


def search_phrase(text: str) -> str:
    cleaned = clean_plain_text(text).lower()
    cleaned = re.sub(r"[^a-z0-9\s-]+", " ", cleaned)
    unique: list[str] = []
    for token in cleaned.split():
        if len(token) <= 3 or token in unique:
            continue
        unique.append(token)
        if len(unique) >= MAX_QUERY_WORDS:
            break
    return " ".join(unique)


@dataclass
class ClaimSignals:
    summary_lines: list[str] = field(default_factory=list)
    method_signals: list[str] = field(default_factory=list)
    search_queries: list[str] = field(default_factory=list)
    claims_overview: list[str] = field(default_factory=list)
    gap_highlights: list[str] = field(default_factory=list)
    methods_snapshot: list[str] = field(default_factory=list)
    risk_items: list[str] = field(default_factory=list)
    open_questions: list[str] = field(default_factory=list)


def derive_claim_signals(analysis: ClaimsAnalysis) -> ClaimSignals:
    """Condense a claims brief into the capped cue lists later prompts embed."""
    signals = ClaimSignals(
        summary_lines=limit_list(analysis.executive_summary, MAX_SUMMARY_LINES),
        methods_snapshot=limit_list(analysis.methods_snapshot, MAX_METHOD_SIGNALS),
        open_questions=limit_list(analysis.open_questions, MAX_OPEN_QUESTIONS),
    )
    for claim in analysis.claims[:MAX_METHOD_SIGNALS]:
        signals.method_signals.append(f"{claim.id}: {claim.evidence_summary or claim.claim}")
    for claim in analysis.claims[:MAX_CLAIMS_OVERVIEW]:
        signals.claims_overview.append(f"{claim.id} [{claim.strength}]: {claim.claim}")
    for claim in analysis.claims:
        if len(signals.search_queries) >= MAX_SEARCH_QUERIES:
            break
        phrase = search_phrase(claim.claim or claim.evidence_summary or "")
        if phrase and phrase not in signals.search_queries:
            signals.search_queries.append(phrase)
    for gap in analysis.gaps[:MAX_GAP_HIGHLIGHTS]:
        related = f" (claims: {', '.join(gap.related_claim_ids)})" if gap.related_claim_ids else ""
        signals.gap_highlights.append(f"{gap.category}: {gap.detail}{related}")
    for risk in analysis.risk_checklist[:MAX_RISK_ITEMS]:
        note = f" ({risk.note})" if risk.note else ""
        signals.risk_items.append(f"{risk.item} - {risk.status}{note}")
    return signals


def claims_reference_block(signals: ClaimSignals) -> list[str]:
    sections: list[tuple[str, list[str]]] = [
        ("Claims brief references:", signals.claims_overview),
        ("Gaps and limitations to address:", signals.gap_highlights),
        ("Methods snapshot cues:", signals.methods_snapshot),
        ("Risk and quality notes:", signals.risk_items),
        ("Open questions to pursue:", signals.open_questions),
    ]
    lines: list[str] = []
    for heading, items in sections:
        if not items:
            continue
        if lines:
            lines.append("")
        lines.append(heading)
        lines.extend(bullet_block(items))
    return lines


def paper_identifier(entry: Entry) -> str:
    source = entry.source_document
    return source.doi or source.path or "Not provided"


def paper_authors(entry: Entry) -> str:
    return ", ".join(entry.source_document.authors) or "Not provided"


def paper_title(entry: Entry) -> str:
    return entry.source_document.title or entry.label or "Unknown title"
