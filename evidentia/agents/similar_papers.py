from __future__ import annotations

from evidentia.agents.prompts import (
    MAX_METHOD_SIGNALS,
    MAX_SEARCH_QUERIES,
    MAX_SUMMARY_LINES,
    NO_USER_IN_LOOP,
    build_cleanup_prompt,
    bullet_block,
    claims_reference_block,
    derive_claim_signals,
    paper_authors,
    paper_identifier,
    paper_title,
    require_structured,
    search_phrase,
)
from evidentia.agents.stage import Stage, StageContext
from evidentia.schemas.models import ClaimsAnalysis, Entry, SimilarPapersResult, format_similar_papers

SIMILAR_PAPERS_GUIDELINES = """Similar Papers (3-5 entries). Start each paper with its number:
1. Identifier: <DOI or stable URL>
   Title: <paper title>
   Authors: <comma-separated names>
   Year: <year or 'Not reported'>
   Venue: <journal or conference or 'Not reported'>
   Cluster: <Sample and model | Field deployments | Insight primers>
   Why relevant: <2 sentences on method overlap>
   Overlap highlights:
   - <short fragment 1>
   - <short fragment 2>
   - <short fragment 3>
   Method matrix:
   - Sample / model: <text>
   - Materials: <text>
   - Equipment: <text>
   - Procedure: <text>
   - Outcome summary: <text>
   Gaps or uncertainties: <anything missing or risky>

Guidelines:
- Anchor choices to the claims brief: pull method cues, evidence strength and gaps from the sections above.
- Prefer papers with executable method overlap (instrumentation, controls, sample handling).
- Map each similar paper back to the brief and cite the claim or gap it supports or extends.
- Write 'Not reported' inside any bullet you cannot fill.
- Keep each method matrix bullet to roughly 12-18 words.

Respond using these headings exactly. No JSON yet."""

SIMILAR_PAPERS_CLEANUP_HEADER = """Objective: convert the analyst's similar-papers notes into strict JSON for the similar papers view.

Schema (single JSON object):
{
  "sourcePaper": {"summary": string, "keyMethodSignals": [string], "searchQueries": [string]},
  "similarPapers": [
    {"identifier": string, "title": string, "doi": string|null, "url": string|null,
     "authors": [string], "year": number|null, "venue": string|null,
     "clusterLabel": "Sample and model"|"Field deployments"|"Insight primers",
     "whyRelevant": string,
     "methodOverlap": [string, string, string],
     "methodComparison": {"sample": string, "materials": string, "equipment": string,
                          "procedure": string, "outcomes": string},
     "gaps": string|null}
  ],
  "promptNotes": string|null
}

methodOverlap must hold exactly three short fragments. Use "Not reported" for any methodComparison field the notes leave empty."""


def build_similar_papers_prompt(entry: Entry, analysis: ClaimsAnalysis) -> str:
    signals = derive_claim_signals(analysis)
    title = paper_title(entry)
    summary_lines = signals.summary_lines or ["Summary not provided in claims brief."]
    method_signals = signals.method_signals or ["No method signals extracted from claims brief. Focus on method-level overlap."]
    queries = signals.search_queries or [q for q in (search_phrase(title), "similar research methods") if q]

    lines = [
        "You are collecting research notes for the Similar Papers view. A cleanup step converts them to JSON afterwards.",
        NO_USER_IN_LOOP,
        "You are given a structured claims brief for the source paper. Treat it as the authoritative context and do not re-open the paper.",
        "When you reference the brief, name the section (Key Claims C1/C2, Gaps, Methods Snapshot) so provenance stays traceable.",
        "",
        "Source Paper (claims brief synthesis):",
        f"- Title: {title}",
        f"- Identifier: {paper_identifier(entry)}",
        f"- Authors: {paper_authors(entry)}",
        "- Summary:",
        *bullet_block(summary_lines[:MAX_SUMMARY_LINES], indent="  - "),
        "- Key method signals:",
        *bullet_block(method_signals[:MAX_METHOD_SIGNALS], indent="  - "),
        "- Search queries:",
        *bullet_block(queries[:MAX_SEARCH_QUERIES], indent="  - "),
    ]
    reference = claims_reference_block(signals)
    if reference:
        lines.extend(["", *reference])
    lines.extend(["", SIMILAR_PAPERS_GUIDELINES])
    return "\n".join(lines)


class SimilarPapersStage(Stage):
    name = "similar-papers"
    attribute = "similar_papers"
    result_model = SimilarPapersResult
    requires = (("claims_analysis", "claims"),)
    config_key = "similar_papers"

    def build_discovery_prompt(self, entry: Entry, ctx: StageContext) -> str:
        analysis = require_structured(entry, "claims_analysis", "claims")
        return build_similar_papers_prompt(entry, analysis)

    def build_cleanup_prompt(self, entry: Entry, notes: str) -> str:
        return build_cleanup_prompt(SIMILAR_PAPERS_CLEANUP_HEADER, notes)

    def render_text(self, structured: SimilarPapersResult) -> str:
        return format_similar_papers(structured)
