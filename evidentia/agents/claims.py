from __future__ import annotations

from evidentia.agents.prompts import MAX_SOURCE_CHARS, build_cleanup_prompt
from evidentia.agents.stage import Stage, StageContext, StageRequest
from evidentia.errors import MissingDependency
from evidentia.schemas.models import ClaimsAnalysis, Entry, format_claims
from evidentia.utils.logging import log_event
from evidentia.utils.text import truncate_for_prompt

CLAIMS_PROMPT = """Objective: write a rigorous, concise, text-only claims analysis of one scientific paper covering its top 3 claims, the evidence behind them, and their gaps or limitations.

Context: the raw text below was extracted from a single paper. Work strictly from this text with no outside sources. Proceed under reasonable assumptions without asking for clarification and stop once the acceptance criteria are met.

Audience: research analysts and domain experts. Tone: neutral, precise, evidence-centred.

Constraints:
- Text only, no JSON.
- Attribute every claim and evidence item to a page, section, figure or table where the text allows.
- Copy numerical results exactly as written (effect sizes, CIs, p-values, N, timeframes).
- Flag OCR artefacts or ambiguities with [UNCLEAR] and state assumptions explicitly.

Output format:
Executive Summary: main findings, headline numbers, overall evidence strength (High/Moderate/Low).
Top 3 Claims and Evidence (C1-C3 only), each with:
  - one-sentence claim
  - evidence summary (design, sample, measures, analysis)
  - key numbers
  - source location
  - strength rating (High/Moderate/Low/Unclear), key assumptions, and evidence type (RCT, observational, simulation, qualitative, prior work)
Gaps & Limitations: each linked to C1-C3.
Methods Snapshot: brief overview of design and approach.
Risk-of-Bias / Quality Checklist: one line per item with met, partial, missing or unclear.
Open Questions & Next Steps: specific, testable follow-ups.

Strength rubric: High means appropriate design, adequate N, consistent results and clear statistics. Moderate means some limitations. Low means weak or speculative support. Unclear means insufficient detail.

QA: all sections present, numbers match the text, each claim has a strength rating and a location reference or [DETAIL NEEDED].

Raw paper text:
{text}"""

CLAIMS_CLEANUP_HEADER = """Objective: convert the single-paper claims summary into strict JSON for the claims view (at most 3 claims, C1-C3).

This is a deterministic conversion. Preserve content exactly and do not invent claims or numbers. Use "[DETAIL NEEDED]" where the notes say details are missing.

Schema (single JSON object):
{
  "executiveSummary": [string],
  "claims": [
    {"id": "C1", "claim": string, "evidenceSummary": string|null, "keyNumbers": [string],
     "source": string|null, "strength": "High"|"Moderate"|"Low"|"Unclear",
     "assumptions": string|null, "evidenceType": string|null}
  ],
  "gaps": [{"category": string, "detail": string, "relatedClaimIds": ["C1"|"C2"|"C3"]}],
  "methodsSnapshot": [string],
  "riskChecklist": [{"item": string, "status": "met"|"partial"|"missing"|"unclear", "note": string|null}],
  "openQuestions": [string],
  "crossPaperComparison": [string],
  "promptNotes": string|null
}"""


def build_claims_prompt(text: str, title: str | None = None, authors: list[str] | None = None, doi: str | None = None) -> tuple[str, bool]:
    body, truncated = truncate_for_prompt(text, MAX_SOURCE_CHARS)
    prompt = CLAIMS_PROMPT.format(text=body)
    metadata: list[str] = []
    if title:
        metadata.append(f"Title: {title}")
    if authors:
        metadata.append(f"Authors: {', '.join(authors)}")
    if doi:
        metadata.append(f"DOI: {doi}")
    if metadata:
        prompt += "\n\nPaper metadata:\n" + "\n".join(metadata)
    return prompt, truncated


class ClaimsStage(Stage):
    name = "claims"
    attribute = "claims_analysis"
    result_model = ClaimsAnalysis
    config_key = "claims"
    search = False

    def load_entry(self, ctx: StageContext, request: StageRequest) -> Entry:
        source = request.source or ctx.source
        if source is None or not source.text.strip():
            raise MissingDependency("source", "Source document text is required before claims can be generated.")
        ctx.source = source
        ctx.store.upsert(
            request.entry_id,
            {
                "label": source.title or request.entry_id,
                "sourceDocument": source.to_payload(),
            },
        )
        entry = ctx.store.get(request.entry_id)
        if entry is None:
            raise MissingDependency("entry", f"Entry {request.entry_id} could not be created.")
        return entry

    def build_discovery_prompt(self, entry: Entry, ctx: StageContext) -> str:
        source = ctx.source or entry.source_document
        prompt, truncated = build_claims_prompt(source.text, source.title, source.authors, source.doi)
        if truncated:
            log_event("stage.claims.input_truncated", {"entry_id": entry.id, "limit": MAX_SOURCE_CHARS})
        return prompt

    def build_cleanup_prompt(self, entry: Entry, notes: str) -> str:
        return build_cleanup_prompt(CLAIMS_CLEANUP_HEADER, notes)

    def render_text(self, structured: ClaimsAnalysis) -> str:
        return format_claims(structured)
