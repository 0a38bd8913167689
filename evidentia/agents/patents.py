from __future__ import annotations

from evidentia.agents.prompts import (
    MAX_METHOD_SIGNALS,
    MAX_SUMMARY_LINES,
    build_cleanup_prompt,
    bullet_block,
    paper_title,
    require_structured,
)
from evidentia.agents.stage import Stage, StageContext
from evidentia.schemas.models import Claim, ClaimsAnalysis, Entry, PatentsResult, format_patents

MAX_PATENT_CLAIMS = 12

PATENT_STEPS = """Constraints:
- Return 3-5 patents with the strongest technical overlap. Quality over quantity.
- Include granted patents and published applications.
- Prefer filings from the last 10 years when relevance is comparable.
- Look for substantive technical overlap rather than keyword matches.

For each patent provide:
- Patent number (for example US1234567B2 or WO2020123456A1)
- Title
- Assignee
- Filing date and grant date if granted
- A 1-2 sentence abstract
- The paper claims it relates to (for example C1, C3)
- Technical overlap summary: 2-3 sentences on HOW the patent claims map to specific methods in the paper
- Google Patents URL

Steps:
1. Pull the technical elements out of each paper claim: algorithms, compositions, materials, apparatus, methods or applications.
2. Search Google Patents, USPTO, EPO and WIPO with those elements.
3. Read the claims section of each candidate and note which patent claims cover similar approaches.
4. Keep the 3-5 patents with the most substantive overlap.
5. If fewer than 3 qualify, return what you found and say which paper claims lack patent coverage."""

PATENTS_CLEANUP_HEADER = """Objective: convert the analyst's patent search notes into strict JSON for the patents view.

Schema (single JSON object):
{
  "patents": [
    {"patentNumber": string, "title": string, "assignee": string|null,
     "filingDate": string|null, "grantDate": string|null, "abstract": string|null,
     "overlapWithPaper": {"claimIds": [string], "summary": string},
     "url": string}
  ],
  "promptNotes": string|null
}

Every patent needs a url. When the notes have none, build it as https://patents.google.com/patent/{PATENT_NUMBER}, for example https://patents.google.com/patent/US7729863B2. Dates use YYYY-MM-DD when available. overlapWithPaper.claimIds reference the paper claim ids (C1, C2, ...)."""


def claim_line(claim: Claim) -> str:
    segments = [f"{claim.id}: {claim.claim}"]
    if claim.evidence_type:
        segments.append(f"Evidence type: {claim.evidence_type}")
    segments.append(f"Strength: {claim.strength}")
    return "\n".join(segments)


def build_patents_prompt(entry: Entry, analysis: ClaimsAnalysis, claims_text: str) -> str:
    lines = [
        "Objective: identify 3-5 patents that validate the paper's claims through substantive technical overlap.",
        "",
        "Context: you have a claims brief from a scientific paper. Search patent databases for granted patents and published applications that cover similar technical approaches.",
        "",
        f"Paper: {paper_title(entry)}",
    ]
    if entry.source_document.doi:
        lines.append(f"DOI: {entry.source_document.doi}")
    if analysis.methods_snapshot:
        lines.extend(["", "Method snapshot (claims brief cues):"])
        lines.extend(bullet_block(analysis.methods_snapshot[:MAX_METHOD_SIGNALS]))
    if analysis.executive_summary:
        lines.extend(["", "Claims brief summary cues:"])
        lines.extend(bullet_block(analysis.executive_summary[:MAX_SUMMARY_LINES]))
    lines.extend(["", "Claims from the paper:", ""])
    for claim in analysis.claims[:MAX_PATENT_CLAIMS]:
        lines.extend([claim_line(claim), ""])
    lines.append(PATENT_STEPS)
    if claims_text.strip():
        lines.extend(["", "Claims brief (verbatim for reference):", claims_text.strip()])
    return "\n".join(lines)


class PatentsStage(Stage):
    name = "patents"
    attribute = "patents"
    result_model = PatentsResult
    requires = (("researcher_theses", "researcher-theses"), ("claims_analysis", "claims"))
    config_key = "patents"

    def build_discovery_prompt(self, entry: Entry, ctx: StageContext) -> str:
        analysis = require_structured(entry, "claims_analysis", "claims")
        claims_text = entry.claims_analysis.raw_text if entry.claims_analysis else ""
        return build_patents_prompt(entry, analysis, claims_text)

    def build_cleanup_prompt(self, entry: Entry, notes: str) -> str:
        return build_cleanup_prompt(PATENTS_CLEANUP_HEADER, notes)

    def finalize(self, entry: Entry, structured: PatentsResult) -> PatentsResult:
        analysis = require_structured(entry, "claims_analysis", "claims")
        known = set(analysis.claim_ids())
        for patent in structured.patents:
            overlap = patent.overlap_with_paper
            overlap.claim_ids = [claim_id for claim_id in overlap.claim_ids if claim_id in known]
        return structured

    def render_text(self, structured: PatentsResult) -> str:
        return format_patents(structured)
