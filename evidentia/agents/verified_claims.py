from __future__ import annotations

from evidentia.agents.prompts import MAX_SIMILAR_PAPERS, build_cleanup_prompt, paper_title, require_structured
from evidentia.agents.stage import Stage, StageContext
from evidentia.schemas.models import (
    ClaimsAnalysis,
    Entry,
    PatentsResult,
    ResearchGroupsResult,
    ResearcherThesesResult,
    SimilarPapersResult,
    VerifiedClaimsResult,
    format_verified_claims,
)

VERIFICATION_METHODOLOGY = """=== VERIFICATION METHODOLOGY ===

Be sceptical. Treat every claim as unverified until the evidence says otherwise. 'Partially Verified' is the normal outcome; 'Verified' is rare.

For each claim (C1, C2, ...):
1. Independence: evidence from the same group or authors is not independent. 'Verified' needs 3+ independent sources.
2. Data availability: no public data or code means the claim cannot be 'Verified'.
3. Statistical rigour: check N, controls, p-values and effect sizes. Note anything missing.
4. Replication: without replication by another group the claim is 'Partially Verified' at best.
5. Method soundness: is the design appropriate, are confounders handled, are limitations acknowledged?
6. Contradictions: actively look for them. Any contradiction rules out 'Verified'. Prior-art patents can count.

Status definitions:
- Verified: 3+ independent confirming sources, no contradictions, public data and code, replicated, statistically sound.
- Partially Verified: 1-2 supporting sources, or gaps, limitations or missing replication; directionally right but needs more validation.
- Contradicted: evidence refutes the claim or replication failed.
- Insufficient Evidence: no supporting source, or the claim is too vague to check.

Confidence: High only for Verified claims with overwhelming evidence. Moderate for Partially Verified with reasonable support. Low otherwise.

=== DELIVERABLE ===

For each claim give:
- Claim ID and the original claim verbatim
- Verification status
- Supporting evidence: source type (Similar Paper / Research Group / Thesis / Patent), title or identifier, one-line relevance
- Contradicting evidence in the same format, or 'None found'
- Verification summary: 2-3 sentences with caveats and what would strengthen the case
- Confidence level

Finish with an Overall Assessment paragraph on the paper's claim validity."""

VERIFIED_CLAIMS_CLEANUP_HEADER = """Objective: convert the analyst's verified-claims notes into strict JSON for the review view.

Schema (single JSON object):
{
  "claims": [
    {"claimId": "C1", "originalClaim": string,
     "verificationStatus": "Verified"|"Partially Verified"|"Contradicted"|"Insufficient Evidence",
     "confidenceLevel": "High"|"Moderate"|"Low",
     "supportingEvidence": [{"source": "Similar Paper"|"Research Group"|"Patent"|"Thesis", "title": string, "relevance": string}],
     "contradictingEvidence": [same shape],
     "verificationSummary": string}
  ],
  "overallAssessment": string|null,
  "promptNotes": string|null
}

While converting:
- Keep the claim order of the notes and the analyst's wording, minus markdown and bullet symbols.
- Move bracketed prefixes such as "[Patent]" into "source" and remove them from titles.
- Placeholders like "None found" or "No contradictions" become empty arrays.
- Collapse multi-line relevance notes into one sentence per evidence item."""


def summarise_claims(analysis: ClaimsAnalysis) -> list[str]:
    lines: list[str] = []
    for claim in analysis.claims:
        lines.append(f"{claim.id}: {claim.claim}")
        lines.append(f"   Original Strength: {claim.strength}")
        if claim.evidence_summary:
            lines.append(f"   Evidence: {claim.evidence_summary}")
        lines.append("")
    return lines


def summarise_similar_papers(result: SimilarPapersResult | None) -> list[str]:
    lines = ["SIMILAR PAPERS:"]
    if result is None:
        return lines + ["  None available", ""]
    for index, paper in enumerate(result.similar_papers[:MAX_SIMILAR_PAPERS], start=1):
        lines.append(f"Paper {index}: {paper.title}")
        if paper.authors:
            lines.append(f"  Authors: {', '.join(paper.authors)}")
        if paper.year:
            lines.append(f"  Year: {paper.year}")
        if paper.why_relevant:
            lines.append(f"  Relevance: {paper.why_relevant}")
        highlights = [item for item in paper.method_overlap if item != "Not reported"]
        if highlights:
            lines.append(f"  Key Findings: {'; '.join(highlights)}")
        lines.append("")
    return lines


def summarise_research_groups(result: ResearchGroupsResult | None) -> list[str]:
    lines = ["RESEARCH GROUPS:"]
    if result is None:
        return lines + ["  None available", ""]
    for index, paper in enumerate(result.papers, start=1):
        lines.append(f"Research Context {index}: {paper.title}")
        for group in paper.groups:
            lines.append(f"  Group: {group.name}")
            if group.institution:
                lines.append(f"    Institution: {group.institution}")
            if group.notes:
                lines.append(f"    Focus: {group.notes}")
        lines.append("")
    return lines


def summarise_theses(result: ResearcherThesesResult | None) -> list[str]:
    lines = ["PHD THESES:"]
    if result is None:
        return lines + ["  None available", ""]
    for index, record in enumerate(result.researchers, start=1):
        lines.append(f"Researcher {index}: {record.name}")
        thesis = record.phd_thesis
        if thesis and thesis.title:
            lines.append(f"  Thesis: {thesis.title}")
            if thesis.year:
                lines.append(f"  Year: {thesis.year}")
            if thesis.institution:
                lines.append(f"  Institution: {thesis.institution}")
        if record.latest_publication.title:
            lines.append(f"  Latest Publication: {record.latest_publication.title}")
        lines.append(f"  Data Available: {record.data_availability}")
        lines.append("")
    return lines


def summarise_patents(result: PatentsResult | None) -> list[str]:
    lines = ["RELATED PATENTS:"]
    if result is None:
        return lines + ["  None available", ""]
    for index, patent in enumerate(result.patents, start=1):
        lines.append(f"Patent {index}: {patent.patent_number}")
        lines.append(f"  Title: {patent.title}")
        if patent.assignee:
            lines.append(f"  Assignee: {patent.assignee}")
        if patent.overlap_with_paper.claim_ids:
            lines.append(f"  Overlaps with claims: {', '.join(patent.overlap_with_paper.claim_ids)}")
        if patent.overlap_with_paper.summary:
            lines.append(f"  Technical Overlap: {patent.overlap_with_paper.summary}")
        lines.append("")
    return lines


def _structured(entry: Entry, attribute: str):
    output = getattr(entry, attribute)
    return output.structured if output is not None else None


def build_verification_prompt(entry: Entry, analysis: ClaimsAnalysis) -> str:
    lines = [
        "You are a scientific claim verification analyst.",
        "",
        f"Paper: {paper_title(entry)}",
    ]
    if entry.source_document.doi:
        lines.append(f"DOI: {entry.source_document.doi}")
    lines.extend(
        [
            "",
            "Task: cross-reference each claim below against all available evidence from similar papers, research groups, PhD theses and patents. Decide the verification status, list supporting and contradicting evidence, and assess confidence.",
            "",
            "=== CLAIMS TO VERIFY ===",
            "",
            *summarise_claims(analysis),
            "=== AVAILABLE EVIDENCE ===",
            "",
            *summarise_similar_papers(_structured(entry, "similar_papers")),
            *summarise_research_groups(_structured(entry, "research_groups")),
            *summarise_theses(_structured(entry, "researcher_theses")),
            *summarise_patents(_structured(entry, "patents")),
            VERIFICATION_METHODOLOGY,
        ]
    )
    claims_text = entry.claims_analysis.raw_text if entry.claims_analysis else ""
    if claims_text.strip():
        lines.extend(["", "Claims brief (verbatim for reference):", claims_text.strip()])
    return "\n".join(lines)


class VerifiedClaimsStage(Stage):
    name = "verified-claims"
    attribute = "verified_claims"
    result_model = VerifiedClaimsResult
    requires = (("patents", "patents"), ("claims_analysis", "claims"))
    config_key = "verified_claims"

    def build_discovery_prompt(self, entry: Entry, ctx: StageContext) -> str:
        analysis = require_structured(entry, "claims_analysis", "claims")
        return build_verification_prompt(entry, analysis)

    def build_cleanup_prompt(self, entry: Entry, notes: str) -> str:
        return build_cleanup_prompt(VERIFIED_CLAIMS_CLEANUP_HEADER, notes)

    def render_text(self, structured: VerifiedClaimsResult) -> str:
        return format_verified_claims(structured)
