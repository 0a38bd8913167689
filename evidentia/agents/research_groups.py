from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from evidentia.agents.generation import GenerationResult
from evidentia.agents.prompts import (
    BATCH_SEPARATOR,
    MAX_AUTHORS_PER_PAPER,
    MAX_GROUPS_PER_PAPER,
    MAX_METHOD_SIGNALS,
    MAX_SIMILAR_PAPERS,
    MAX_SUMMARY_LINES,
    build_cleanup_prompt,
    paper_identifier,
    paper_title,
    require_structured,
)
from evidentia.agents.stage import Stage, StageContext
from evidentia.schemas.models import Entry, ResearchGroupsResult, format_research_groups
from evidentia.utils.logging import log_event

BATCH_SIZE = 2

RESEARCH_GROUPS_PROMPT = """Objective: for EACH paper below, identify the research groups behind it and gather contact details for the FIRST {max_authors} AUTHORS listed.

Context: you are building a collaboration shortlist for research analysts. Web search is enabled. Use it immediately and do not ask for permission.

Papers to analyse:
{papers}
For each paper:
1. Take the first {max_authors} authors from the author list (or all of them if fewer).
2. For each author find: full name as listed, institutional email, current role (PI, Professor, Postdoc, PhD Student, ...), ORCID, and public profiles (Google Scholar, LinkedIn, lab or personal website).
3. Identify up to {max_groups} research groups or labs tied to the paper: group name, institution, website, a one-line note on focus, and named members with their roles.

Output format:

Paper 1: <Paper Title> (<Identifier or 'Source'>)
Author 1: <Full Name>
  Email: <address or 'Not found'>
  Role: <position or 'Not found'>
  ORCID: <0000-0000-0000-0000 or 'Not found'>
  Profiles:
    - Google Scholar: <URL or 'Not found'>
    - LinkedIn: <URL or 'Not found'>
    - Website: <URL or 'Not found'>
Group: <Group name>
  Institution: <institution>
  Website: <URL or 'Not found'>
  Notes: <focus of the group>
  Members:
    - <Name> (<role>) <email or 'Not found'>

Important:
- Write 'Not found' when information genuinely cannot be located after searching.
- Prefer institutional emails over personal ones.
- Only list profiles that are publicly accessible.

Begin searching now."""

RESEARCH_GROUPS_CLEANUP_HEADER = """Objective: convert the analyst's author and research group notes into strict JSON for the author contacts view.

Schema (single JSON object):
{
  "papers": [
    {"title": string, "identifier": string|null,
     "authors": [PERSON],
     "groups": [{"name": string, "institution": string|null, "website": string|null,
                 "notes": string|null, "researchers": [PERSON]}]}
  ],
  "promptNotes": string|null
}
PERSON = {"name": string, "email": string|null, "role": string|null, "orcid": string|null,
          "profiles": [{"platform": string, "url": string}]}

Each paper lists at most 3 authors in paper order. ORCID must look like 0000-0000-0000-0000 or be null. Only include profiles that have a real URL; common platforms are Google Scholar, LinkedIn, Personal Website, ResearchGate and Twitter."""


@dataclass
class PaperBrief:
    title: str
    identifier: str
    authors: list[str]
    is_source: bool = False
    summary: Optional[str] = None
    method_signals: Optional[list[str]] = None


def collect_papers(entry: Entry) -> list[PaperBrief]:
    """Source paper first, then the first similar papers, ready for batching."""
    analysis = require_structured(entry, "claims_analysis", "claims")
    similar = require_structured(entry, "similar_papers", "similar-papers")
    papers = [
        PaperBrief(
            title=paper_title(entry),
            identifier=paper_identifier(entry),
            authors=entry.source_document.authors[:MAX_AUTHORS_PER_PAPER],
            is_source=True,
            summary=" ".join(analysis.executive_summary[:MAX_SUMMARY_LINES]) or None,
            method_signals=analysis.methods_snapshot[:MAX_METHOD_SIGNALS],
        )
    ]
    for paper in similar.similar_papers[:MAX_SIMILAR_PAPERS]:
        if paper.doi:
            identifier = f"DOI: {paper.doi}"
        elif paper.url:
            identifier = f"URL: {paper.url}"
        else:
            identifier = paper.identifier or "No identifier"
        papers.append(
            PaperBrief(title=paper.title, identifier=identifier, authors=paper.authors[:MAX_AUTHORS_PER_PAPER])
        )
    return papers


def render_paper_section(papers: list[PaperBrief], start_index: int) -> str:
    lines: list[str] = []
    for offset, paper in enumerate(papers):
        number = start_index + offset
        label = "SOURCE PAPER" if paper.is_source else f"SIMILAR PAPER {number - 1}"
        lines.append(f"{number}. {label}:")
        lines.append(f"   Title: {paper.title}")
        lines.append(f"   Identifier: {paper.identifier}")
        lines.append("   Authors (in order):")
        if paper.authors:
            lines.extend(f"     {idx}. {name}" for idx, name in enumerate(paper.authors, start=1))
        else:
            lines.append("     Authors not reported")
        if paper.summary:
            lines.append(f"   Summary: {paper.summary}")
        if paper.method_signals:
            lines.append("   Method signals:")
            lines.extend(f"     - {signal}" for signal in paper.method_signals)
        lines.append("")
    return "\n".join(lines)


def batch_prompts(papers: list[PaperBrief], batch_size: int = BATCH_SIZE) -> list[str]:
    prompts = []
    for start in range(0, len(papers), batch_size):
        section = render_paper_section(papers[start : start + batch_size], start + 1)
        prompts.append(
            RESEARCH_GROUPS_PROMPT.format(
                papers=section,
                max_authors=MAX_AUTHORS_PER_PAPER,
                max_groups=MAX_GROUPS_PER_PAPER,
            )
        )
    return prompts


class ResearchGroupsStage(Stage):
    name = "research-groups"
    attribute = "research_groups"
    result_model = ResearchGroupsResult
    requires = (("similar_papers", "similar-papers"), ("claims_analysis", "claims"))
    config_key = "research_groups"

    async def discover(self, entry: Entry, ctx: StageContext) -> GenerationResult:
        prompts = batch_prompts(collect_papers(entry))
        notes: list[str] = []
        truncated = False
        # Batches run one after another; the notes are only useful together.
        for number, prompt in enumerate(prompts, start=1):
            log_event(
                "stage.research-groups.batch",
                {"entry_id": entry.id, "batch": number, "total_batches": len(prompts)},
            )
            result = await ctx.generation.discover(
                label=f"{self.name} discovery batch {number}/{len(prompts)}",
                prompt=prompt,
                model=self.discovery_model,
                max_output_tokens=self.discovery_limit,
            )
            notes.append(result.text)
            truncated = truncated or result.truncated
        return GenerationResult(text=BATCH_SEPARATOR.join(notes), truncated=truncated)

    def build_cleanup_prompt(self, entry: Entry, notes: str) -> str:
        return build_cleanup_prompt(RESEARCH_GROUPS_CLEANUP_HEADER, notes)

    def render_text(self, structured: ResearchGroupsResult) -> str:
        return format_research_groups(structured)
