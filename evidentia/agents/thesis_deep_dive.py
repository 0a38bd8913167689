from __future__ import annotations

import re

from evidentia.agents.prompts import build_cleanup_prompt, require_structured
from evidentia.agents.stage import Stage, StageContext
from evidentia.database.resolver import index_for_entry
from evidentia.errors import MissingDependency
from evidentia.schemas.models import (
    DeepDiveGroup,
    DeepDivePaper,
    DeepDiveStructured,
    Entry,
    GroupsPaper,
    ResearchGroup,
    StageDraft,
    StageOutput,
    ThesisDeepDive,
    ThesisRecord,
)
from evidentia.utils.logging import log_event

DEEP_DIVE_CLEANUP_HEADER = """Objective: structure the analyst's deep-dive notes into JSON for the PhD thesis view.

Schema (single JSON object):
{
  "theses": [
    {"thesisTitle": string|null, "author": string|null, "year": number|null,
     "researchGroup": string|null, "principalInvestigator": string|null,
     "thesisUrl": string|null, "dataUrl": string|null, "dataSynopsis": string|null,
     "dataAccess": "public"|"restricted"|"unknown", "notes": string|null}
  ],
  "sourcesChecked": [string],
  "followUp": [string],
  "promptNotes": string|null
}

Do not invent theses or datasets."""

DEEP_DIVE_EXECUTION = """Execution (work end-to-end for this single group):
1. Identify the current principal investigator(s) and senior supervisors of the group. Confirm spelling and alternate names used in repositories.
2. Search the university or departmental thesis repository with the PI as advisor. Widen to national thesis portals when the institutional site is thin.
3. For each candidate thesis from roughly the last 10-12 years, open the PDF and find the data availability statement (or the abstract, methods and appendices).
4. Extract every concrete repository link (GitHub, Zenodo, Figshare, Dryad, institutional repositories, NCBI GEO/SRA). Confirm it is publicly reachable and note licence or README clues.
5. If no dataset is available, record why (embargo, on request, no statement) so another analyst knows what to try next.

Output per thesis, no prose outside this structure:
Thesis Title & Author:
Research Group / PI:
Direct Thesis Link:
Direct Data Link & Synopsis:

Then list the repositories searched and any follow-up items. Flag anything that needs escalation (paywalls, non-English portals)."""


def _group_key(value: str | None) -> str:
    return re.sub(r"[^a-z0-9]+", " ", (value or "").lower()).strip()


def papers_with_groups(entry: Entry) -> list[GroupsPaper]:
    groups = require_structured(entry, "research_groups", "research-groups")
    return [paper for paper in groups.papers if paper.groups]


def select_target(entry: Entry, paper_index: int = 0, group_index: int = 0) -> tuple[GroupsPaper, ResearchGroup]:
    candidates = papers_with_groups(entry)
    if not candidates:
        raise MissingDependency("research-groups", "Research groups output has no groups to investigate.")
    paper = candidates[min(max(paper_index, 0), len(candidates) - 1)]
    group = paper.groups[min(max(group_index, 0), len(paper.groups) - 1)]
    return paper, group


def existing_thesis_records(entry: Entry, group_name: str) -> list[ThesisRecord]:
    if entry.researcher_theses is None or entry.researcher_theses.structured is None:
        return []
    target = _group_key(group_name)
    return [record for record in entry.researcher_theses.structured.researchers if _group_key(record.group) == target]


def build_deep_dive_prompt(paper: DeepDivePaper, group: ResearchGroup, records: list[ThesisRecord]) -> str:
    lines = [
        "You are a deep research analyst specialising in academic theses and open datasets.",
        "",
        "Target paper:",
        f"- Title: {paper.title}",
    ]
    if paper.identifier:
        lines.append(f"- Identifier: {paper.identifier}")
    if paper.year:
        lines.append(f"- Publication year: {paper.year}")
    institution = f" - {group.institution}" if group.institution else ""
    lines.extend(["", "Focus research group:", f"- Name: {group.name}{institution}"])
    if group.website:
        lines.append(f"- Website: {group.website}")
    if group.notes:
        lines.append(f"- Focus: {group.notes}")
    if group.researchers:
        lines.append("- Known contacts:")
        for person in group.researchers:
            details = [value for value in (person.name, person.role, person.email) if value]
            lines.append(f"  - {' - '.join(details)}")
    if records:
        lines.extend(["", "Existing thesis signals (starting clues only, verify everything):"])
        for record in records:
            thesis = record.phd_thesis
            bits = [record.name]
            if thesis and thesis.year:
                bits.append(f"({thesis.year})")
            if thesis and thesis.title:
                bits.append(f'"{thesis.title}"')
            if thesis and thesis.institution:
                bits.append(thesis.institution)
            lines.append(f"- {' - '.join(bits)}")
            if thesis and thesis.url:
                lines.append(f"  Thesis link: {thesis.url}")
            lines.append(f"  Reported data availability: {record.data_availability}")
    lines.extend(
        [
            "",
            "Research goal:",
            f"- Surface PhD theses supervised by the PI or senior leads of {group.name} that release reusable datasets relevant to the paper. Confirm public access and capture direct dataset links.",
            "",
            DEEP_DIVE_EXECUTION,
        ]
    )
    return "\n".join(lines)


def format_deep_dive(structured: DeepDiveStructured) -> str:
    lines: list[str] = []
    for index, thesis in enumerate(structured.theses, start=1):
        lines.append(f"Thesis {index}")
        lines.append(f"  Title: {thesis.thesis_title or 'Not provided'}")
        lines.append(f"  Author: {thesis.author or 'Not provided'}")
        if thesis.year:
            lines.append(f"  Year: {thesis.year}")
        lines.append(f"  Thesis URL: {thesis.thesis_url or 'Not provided'}")
        lines.append(f"  Data URL: {thesis.data_url or 'Not provided'}")
        lines.append(f"  Data access: {thesis.data_access}")
        lines.append("")
    if not structured.theses:
        lines.append("No theses confirmed in this deep dive.")
    if structured.sources_checked:
        lines.append("Sources checked:")
        lines.extend(f"- {source}" for source in structured.sources_checked)
    if structured.follow_up:
        lines.append("Follow-up items:")
        lines.extend(f"- {item}" for item in structured.follow_up)
    return "\n".join(lines).strip()


class ThesisDeepDiveStage(Stage):
    """Optional stage: one research group at a time, appended to ``thesisDeepDives``."""

    name = "thesis-deep-dive"
    attribute = "thesis_deep_dives"
    result_model = DeepDiveStructured
    requires = (("verified_claims", "verified-claims"), ("research_groups", "research-groups"))
    config_key = "thesis_deep_dive"

    def _target(self, entry: Entry, ctx: StageContext) -> tuple[DeepDivePaper, ResearchGroup]:
        paper, group = select_target(
            entry,
            int(ctx.options.get("paper_index", 0)),
            int(ctx.options.get("group_index", 0)),
        )
        known = index_for_entry(entry).resolve(paper.title, paper.identifier)
        target = DeepDivePaper(
            title=paper.title,
            identifier=paper.identifier or (known.doi if known else None),
            year=known.year if known else None,
        )
        return target, group

    def load_entry(self, ctx: StageContext, request) -> Entry:
        entry = super().load_entry(ctx, request)
        self._target(entry, ctx)
        return entry

    def build_discovery_prompt(self, entry: Entry, ctx: StageContext) -> str:
        paper, group = self._target(entry, ctx)
        return build_deep_dive_prompt(paper, group, existing_thesis_records(entry, group.name))

    def build_cleanup_prompt(self, entry: Entry, notes: str) -> str:
        return build_cleanup_prompt(DEEP_DIVE_CLEANUP_HEADER, notes)

    def render_text(self, structured: DeepDiveStructured) -> str:
        return format_deep_dive(structured)

    def store_output(self, ctx: StageContext, entry: Entry, output: StageOutput, draft: StageDraft) -> None:
        paper, group = self._target(entry, ctx)
        dive = ThesisDeepDive(
            paper=paper,
            group=DeepDiveGroup(name=group.name, institution=group.institution, website=group.website),
            text=output.raw_text,
            structured=output.structured,
            generated_at=output.generated_at,
        )
        dives = [
            existing
            for existing in entry.thesis_deep_dives
            if not (
                _group_key(existing.paper.title) == _group_key(paper.title)
                and _group_key(existing.group.name) == _group_key(group.name)
            )
        ]
        dives.append(dive)
        drafts = {key: value.to_payload() for key, value in entry.drafts.items()}
        drafts[self.name] = draft.to_payload()
        ctx.store.upsert(
            entry.id,
            {"thesisDeepDives": [item.to_payload() for item in dives], "drafts": drafts},
        )
        log_event(
            "stage.thesis-deep-dive.stored",
            {"entry_id": entry.id, "paper": paper.title, "group": group.name, "dives": len(dives)},
        )
