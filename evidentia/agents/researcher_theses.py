from __future__ import annotations

import json
from typing import Any

from evidentia.agents.prompts import (
    MAX_AUTHORS_PER_PAPER,
    MAX_GROUPS_PER_PAPER,
    MAX_THESIS_RESEARCHERS,
    NO_USER_IN_LOOP,
    build_cleanup_prompt,
    require_structured,
)
from evidentia.agents.stage import Stage, StageContext
from evidentia.database.resolver import PaperIndex, index_for_entry
from evidentia.errors import MissingDependency
from evidentia.schemas.models import Entry, ResearchGroupsResult, ResearcherThesesResult, format_researcher_theses

THESES_PROMPT = """You will receive a JSON array of researchers. Each item has a name, an optional email, the research group they belong to, and the paper that surfaced them (with year and DOI when known).

For each researcher:
1. Find their most recent publication (2022 or later when possible): title, year, venue and URL.
2. Find their PhD thesis if it can be verified: title, year, institution and URL. If none is found say so.
3. State whether data for their latest publication is publicly available: yes, no or unknown.

Guidelines:
- Prefer official records, institutional repositories and thesis databases.
- If you cannot confirm a field write 'Not found' rather than guessing.
- Keep the notes short: one block per researcher, in the order given.

Researchers:
{researchers}"""

THESES_CLEANUP_HEADER = """Objective: convert the analyst's researcher notes into strict JSON for the researcher theses view.

Schema (single JSON object):
{
  "researchers": [
    {"name": string, "email": string|null, "group": string|null,
     "latestPublication": {"title": string|null, "year": number|null, "venue": string|null, "url": string|null},
     "phdThesis": {"title": string|null, "year": number|null, "institution": string|null, "url": string|null} | null,
     "dataAvailability": "yes"|"no"|"unknown"}
  ],
  "promptNotes": string|null
}

Set phdThesis to null when no thesis was found. Keep researchers in the order of the notes."""


def collect_researchers(groups: ResearchGroupsResult, index: PaperIndex) -> list[dict[str, Any]]:
    """Flatten authors and group members into at most MAX_THESIS_RESEARCHERS unique people."""
    researchers: list[dict[str, Any]] = []
    seen: set[str] = set()
    for paper in groups.papers:
        known = index.resolve(paper.title, paper.identifier)
        paper_ref = {
            "title": paper.title,
            "year": known.year if known else None,
            "doi": known.doi if known else None,
        }
        people = [(person, None) for person in paper.authors[:MAX_AUTHORS_PER_PAPER]]
        for group in paper.groups[:MAX_GROUPS_PER_PAPER]:
            people.extend((person, group.name) for person in group.researchers)
        for person, group_name in people:
            key = person.name.lower()
            if key in seen:
                continue
            seen.add(key)
            researchers.append(
                {"name": person.name, "email": person.email, "group": group_name, "paper": paper_ref}
            )
            if len(researchers) >= MAX_THESIS_RESEARCHERS:
                return researchers
    return researchers


class ResearcherThesesStage(Stage):
    name = "researcher-theses"
    attribute = "researcher_theses"
    result_model = ResearcherThesesResult
    requires = (("research_groups", "research-groups"),)
    config_key = "researcher_theses"

    def load_entry(self, ctx: StageContext, request) -> Entry:
        entry = super().load_entry(ctx, request)
        groups = require_structured(entry, "research_groups", "research-groups")
        if not groups.all_people():
            raise MissingDependency("research-groups", "Research groups output lists no researchers to look up.")
        return entry

    def build_discovery_prompt(self, entry: Entry, ctx: StageContext) -> str:
        groups = require_structured(entry, "research_groups", "research-groups")
        researchers = collect_researchers(groups, index_for_entry(entry))
        return NO_USER_IN_LOOP + "\n\n" + THESES_PROMPT.format(researchers=json.dumps(researchers, indent=2))

    def build_cleanup_prompt(self, entry: Entry, notes: str) -> str:
        return build_cleanup_prompt(THESES_CLEANUP_HEADER, notes)

    def finalize(self, entry: Entry, structured: ResearcherThesesResult) -> ResearcherThesesResult:
        index = index_for_entry(entry)
        for record in structured.researchers:
            publication = record.latest_publication
            known = index.resolve(publication.title, publication.url)
            if known is None:
                continue
            if publication.year is None and known.year is not None:
                publication.year = known.year
            if publication.url is None and known.doi:
                publication.url = f"https://doi.org/{known.doi}"
        return structured

    def render_text(self, structured: ResearcherThesesResult) -> str:
        return format_researcher_theses(structured)
