from __future__ import annotations

import pytest

from evidentia.agents.claims import build_claims_prompt
from evidentia.agents.prompts import CLEANUP_CLOSING, MAX_SOURCE_CHARS, NOTES_DIVIDER, build_cleanup_prompt
from evidentia.agents.research_groups import batch_prompts, collect_papers
from evidentia.agents.researcher_theses import collect_researchers
from evidentia.database.resolver import PaperIndex
from evidentia.errors import MissingDependency
from evidentia.schemas.models import Entry, ResearchGroupsResult

LETTERS = "ABCDEFGH"


def _entry() -> Entry:
    similar = [
        {"title": f"Study {letter}", "authors": [f"Person {letter}{n}" for n in range(1, 6)]}
        for letter in LETTERS
    ]
    return Entry.model_validate(
        {
            "id": "alpha",
            "generatedAt": "2026-01-01T00:00:00+00:00",
            "updatedAt": "2026-01-01T00:00:00+00:00",
            "sourceDocument": {
                "title": "Alpha paper",
                "doi": "10.1000/alpha",
                "authors": ["Ana Lee", "Ben Kim", "Cara Diaz", "Dan Roe"],
            },
            "claimsAnalysis": {
                "generatedAt": "2026-01-01T00:00:00+00:00",
                "structured": {"claims": [{"id": "C1", "claim": "Biochar raises soil carbon."}]},
            },
            "similarPapers": {
                "generatedAt": "2026-01-01T00:00:00+00:00",
                "structured": {"similarPapers": similar},
            },
        }
    )


def test_research_group_batches_keep_first_papers_and_authors() -> None:
    papers = collect_papers(_entry())
    assert [paper.title for paper in papers] == ["Alpha paper"] + [f"Study {letter}" for letter in "ABCDE"]
    assert papers[0].is_source

    prompts = batch_prompts(papers)
    assert len(prompts) == 3
    assert "SOURCE PAPER" in prompts[0]
    assert "Study A" in prompts[0]

    joined = "\n".join(prompts)
    assert "Study F" not in joined
    assert "Person A3" in joined
    assert "Person A4" not in joined
    assert "Cara Diaz" in joined
    assert "Dan Roe" not in joined


def test_batches_refuse_missing_similar_papers() -> None:
    entry = _entry()
    entry.similar_papers = None
    with pytest.raises(MissingDependency) as info:
        collect_papers(entry)
    assert info.value.stage == "similar-papers"


def test_thesis_researchers_respect_author_and_group_caps() -> None:
    groups = ResearchGroupsResult.model_validate(
        {
            "papers": [
                {
                    "title": "Alpha paper",
                    "authors": [{"name": f"Author {n}"} for n in range(1, 6)],
                    "groups": [
                        {"name": f"Lab {n}", "researchers": [{"name": f"Member {n}"}]} for n in range(1, 9)
                    ],
                }
            ]
        }
    )
    names = [person["name"] for person in collect_researchers(groups, PaperIndex())]
    assert names == ["Author 1", "Author 2", "Author 3"] + [f"Member {n}" for n in range(1, 7)]


def test_cleanup_prompt_embeds_notes_verbatim() -> None:
    notes = "  Claim C1 is supported.\n\nSee table 2.  \n"
    prompt = build_cleanup_prompt("Convert the notes.", notes)
    assert f"{NOTES_DIVIDER}\n{notes}\n---" in prompt
    assert prompt.startswith("Convert the notes.")
    assert prompt.endswith(CLEANUP_CLOSING)


def test_claims_prompt_truncates_long_source_text() -> None:
    prompt, truncated = build_claims_prompt("x" * (MAX_SOURCE_CHARS + 10), title="Alpha paper")
    assert truncated
    assert f"[Truncated input to {MAX_SOURCE_CHARS} characters for the request]" in prompt
    assert "x" * (MAX_SOURCE_CHARS + 1) not in prompt
    assert "Title: Alpha paper" in prompt

    short, truncated = build_claims_prompt("Short paper text.")
    assert not truncated
    assert "Truncated input" not in short
