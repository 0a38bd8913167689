from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from evidentia.agents.generation import GenerationResult
from evidentia.agents.manager import entry_state, run_pipeline, stage_index
from evidentia.agents.similar_papers import SimilarPapersStage
from evidentia.agents.stage import StageContext, StageRequest
from evidentia.agents.thesis_deep_dive import ThesisDeepDiveStage
from evidentia.database.store import LibraryStore
from evidentia.errors import GenerationTimeout
from evidentia.schemas.models import SourceDocument
from evidentia.utils.logging import PIPELINE_EVENTS


CLEANUP_PAYLOADS: dict[str, Any] = {
    "claims": {
        "executiveSummary": ["Biochar raises soil organic carbon by 12%."],
        "claims": [
            {"id": "C1", "claim": "Biochar raises soil organic carbon.", "strength": "High"},
            {"id": "C2", "claim": "The effect persists for two seasons.", "strength": "Moderate"},
            {"id": "C3", "claim": "Microbial activity explains the effect.", "strength": "Unclear"},
        ],
        "methodsSnapshot": ["Randomised field plots"],
    },
    "similar-papers": {
        "sourcePaper": {"summary": "Field study of biochar."},
        "similarPapers": [
            {"title": "Biochar field trial", "doi": "10.1000/beta", "year": 2021, "authors": ["Ben Kim"]},
            {"title": "Soil carbon meta-analysis", "year": "not reported", "authors": "Cara Diaz"},
            {"title": "Char amendments in loam", "url": "https://example.org/loam", "year": 2019},
        ],
    },
    "research-groups": {
        "papers": [
            {
                "title": "Alpha paper",
                "identifier": "10.1000/alpha",
                "authors": [{"name": "Ana Lee", "email": "[a@x.edu](mailto:a@x.edu)"}],
                "groups": [
                    {
                        "name": "Lee Soil Lab",
                        "institution": "X University",
                        "researchers": [{"name": "Ana Lee", "role": "PI"}],
                    },
                    {"name": "Kim Carbon Group", "institution": "Y Institute"},
                ],
            }
        ]
    },
    "researcher-theses": {
        "researchers": [
            {
                "name": "Ana Lee",
                "group": "Lee Soil Lab",
                "latestPublication": {"title": "Alpha paper", "venue": "Soil Journal"},
                "phdThesis": {"title": "Carbon in loam soils", "year": 2014, "url": "Not found"},
                "dataAvailability": "unknown",
            }
        ]
    },
    "patents": {
        "patents": [
            {
                "patentNumber": "US 7,729,863 B2",
                "title": "Soil amendment",
                "overlapWithPaper": {"claimIds": ["C1", "C9"], "summary": "Same char process."},
            }
        ]
    },
    "verified-claims": {
        "claims": [
            {
                "claimId": "C1",
                "originalClaim": "Biochar raises soil organic carbon.",
                "verificationStatus": "PartiallyVerified",
                "confidenceLevel": "High",
                "supportingEvidence": [
                    {"source": "Similar Paper", "title": "Biochar field trial", "relevance": "Same design"}
                ],
                "contradictingEvidence": [],
                "verificationSummary": "Supported by one trial.",
            }
        ]
    },
    "thesis-deep-dive": {
        "theses": [
            {
                "thesis_title": "Carbon in loam soils",
                "author": "Ana Lee",
                "data_url": "https://zenodo.org/record/1",
                "data_access": "open",
            }
        ],
        "sources_checked": ["X University repository"],
        "follow_up": ["Ask the lab for raw plots"],
    },
}


class FakeGeneration:
    """Returns canned notes for discovery calls and canned JSON for cleanup calls."""

    def __init__(self, cleanup: dict[str, Any] | None = None) -> None:
        self.cleanup = dict(CLEANUP_PAYLOADS if cleanup is None else cleanup)
        self.labels: list[str] = []
        self.prompts: list[str] = []

    async def generate(
        self, *, label: str, prompt: str, model: str, max_output_tokens: int, search: bool = False
    ) -> GenerationResult:
        self.labels.append(label)
        self.prompts.append(prompt)
        stage = label.split(" ")[0]
        if label.endswith("cleanup"):
            payload = self.cleanup[stage]
            if isinstance(payload, Exception):
                raise payload
            text = payload if isinstance(payload, str) else json.dumps(payload)
            return GenerationResult(text=text, model=model)
        return GenerationResult(text=f"Discovery notes for {stage}.", model=model)

    async def discover(self, **kwargs: Any) -> GenerationResult:
        return await self.generate(search=True, **kwargs)

    async def convert(self, **kwargs: Any) -> GenerationResult:
        return await self.generate(search=False, **kwargs)

    def calls_for(self, stage: str) -> list[str]:
        return [label for label in self.labels if label.split(" ")[0] == stage]


def _source() -> SourceDocument:
    return SourceDocument(
        path="/papers/alpha.txt",
        original_file_name="alpha.txt",
        title="Alpha paper",
        authors=["Ana Lee", "Ben Kim"],
        doi="10.1000/alpha",
        text="Alpha paper. Biochar raises soil organic carbon by 12% (N=40, p<0.01).",
    )


def _context(tmp_path: Path, generation: FakeGeneration, **kwargs: Any) -> StageContext:
    store = LibraryStore(str(tmp_path / "library.db"))
    return StageContext(store=store, generation=generation, source=_source(), **kwargs)


@pytest.mark.asyncio
async def test_end_to_end_alpha(tmp_path: Path) -> None:
    generation = FakeGeneration()
    ctx = _context(tmp_path, generation)
    try:
        artifacts = await run_pipeline(ctx, "alpha")
        assert artifacts.completed
        assert [r.status for r in artifacts.results] == ["completed"] * 6
        assert artifacts.state == "VerifiedReady"
        assert set(artifacts.step_timings_seconds) == {
            "claims",
            "similar-papers",
            "research-groups",
            "researcher-theses",
            "patents",
            "verified-claims",
        }

        entry = ctx.store.get("alpha")
        claims = entry.claims_analysis.structured
        assert [(c.id, c.strength) for c in claims.claims] == [("C1", "High"), ("C2", "Moderate"), ("C3", "Unclear")]

        papers = entry.similar_papers.structured.similar_papers
        assert len(papers) == 3
        assert papers[1].year is None

        groups = entry.research_groups.structured.papers[0]
        assert len(groups.groups) == 2
        assert groups.authors[0].email == "a@x.edu"

        record = entry.researcher_theses.structured.researchers[0]
        assert record.phd_thesis.url is None

        patent = entry.patents.structured.patents[0]
        assert patent.assignee is None
        assert patent.overlap_with_paper.claim_ids == ["C1"]
        assert patent.url == "https://patents.google.com/patent/US7729863B2"

        verified = entry.verified_claims.structured.claims[0]
        assert verified.claim_id == "C1"
        assert verified.verification_status == "Partially Verified"
        assert verified.confidence_level == "Moderate"
        assert len(verified.supporting_evidence) == 1
        assert verified.supporting_evidence[0].source == "Similar Paper"
        assert verified.contradicting_evidence == []

        # Source plus three similar papers go out in two batches of two.
        assert generation.calls_for("research-groups") == [
            "research-groups discovery batch 1/2",
            "research-groups discovery batch 2/2",
            "research-groups cleanup",
        ]
        assert entry.drafts["patents"].discovery_text == "Discovery notes for patents."
        assert entry.drafts["patents"].error is None
        assert entry.claims_analysis.raw_text == "Discovery notes for claims."
        assert "# Pipeline Log" in artifacts.retrieval_log_markdown
    finally:
        ctx.store.close()


@pytest.mark.asyncio
async def test_missing_dependency_leaves_entry_untouched(tmp_path: Path) -> None:
    generation = FakeGeneration()
    ctx = _context(tmp_path, generation)
    try:
        ctx.store.upsert("alpha", {"label": "Alpha paper", "sourceDocument": _source().to_payload()})
        before = ctx.store.get("alpha").to_payload()

        result = await SimilarPapersStage().run(ctx, StageRequest(entry_id="alpha"))

        assert result.status == "skipped"
        assert result.error == "missing_dependency"
        assert "claims" in result.reason
        assert generation.labels == []
        assert ctx.store.get("alpha").to_payload() == before
        assert any(event["event_type"] == "stage.similar-papers.failed" for event in PIPELINE_EVENTS)
    finally:
        ctx.store.close()


@pytest.mark.asyncio
async def test_halt_keeps_draft_and_resume_reuses_discovery(tmp_path: Path) -> None:
    broken = FakeGeneration({**CLEANUP_PAYLOADS, "patents": "I could not produce JSON, sorry."})
    ctx = _context(tmp_path, broken)
    try:
        artifacts = await run_pipeline(ctx, "alpha")
        assert artifacts.halted_at == "patents"
        assert [r.stage for r in artifacts.results][-1] == "patents"
        assert artifacts.results[-1].error == "malformed_structured"
        assert artifacts.state == "ThesesReady"

        entry = ctx.store.get("alpha")
        assert entry.patents is None
        assert entry.verified_claims is None
        draft = entry.drafts["patents"]
        assert draft.discovery_text == "Discovery notes for patents."
        assert draft.cleanup_text == "I could not produce JSON, sorry."
        assert draft.error

        fixed = FakeGeneration()
        ctx.generation = fixed
        ctx.reuse_discovery = True
        resumed = await run_pipeline(ctx, "alpha", start_stage="patents")
        assert resumed.completed
        assert resumed.state == "VerifiedReady"
        assert fixed.calls_for("patents") == ["patents cleanup"]
        assert fixed.calls_for("claims") == []

        entry = ctx.store.get("alpha")
        assert entry.drafts["patents"].error is None
        assert entry.claims_analysis.structured.claim_ids() == ["C1", "C2", "C3"]
    finally:
        ctx.store.close()


@pytest.mark.asyncio
async def test_resume_without_upstream_halts_immediately(tmp_path: Path) -> None:
    generation = FakeGeneration()
    ctx = _context(tmp_path, generation)
    try:
        artifacts = await run_pipeline(ctx, "alpha", start_stage="verified-claims")
        assert len(artifacts.results) == 1
        assert artifacts.results[0].error == "missing_dependency"
        assert artifacts.state == "Created"
        assert generation.labels == []
        assert any(event["event_type"] == "pipeline.halted" for event in PIPELINE_EVENTS)
    finally:
        ctx.store.close()


def test_stage_index_is_clamped() -> None:
    assert stage_index(None) == 0
    assert stage_index(-3) == 0
    assert stage_index(99) == 5
    assert stage_index("patents") == 4
    with pytest.raises(ValueError):
        stage_index("unknown-stage")
    assert entry_state(None) == "Created"


@pytest.mark.asyncio
async def test_deep_dive_appends_per_group(tmp_path: Path) -> None:
    generation = FakeGeneration()
    ctx = _context(tmp_path, generation)
    try:
        gated = await ThesisDeepDiveStage().run(ctx, StageRequest(entry_id="alpha"))
        assert gated.error == "missing_dependency"

        artifacts = await run_pipeline(ctx, "alpha", deep_dive=True)
        assert artifacts.completed
        assert artifacts.results[-1].stage == "thesis-deep-dive"

        entry = ctx.store.get("alpha")
        assert len(entry.thesis_deep_dives) == 1
        dive = entry.thesis_deep_dives[0]
        assert dive.group.name == "Lee Soil Lab"
        assert dive.paper.identifier == "10.1000/alpha"
        assert dive.structured.theses[0].data_access == "public"
        assert dive.structured.follow_up == ["Ask the lab for raw plots"]
        deep_prompt = generation.prompts[generation.labels.index("thesis-deep-dive discovery")]
        assert "Lee Soil Lab" in deep_prompt
        assert "Carbon in loam soils" in deep_prompt

        # Re-running the same group replaces its dive; another group is appended.
        await ThesisDeepDiveStage().run(ctx, StageRequest(entry_id="alpha"))
        ctx.options["group_index"] = 1
        await ThesisDeepDiveStage().run(ctx, StageRequest(entry_id="alpha"))
        entry = ctx.store.get("alpha")
        assert [d.group.name for d in entry.thesis_deep_dives] == ["Lee Soil Lab", "Kim Carbon Group"]
        assert ctx.store.stats()["thesis_deep_dives"] == 2
    finally:
        ctx.store.close()


@pytest.mark.asyncio
async def test_cleanup_timeout_halts_without_partial_write(tmp_path: Path) -> None:
    slow = FakeGeneration({**CLEANUP_PAYLOADS, "patents": GenerationTimeout("patents cleanup", 600)})
    ctx = _context(tmp_path, slow)
    try:
        artifacts = await run_pipeline(ctx, "alpha")
        assert artifacts.halted_at == "patents"
        assert artifacts.results[-1].error == "generation_timeout"
        assert "timed out after 600 seconds" in artifacts.results[-1].reason
        assert artifacts.state == "ThesesReady"

        entry = ctx.store.get("alpha")
        assert entry.patents is None
        assert entry.verified_claims is None
        assert entry.researcher_theses.structured.researchers[0].name == "Ana Lee"
        draft = entry.drafts["patents"]
        assert draft.discovery_text == "Discovery notes for patents."
        assert draft.cleanup_text is None
        assert draft.error == artifacts.results[-1].reason
    finally:
        ctx.store.close()
