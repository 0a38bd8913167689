from __future__ import annotations

from dataclasses import dataclass
from time import perf_counter
from typing import Optional, Union

from evidentia.agents.claims import ClaimsStage
from evidentia.agents.patents import PatentsStage
from evidentia.agents.research_groups import ResearchGroupsStage
from evidentia.agents.researcher_theses import ResearcherThesesStage
from evidentia.agents.similar_papers import SimilarPapersStage
from evidentia.agents.stage import Stage, StageContext, StageRequest, StageResult
from evidentia.agents.thesis_deep_dive import ThesisDeepDiveStage
from evidentia.agents.verified_claims import VerifiedClaimsStage
from evidentia.schemas.models import Entry
from evidentia.utils.logging import events_as_markdown, log_event, reset_events

STAGES: tuple[Stage, ...] = (
    ClaimsStage(),
    SimilarPapersStage(),
    ResearchGroupsStage(),
    ResearcherThesesStage(),
    PatentsStage(),
    VerifiedClaimsStage(),
)
DEEP_DIVE = ThesisDeepDiveStage()
STAGE_NAMES = tuple(stage.name for stage in STAGES)

# ENTRY_STATES[n] is the state once the first n stages hold structured output.
ENTRY_STATES = (
    "Created",
    "ClaimsReady",
    "SimilarPapersReady",
    "GroupsReady",
    "ThesesReady",
    "PatentsReady",
    "VerifiedReady",
)


def _print_step_timing(step: str, seconds: float) -> None:
    print(f"[pipeline] step={step} duration_seconds={seconds:.2f}", flush=True)


def stage_index(start_stage: Union[int, str, None]) -> int:
    """Resolve a stage name or position to an index clamped to the pipeline."""
    if start_stage is None:
        return 0
    if isinstance(start_stage, str):
        if start_stage not in STAGE_NAMES:
            raise ValueError(f"Unknown stage {start_stage!r}; expected one of {', '.join(STAGE_NAMES)}")
        return STAGE_NAMES.index(start_stage)
    return max(0, min(int(start_stage), len(STAGES) - 1))


def entry_state(entry: Optional[Entry]) -> str:
    if entry is None:
        return ENTRY_STATES[0]
    ready = 0
    for stage in STAGES:
        output = getattr(entry, stage.attribute)
        if output is None or output.structured is None:
            break
        ready += 1
    return ENTRY_STATES[ready]


@dataclass
class PipelineArtifacts:
    entry_id: str
    results: list[StageResult]
    step_timings_seconds: dict[str, float]
    pipeline_duration_seconds: float
    state: str
    retrieval_log_markdown: str
    halted_at: Optional[str] = None

    @property
    def completed(self) -> bool:
        return self.halted_at is None


async def run_pipeline(
    ctx: StageContext,
    entry_id: str,
    start_stage: Union[int, str, None] = 0,
    deep_dive: bool = False,
) -> PipelineArtifacts:
    pipeline_start = perf_counter()
    step_timings_seconds: dict[str, float] = {}
    results: list[StageResult] = []
    halted_at: Optional[str] = None

    start = stage_index(start_stage)
    plan = list(STAGES[start:])
    if deep_dive:
        plan.append(DEEP_DIVE)

    reset_events()
    log_event(
        "pipeline.start",
        {"entry_id": entry_id, "start_stage": STAGES[start].name, "stages": [stage.name for stage in plan]},
    )

    for stage in plan:
        step_start = perf_counter()
        result = await stage.run(ctx, StageRequest(entry_id=entry_id, source=ctx.source))
        step_timings_seconds[stage.name] = perf_counter() - step_start
        log_event("pipeline.step_timing", {"step": stage.name, "seconds": step_timings_seconds[stage.name]})
        _print_step_timing(stage.name, step_timings_seconds[stage.name])
        results.append(result)
        if not result.completed:
            halted_at = stage.name
            log_event(
                "pipeline.halted",
                {"entry_id": entry_id, "stage": stage.name, "error": result.error, "reason": result.reason},
            )
            break

    state = entry_state(ctx.store.get(entry_id))
    pipeline_duration_seconds = perf_counter() - pipeline_start
    log_event(
        "pipeline.end",
        {"entry_id": entry_id, "state": state, "pipeline_duration_seconds": pipeline_duration_seconds},
    )
    print(f"[pipeline] total_duration_seconds={pipeline_duration_seconds:.2f}", flush=True)
    return PipelineArtifacts(
        entry_id=entry_id,
        results=results,
        step_timings_seconds=step_timings_seconds,
        pipeline_duration_seconds=pipeline_duration_seconds,
        state=state,
        retrieval_log_markdown=events_as_markdown(),
        halted_at=halted_at,
    )
