from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, ClassVar, Optional

from pydantic import ValidationError
from pydantic.alias_generators import to_camel

from evidentia.agents.generation import GenerationClient, GenerationResult
from evidentia.agents.prompts import require_structured
from evidentia.database.store import LibraryStore
from evidentia.errors import EvidentiaError, MissingDependency, SchemaViolation
from evidentia.schemas.models import Entry, EvidentiaModel, SourceDocument, StageDraft, StageOutput
from evidentia.utils.config import MODELS, OUTPUT_LIMITS
from evidentia.utils.json_repair import parse_near_json
from evidentia.utils.logging import log_event


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class StageRequest:
    entry_id: str
    source: Optional[SourceDocument] = None


@dataclass
class StageResult:
    stage: str
    entry_id: str
    status: str
    reason: Optional[str] = None
    error: Optional[str] = None
    truncated: bool = False

    @property
    def completed(self) -> bool:
        return self.status == "completed"


@dataclass
class StageContext:
    """Everything a stage needs for one invocation, passed explicitly."""

    store: LibraryStore
    generation: GenerationClient
    source: Optional[SourceDocument] = None
    reuse_discovery: bool = False
    options: dict[str, Any] = field(default_factory=dict)


def normalize_structured(model_cls: type[EvidentiaModel], payload: Any, label: str) -> EvidentiaModel:
    try:
        return model_cls.model_validate(payload)
    except ValidationError as exc:
        problems = "; ".join(error.get("msg", "") for error in exc.errors()[:3])
        raise SchemaViolation(f"{label} cleanup output failed validation: {problems}") from exc


class Stage:
    """Two-call stage: search-backed discovery notes, then strict JSON cleanup.

    Subclasses supply the prompts and the result model. Discovery notes are
    stored as a draft before cleanup starts so a failed conversion can be
    retried without paying for discovery again.
    """

    name: ClassVar[str]
    attribute: ClassVar[str]
    result_model: ClassVar[type[EvidentiaModel]]
    # (entry attribute, stage name) pairs that must hold structured output.
    requires: ClassVar[tuple[tuple[str, str], ...]] = ()
    config_key: ClassVar[str]
    search: ClassVar[bool] = True

    @property
    def alias(self) -> str:
        return to_camel(self.attribute)

    @property
    def discovery_model(self) -> str:
        return getattr(MODELS, self.config_key)

    @property
    def discovery_limit(self) -> int:
        return getattr(OUTPUT_LIMITS, self.config_key)

    def load_entry(self, ctx: StageContext, request: StageRequest) -> Entry:
        entry = ctx.store.get(request.entry_id)
        if entry is None:
            raise MissingDependency(self.requires[0][1] if self.requires else "entry")
        for attribute, stage_name in self.requires:
            require_structured(entry, attribute, stage_name)
        return entry

    def build_discovery_prompt(self, entry: Entry, ctx: StageContext) -> str:
        raise NotImplementedError

    def build_cleanup_prompt(self, entry: Entry, notes: str) -> str:
        raise NotImplementedError

    def finalize(self, entry: Entry, structured: Any) -> Any:
        return structured

    def render_text(self, structured: Any) -> str:
        return ""

    async def discover(self, entry: Entry, ctx: StageContext) -> GenerationResult:
        prompt = self.build_discovery_prompt(entry, ctx)
        return await ctx.generation.generate(
            label=f"{self.name} discovery",
            prompt=prompt,
            model=self.discovery_model,
            max_output_tokens=self.discovery_limit,
            search=self.search,
        )

    def _save_draft(self, ctx: StageContext, entry: Entry, draft: StageDraft) -> None:
        drafts = {key: value.to_payload() for key, value in entry.drafts.items()}
        drafts[self.name] = draft.to_payload()
        ctx.store.upsert(entry.id, {"drafts": drafts})
        entry.drafts[self.name] = draft

    async def _discovery_notes(self, entry: Entry, ctx: StageContext) -> StageDraft:
        existing = entry.drafts.get(self.name)
        if ctx.reuse_discovery and existing is not None and existing.discovery_text.strip():
            log_event(f"stage.{self.name}.discovery_reused", {"entry_id": entry.id})
            return existing
        result = await self.discover(entry, ctx)
        draft = StageDraft(discovery_text=result.text, generated_at=utc_now(), truncated=result.truncated)
        self._save_draft(ctx, entry, draft)
        log_event(
            f"stage.{self.name}.discovery",
            {"entry_id": entry.id, "chars": len(result.text), "truncated": result.truncated},
        )
        return draft

    async def convert(self, entry: Entry, ctx: StageContext, draft: StageDraft) -> tuple[Any, GenerationResult]:
        prompt = self.build_cleanup_prompt(entry, draft.discovery_text)
        cleanup = await ctx.generation.convert(
            label=f"{self.name} cleanup",
            prompt=prompt,
            model=MODELS.cleanup,
            max_output_tokens=OUTPUT_LIMITS.cleanup,
        )
        try:
            payload = parse_near_json(cleanup.text)
            structured = normalize_structured(self.result_model, payload, self.name)
        except EvidentiaError as exc:
            self._save_draft(
                ctx,
                entry,
                draft.model_copy(update={"cleanup_text": cleanup.text, "error": exc.message}),
            )
            raise
        log_event(f"stage.{self.name}.cleanup", {"entry_id": entry.id, "chars": len(cleanup.text)})
        return self.finalize(entry, structured), cleanup

    def store_output(self, ctx: StageContext, entry: Entry, output: StageOutput, draft: StageDraft) -> None:
        drafts = {key: value.to_payload() for key, value in entry.drafts.items()}
        drafts[self.name] = draft.to_payload()
        ctx.store.upsert(entry.id, {self.alias: output.to_payload(), "drafts": drafts})

    async def execute(self, ctx: StageContext, request: StageRequest) -> StageOutput:
        entry = self.load_entry(ctx, request)
        draft = await self._discovery_notes(entry, ctx)
        try:
            structured, cleanup = await self.convert(entry, ctx, draft)
        except EvidentiaError as exc:
            if exc.message and entry.drafts.get(self.name) is draft:
                self._save_draft(ctx, entry, draft.model_copy(update={"error": exc.message}))
            raise
        output = StageOutput[self.result_model](
            raw_text=draft.discovery_text or self.render_text(structured),
            structured=structured,
            prompt_notes=getattr(structured, "prompt_notes", None),
            generated_at=utc_now(),
            truncated=draft.truncated or cleanup.truncated,
        )
        settled = draft.model_copy(update={"cleanup_text": cleanup.text, "error": None})
        self.store_output(ctx, entry, output, settled)
        return output

    async def run(self, ctx: StageContext, request: StageRequest) -> StageResult:
        log_event(f"stage.{self.name}.start", {"entry_id": request.entry_id})
        try:
            output = await self.execute(ctx, request)
        except EvidentiaError as exc:
            log_event(
                f"stage.{self.name}.failed",
                {"entry_id": request.entry_id, "code": exc.code, "reason": exc.message},
            )
            return StageResult(
                stage=self.name,
                entry_id=request.entry_id,
                status="skipped",
                reason=exc.message,
                error=exc.code,
            )
        log_event(f"stage.{self.name}.end", {"entry_id": request.entry_id, "truncated": output.truncated})
        return StageResult(
            stage=self.name,
            entry_id=request.entry_id,
            status="completed",
            truncated=output.truncated,
        )
