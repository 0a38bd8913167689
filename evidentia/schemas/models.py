from __future__ import annotations

import re
from typing import Any, Generic, Literal, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_serializer, model_validator
from pydantic.alias_generators import to_camel

from evidentia.utils.aliases import (
    canonical_evidence_source,
    EVIDENCE_SOURCE_FALLBACK,
    normalize_cluster_label,
    normalize_confidence,
    normalize_data_access,
    normalize_data_availability,
    normalize_risk_status,
    normalize_strength,
    normalize_verification_status,
)
from evidentia.utils.identifiers import compact_patent_number, normalize_doi, normalize_orcid
from evidentia.utils.text import (
    clean_email_strict,
    clean_plain_text,
    clean_url_strict,
    collapse_whitespace,
    split_string_list,
)

NOT_REPORTED = "Not reported"
UNTITLED_PATENT = "Untitled patent"
GOOGLE_PATENTS_URL = "https://patents.google.com/patent/{number}"

_SCALAR_PLACEHOLDER = re.compile(
    r"^(?:n/?a|none|null|unknown|not\s+(?:found|provided|reported|available|specified|listed))\.?$",
    re.IGNORECASE,
)
_EVIDENCE_PLACEHOLDER = re.compile(
    r"^(?:none(?:\s+found)?|no\s+(?:relevant\s+)?(?:evidence|contradictions?)|not\s+(?:provided|reported)|n\/?a)$",
    re.IGNORECASE,
)
_EVIDENCE_BRACKET = re.compile(r"^\[\s*([^\]]+?)\s*\]\s*(.*)$", re.DOTALL)
_EVIDENCE_LABEL = re.compile(r"^([A-Za-z ]{4,20}?)\s*:\s*(.+)$", re.DOTALL)
_BULLET_MARKER = re.compile(r"^(?:(?:[-*\u2022]+|\d+[.)])\s+)+")
_YEAR = re.compile(r"\b(1\d{3}|2\d{3})\b")


def _text(value: Any) -> str:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        value = str(value)
    return clean_plain_text(value)


def _optional_text(value: Any) -> Optional[str]:
    cleaned = _text(value)
    if not cleaned or _SCALAR_PLACEHOLDER.match(cleaned):
        return None
    return cleaned


def _year(value: Any) -> Optional[int]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, int):
        return value if 1000 <= value <= 2999 else None
    if isinstance(value, str):
        match = _YEAR.search(value)
        return int(match.group(1)) if match else None
    return None


def _records(value: Any) -> list[Any]:
    """Keep only mapping-like items from a list; anything else becomes an empty list."""
    if not isinstance(value, (list, tuple)):
        return []
    return [item for item in value if isinstance(item, (dict, BaseModel))]


def _pick(data: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


def _rename(data: Any, alias_map: dict[str, str]) -> Any:
    if not isinstance(data, dict):
        return data
    renamed = dict(data)
    for legacy, target in alias_map.items():
        if legacy in renamed and target not in renamed:
            renamed[target] = renamed.pop(legacy)
    return renamed


def _require_keys(data: Any, label: str, *keys: str) -> None:
    if isinstance(data, BaseModel):
        return
    if not isinstance(data, dict):
        raise ValueError(f"{label} payload must be a JSON object")
    if not any(key in data for key in keys):
        raise ValueError(f"{label} payload is missing required key '{keys[0]}'")


class EvidentiaModel(BaseModel):
    """camelCase on the wire, snake_case in Python; unknown keys are ignored."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


# ---------------------------------------------------------------------------
# Claims
# ---------------------------------------------------------------------------


class Claim(EvidentiaModel):
    id: str = ""
    claim: str = ""
    evidence_summary: Optional[str] = None
    key_numbers: list[str] = Field(default_factory=list)
    source: Optional[str] = None
    strength: Literal["High", "Moderate", "Low", "Unclear"] = "Unclear"
    assumptions: Optional[str] = None
    evidence_type: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def _norm_id(cls, value):
        return collapse_whitespace(_text(value)).upper()

    @field_validator("claim", mode="before")
    @classmethod
    def _norm_claim(cls, value):
        return _text(value)

    @field_validator("evidence_summary", "source", "assumptions", "evidence_type", mode="before")
    @classmethod
    def _norm_optional(cls, value):
        return _optional_text(value)

    @field_validator("key_numbers", mode="before")
    @classmethod
    def _norm_key_numbers(cls, value):
        return split_string_list(value)

    @field_validator("strength", mode="before")
    @classmethod
    def _norm_strength(cls, value):
        return normalize_strength(value)


class Gap(EvidentiaModel):
    category: str = ""
    detail: str = ""
    related_claim_ids: list[str] = Field(default_factory=list)

    @field_validator("category", "detail", mode="before")
    @classmethod
    def _norm_text(cls, value):
        return _text(value)

    @field_validator("related_claim_ids", mode="before")
    @classmethod
    def _norm_ids(cls, value):
        return [item.upper() for item in split_string_list(value)]


class RiskItem(EvidentiaModel):
    item: str = ""
    status: Literal["met", "partial", "missing", "unclear"] = "unclear"
    note: Optional[str] = None

    @field_validator("item", mode="before")
    @classmethod
    def _norm_item(cls, value):
        return _text(value)

    @field_validator("status", mode="before")
    @classmethod
    def _norm_status(cls, value):
        return normalize_risk_status(value)

    @field_validator("note", mode="before")
    @classmethod
    def _norm_note(cls, value):
        return _optional_text(value)


class ClaimsAnalysis(EvidentiaModel):
    executive_summary: list[str] = Field(default_factory=list)
    claims: list[Claim] = Field(default_factory=list)
    gaps: list[Gap] = Field(default_factory=list)
    methods_snapshot: list[str] = Field(default_factory=list)
    risk_checklist: list[RiskItem] = Field(default_factory=list)
    open_questions: list[str] = Field(default_factory=list)
    cross_paper_comparison: list[str] = Field(default_factory=list)
    prompt_notes: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _unwrap(cls, data):
        # Cleanup sometimes answers with {text, structured, promptNotes}.
        if isinstance(data, dict) and isinstance(data.get("structured"), dict):
            inner = dict(data["structured"])
            if "promptNotes" not in inner and data.get("promptNotes") is not None:
                inner["promptNotes"] = data["promptNotes"]
            data = inner
        _require_keys(data, "Claims", "claims")
        return data

    @field_validator(
        "executive_summary", "methods_snapshot", "open_questions", "cross_paper_comparison", mode="before"
    )
    @classmethod
    def _norm_lists(cls, value):
        return split_string_list(value)

    @field_validator("claims", "gaps", "risk_checklist", mode="before")
    @classmethod
    def _norm_records(cls, value):
        return _records(value)

    @field_validator("prompt_notes", mode="before")
    @classmethod
    def _norm_notes(cls, value):
        return _optional_text(value)

    @field_validator("claims")
    @classmethod
    def _unique_claims(cls, value: list[Claim]) -> list[Claim]:
        seen: set[str] = set()
        kept: list[Claim] = []
        for claim in value:
            if not claim.id or not claim.claim or claim.id in seen:
                continue
            seen.add(claim.id)
            kept.append(claim)
        if not kept:
            raise ValueError("claims must contain at least one claim with an id and text")
        return kept

    @field_validator("gaps")
    @classmethod
    def _drop_empty_gaps(cls, value: list[Gap]) -> list[Gap]:
        return [gap for gap in value if gap.category and gap.detail]

    @field_validator("risk_checklist")
    @classmethod
    def _drop_empty_risks(cls, value: list[RiskItem]) -> list[RiskItem]:
        return [risk for risk in value if risk.item]

    def claim_ids(self) -> list[str]:
        return [claim.id for claim in self.claims]


# ---------------------------------------------------------------------------
# Similar papers
# ---------------------------------------------------------------------------


class MethodComparison(EvidentiaModel):
    sample: str = NOT_REPORTED
    materials: str = NOT_REPORTED
    equipment: str = NOT_REPORTED
    procedure: str = NOT_REPORTED
    outcomes: str = NOT_REPORTED

    @model_validator(mode="before")
    @classmethod
    def _migrate_matrix_keys(cls, data):
        return _rename(
            data,
            {
                "sampleModel": "sample",
                "materialsSetup": "materials",
                "equipmentSetup": "equipment",
                "procedureSteps": "procedure",
                "outcomeSummary": "outcomes",
                "outputsMetrics": "outcomes",
            },
        )

    @field_validator("*", mode="before")
    @classmethod
    def _default_not_reported(cls, value):
        return _optional_text(value) or NOT_REPORTED


class SourcePaperSummary(EvidentiaModel):
    summary: str = ""
    key_method_signals: list[str] = Field(default_factory=list)
    search_queries: list[str] = Field(default_factory=list)

    @field_validator("summary", mode="before")
    @classmethod
    def _norm_summary(cls, value):
        return _text(value)

    @field_validator("key_method_signals", "search_queries", mode="before")
    @classmethod
    def _norm_lists(cls, value):
        return split_string_list(value)


class SimilarPaper(EvidentiaModel):
    identifier: str = ""
    title: str = ""
    doi: Optional[str] = None
    url: Optional[str] = None
    authors: list[str] = Field(default_factory=list)
    year: Optional[int] = None
    venue: Optional[str] = None
    cluster_label: Literal["Sample and model", "Field deployments", "Insight primers"] = "Insight primers"
    why_relevant: str = ""
    method_overlap: list[str] = Field(default_factory=lambda: [NOT_REPORTED] * 3)
    method_comparison: MethodComparison = Field(default_factory=MethodComparison)
    gaps: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _migrate_keys(cls, data):
        return _rename(
            data,
            {
                "overlapHighlights": "methodOverlap",
                "methodMatrix": "methodComparison",
                "gapsOrUncertainties": "gaps",
                "clusterlabel": "clusterLabel",
            },
        )

    @field_validator("identifier", "title", "why_relevant", mode="before")
    @classmethod
    def _norm_text(cls, value):
        return _text(value)

    @field_validator("venue", "gaps", mode="before")
    @classmethod
    def _norm_optional(cls, value):
        return _optional_text(value)

    @field_validator("doi", mode="before")
    @classmethod
    def _norm_doi(cls, value):
        return normalize_doi(value)

    @field_validator("url", mode="before")
    @classmethod
    def _norm_url(cls, value):
        return clean_url_strict(value)

    @field_validator("authors", mode="before")
    @classmethod
    def _norm_authors(cls, value):
        if isinstance(value, str):
            return [part.strip() for part in re.split(r";|\n|,\s*(?:and\s+)?|\s+and\s+", _text(value)) if part.strip()]
        return split_string_list(value)

    @field_validator("year", mode="before")
    @classmethod
    def _norm_year(cls, value):
        return _year(value)

    @field_validator("cluster_label", mode="before")
    @classmethod
    def _norm_cluster(cls, value):
        return normalize_cluster_label(value)

    @field_validator("method_overlap", mode="before")
    @classmethod
    def _exactly_three(cls, value):
        items = split_string_list(value)[:3]
        return items + [NOT_REPORTED] * (3 - len(items))

    @field_validator("method_comparison", mode="before")
    @classmethod
    def _norm_comparison(cls, value):
        return value if isinstance(value, (dict, MethodComparison)) else {}

    @model_validator(mode="after")
    def _fill_identity(self):
        if not self.doi:
            self.doi = normalize_doi(self.identifier) or normalize_doi(self.url)
        if not self.identifier:
            self.identifier = self.doi or self.url or ""
        return self


class SimilarPapersResult(EvidentiaModel):
    source_paper: SourcePaperSummary = Field(default_factory=SourcePaperSummary)
    similar_papers: list[SimilarPaper] = Field(default_factory=list)
    prompt_notes: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _check_keys(cls, data):
        _require_keys(data, "Similar papers", "similarPapers", "similar_papers")
        return data

    @field_validator("source_paper", mode="before")
    @classmethod
    def _norm_source(cls, value):
        return value if isinstance(value, (dict, SourcePaperSummary)) else {}

    @field_validator("similar_papers", mode="before")
    @classmethod
    def _norm_records(cls, value):
        return _records(value)

    @field_validator("similar_papers")
    @classmethod
    def _drop_untitled(cls, value: list[SimilarPaper]) -> list[SimilarPaper]:
        kept = [paper for paper in value if paper.title]
        if not kept:
            raise ValueError("similarPapers must contain at least one titled paper")
        return kept

    @field_validator("prompt_notes", mode="before")
    @classmethod
    def _norm_notes(cls, value):
        return _optional_text(value)


# ---------------------------------------------------------------------------
# Research groups
# ---------------------------------------------------------------------------


class ProfileLink(EvidentiaModel):
    platform: str = ""
    url: Optional[str] = None

    @field_validator("platform", mode="before")
    @classmethod
    def _norm_platform(cls, value):
        return collapse_whitespace(_text(value))

    @field_validator("url", mode="before")
    @classmethod
    def _norm_url(cls, value):
        return clean_url_strict(value)


class PersonContact(EvidentiaModel):
    name: str = ""
    email: Optional[str] = None
    role: Optional[str] = None
    orcid: Optional[str] = None
    profiles: list[ProfileLink] = Field(default_factory=list)

    @field_validator("name", mode="before")
    @classmethod
    def _norm_name(cls, value):
        return collapse_whitespace(_text(value))

    @field_validator("email", mode="before")
    @classmethod
    def _norm_email(cls, value):
        return clean_email_strict(value)

    @field_validator("role", mode="before")
    @classmethod
    def _norm_role(cls, value):
        return _optional_text(value)

    @field_validator("orcid", mode="before")
    @classmethod
    def _norm_orcid(cls, value):
        return normalize_orcid(value)

    @field_validator("profiles", mode="before")
    @classmethod
    def _norm_profiles(cls, value):
        return _records(value)

    @field_validator("profiles")
    @classmethod
    def _drop_incomplete_profiles(cls, value: list[ProfileLink]) -> list[ProfileLink]:
        return [profile for profile in value if profile.platform and profile.url]


def _named_people(value: list[PersonContact]) -> list[PersonContact]:
    return [person for person in value if person.name]


class ResearchGroup(EvidentiaModel):
    name: str = ""
    institution: Optional[str] = None
    website: Optional[str] = None
    notes: Optional[str] = None
    researchers: list[PersonContact] = Field(default_factory=list)

    @field_validator("name", mode="before")
    @classmethod
    def _norm_name(cls, value):
        return collapse_whitespace(_text(value))

    @field_validator("institution", "notes", mode="before")
    @classmethod
    def _norm_optional(cls, value):
        return _optional_text(value)

    @field_validator("website", mode="before")
    @classmethod
    def _norm_website(cls, value):
        return clean_url_strict(value)

    @field_validator("researchers", mode="before")
    @classmethod
    def _norm_records(cls, value):
        return _records(value)

    @field_validator("researchers")
    @classmethod
    def _drop_unnamed(cls, value: list[PersonContact]) -> list[PersonContact]:
        return _named_people(value)


class GroupsPaper(EvidentiaModel):
    title: str = ""
    identifier: Optional[str] = None
    authors: list[PersonContact] = Field(default_factory=list)
    groups: list[ResearchGroup] = Field(default_factory=list)

    @field_validator("title", mode="before")
    @classmethod
    def _norm_title(cls, value):
        return _text(value)

    @field_validator("identifier", mode="before")
    @classmethod
    def _norm_identifier(cls, value):
        return _optional_text(value)

    @field_validator("authors", "groups", mode="before")
    @classmethod
    def _norm_records(cls, value):
        return _records(value)

    @field_validator("authors")
    @classmethod
    def _first_named_authors(cls, value: list[PersonContact]) -> list[PersonContact]:
        return _named_people(value)[:3]

    @field_validator("groups")
    @classmethod
    def _named_groups(cls, value: list[ResearchGroup]) -> list[ResearchGroup]:
        return [group for group in value if group.name][:6]


class ResearchGroupsResult(EvidentiaModel):
    papers: list[GroupsPaper] = Field(default_factory=list)
    prompt_notes: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _check_keys(cls, data):
        _require_keys(data, "Research groups", "papers")
        return data

    @field_validator("papers", mode="before")
    @classmethod
    def _norm_records(cls, value):
        return _records(value)

    @field_validator("papers")
    @classmethod
    def _drop_untitled(cls, value: list[GroupsPaper]) -> list[GroupsPaper]:
        kept = [paper for paper in value if paper.title]
        if not kept:
            raise ValueError("papers must contain at least one titled paper")
        return kept

    @field_validator("prompt_notes", mode="before")
    @classmethod
    def _norm_notes(cls, value):
        return _optional_text(value)

    def all_people(self) -> list[PersonContact]:
        people: list[PersonContact] = []
        for paper in self.papers:
            people.extend(paper.authors)
            for group in paper.groups:
                people.extend(group.researchers)
        return people


# ---------------------------------------------------------------------------
# Researcher theses
# ---------------------------------------------------------------------------


class LatestPublication(EvidentiaModel):
    title: Optional[str] = None
    year: Optional[int] = None
    venue: Optional[str] = None
    url: Optional[str] = None

    @field_validator("title", "venue", mode="before")
    @classmethod
    def _norm_optional(cls, value):
        return _optional_text(value)

    @field_validator("year", mode="before")
    @classmethod
    def _norm_year(cls, value):
        return _year(value)

    @field_validator("url", mode="before")
    @classmethod
    def _norm_url(cls, value):
        return clean_url_strict(value)


class PhdThesis(EvidentiaModel):
    title: Optional[str] = None
    year: Optional[int] = None
    institution: Optional[str] = None
    url: Optional[str] = None

    @field_validator("title", "institution", mode="before")
    @classmethod
    def _norm_optional(cls, value):
        return _optional_text(value)

    @field_validator("year", mode="before")
    @classmethod
    def _norm_year(cls, value):
        return _year(value)

    @field_validator("url", mode="before")
    @classmethod
    def _norm_url(cls, value):
        return clean_url_strict(value)

    def is_empty(self) -> bool:
        return not any((self.title, self.year, self.institution, self.url))


class ThesisRecord(EvidentiaModel):
    name: str = ""
    email: Optional[str] = None
    group: Optional[str] = None
    latest_publication: LatestPublication = Field(default_factory=LatestPublication)
    phd_thesis: Optional[PhdThesis] = None
    data_availability: Literal["yes", "no", "unknown"] = "unknown"

    @model_validator(mode="before")
    @classmethod
    def _migrate_keys(cls, data):
        return _rename(data, {"data_publicly_available": "dataAvailability", "dataPubliclyAvailable": "dataAvailability"})

    @field_validator("name", mode="before")
    @classmethod
    def _norm_name(cls, value):
        return collapse_whitespace(_text(value))

    @field_validator("email", mode="before")
    @classmethod
    def _norm_email(cls, value):
        return clean_email_strict(value)

    @field_validator("group", mode="before")
    @classmethod
    def _norm_group(cls, value):
        return _optional_text(value)

    @field_validator("latest_publication", mode="before")
    @classmethod
    def _norm_publication(cls, value):
        return value if isinstance(value, (dict, LatestPublication)) else {}

    @field_validator("phd_thesis", mode="before")
    @classmethod
    def _norm_thesis(cls, value):
        return value if isinstance(value, (dict, PhdThesis)) else None

    @field_validator("phd_thesis")
    @classmethod
    def _null_empty_thesis(cls, value: Optional[PhdThesis]) -> Optional[PhdThesis]:
        if value is None or value.is_empty():
            return None
        return value

    @field_validator("data_availability", mode="before")
    @classmethod
    def _norm_availability(cls, value):
        return normalize_data_availability(value)


class ResearcherThesesResult(EvidentiaModel):
    researchers: list[ThesisRecord] = Field(default_factory=list)
    prompt_notes: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _accept_bare_list(cls, data):
        if isinstance(data, list):
            data = {"researchers": data}
        _require_keys(data, "Researcher theses", "researchers")
        return data

    @field_validator("researchers", mode="before")
    @classmethod
    def _norm_records(cls, value):
        return _records(value)

    @field_validator("researchers")
    @classmethod
    def _drop_unnamed(cls, value: list[ThesisRecord]) -> list[ThesisRecord]:
        kept = [record for record in value if record.name]
        if not kept:
            raise ValueError("researchers must contain at least one named researcher")
        return kept

    @field_validator("prompt_notes", mode="before")
    @classmethod
    def _norm_notes(cls, value):
        return _optional_text(value)


# ---------------------------------------------------------------------------
# Patents
# ---------------------------------------------------------------------------


class PatentOverlap(EvidentiaModel):
    claim_ids: list[str] = Field(default_factory=list)
    summary: str = ""

    @field_validator("claim_ids", mode="before")
    @classmethod
    def _norm_ids(cls, value):
        return [item.upper() for item in split_string_list(value)]

    @field_validator("summary", mode="before")
    @classmethod
    def _norm_summary(cls, value):
        return _text(value)


class Patent(EvidentiaModel):
    patent_number: str = ""
    title: str = UNTITLED_PATENT
    assignee: Optional[str] = None
    filing_date: Optional[str] = None
    grant_date: Optional[str] = None
    abstract: Optional[str] = None
    overlap_with_paper: PatentOverlap = Field(default_factory=PatentOverlap)
    url: str = ""

    @field_validator("patent_number", mode="before")
    @classmethod
    def _norm_number(cls, value):
        return compact_patent_number(value)

    @field_validator("title", mode="before")
    @classmethod
    def _norm_title(cls, value):
        return _optional_text(value) or UNTITLED_PATENT

    @field_validator("assignee", "filing_date", "grant_date", "abstract", mode="before")
    @classmethod
    def _norm_optional(cls, value):
        return _optional_text(value)

    @field_validator("overlap_with_paper", mode="before")
    @classmethod
    def _norm_overlap(cls, value):
        return value if isinstance(value, (dict, PatentOverlap)) else {}

    @field_validator("url", mode="before")
    @classmethod
    def _norm_url(cls, value):
        return clean_url_strict(value) or ""

    @model_validator(mode="after")
    def _default_url(self):
        if not self.url and self.patent_number:
            self.url = GOOGLE_PATENTS_URL.format(number=self.patent_number)
        return self


class PatentsResult(EvidentiaModel):
    patents: list[Patent] = Field(default_factory=list)
    prompt_notes: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _check_keys(cls, data):
        _require_keys(data, "Patents", "patents")
        return data

    @field_validator("patents", mode="before")
    @classmethod
    def _norm_records(cls, value):
        return _records(value)

    @field_validator("patents")
    @classmethod
    def _drop_unnumbered(cls, value: list[Patent]) -> list[Patent]:
        kept = [patent for patent in value if patent.patent_number]
        if not kept:
            raise ValueError("patents must contain at least one patent with a number")
        return kept

    @field_validator("prompt_notes", mode="before")
    @classmethod
    def _norm_notes(cls, value):
        return _optional_text(value)


# ---------------------------------------------------------------------------
# Verified claims
# ---------------------------------------------------------------------------


def _split_evidence_prefix(text: str) -> tuple[Optional[str], str]:
    """Detect ``[Patent] X`` and ``Patent: X`` prefixes and return (source, remainder)."""
    bracket = _EVIDENCE_BRACKET.match(text)
    if bracket and canonical_evidence_source(bracket.group(1)):
        return canonical_evidence_source(bracket.group(1)), bracket.group(2)
    label = _EVIDENCE_LABEL.match(text)
    if label and canonical_evidence_source(label.group(1)):
        return canonical_evidence_source(label.group(1)), label.group(2)
    return None, text


class EvidenceItem(EvidentiaModel):
    source: Literal["Similar Paper", "Research Group", "Patent", "Thesis"] = "Similar Paper"
    title: str = ""
    relevance: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _normalize_item(cls, data):
        if isinstance(data, str):
            data = {"title": data}
        if not isinstance(data, dict):
            return data
        data = dict(data)
        raw_title = _pick(data, "title", "name", "evidence")
        title = collapse_whitespace(_BULLET_MARKER.sub("", _text(raw_title)))
        source = canonical_evidence_source(_text(data.get("source")))
        if source is None:
            # Only an unlabelled item takes its source from a title prefix.
            source, title = _split_evidence_prefix(title)
            title = collapse_whitespace(_BULLET_MARKER.sub("", title))
        if _EVIDENCE_PLACEHOLDER.match(title.rstrip(".")):
            title = ""
        relevance = collapse_whitespace(_text(_pick(data, "relevance", "note", "notes")))
        if _EVIDENCE_PLACEHOLDER.match(relevance.rstrip(".")):
            relevance = ""
        return {
            "source": source or EVIDENCE_SOURCE_FALLBACK,
            "title": title,
            "relevance": relevance or None,
        }

    @model_serializer(mode="wrap")
    def _omit_empty_relevance(self, handler):
        payload = handler(self)
        if payload.get("relevance") is None:
            payload.pop("relevance", None)
        return payload

    def identity(self) -> tuple[str, str]:
        return self.source, self.title.lower()


def _evidence_list(value: Any) -> list[Any]:
    if isinstance(value, str):
        return [line for line in value.split("\n") if line.strip()]
    if not isinstance(value, (list, tuple)):
        return []
    return [item for item in value if isinstance(item, (str, dict, BaseModel))]


def _titled(items: list[EvidenceItem]) -> list[EvidenceItem]:
    return [item for item in items if item.title]


class VerifiedClaim(EvidentiaModel):
    claim_id: str = ""
    original_claim: str = ""
    verification_status: Literal["Verified", "Partially Verified", "Contradicted", "Insufficient Evidence"] = (
        "Insufficient Evidence"
    )
    supporting_evidence: list[EvidenceItem] = Field(default_factory=list)
    contradicting_evidence: list[EvidenceItem] = Field(default_factory=list)
    verification_summary: str = ""
    confidence_level: Literal["High", "Moderate", "Low"] = "Low"

    @field_validator("claim_id", mode="before")
    @classmethod
    def _norm_id(cls, value):
        return collapse_whitespace(_text(value)).upper()

    @field_validator("original_claim", "verification_summary", mode="before")
    @classmethod
    def _norm_text(cls, value):
        return _text(value)

    @field_validator("verification_status", mode="before")
    @classmethod
    def _norm_status(cls, value):
        return normalize_verification_status(value)

    @field_validator("confidence_level", mode="before")
    @classmethod
    def _norm_confidence(cls, value):
        return normalize_confidence(value)

    @field_validator("supporting_evidence", "contradicting_evidence", mode="before")
    @classmethod
    def _norm_evidence(cls, value):
        return _evidence_list(value)

    @field_validator("supporting_evidence", "contradicting_evidence")
    @classmethod
    def _drop_untitled(cls, value: list[EvidenceItem]) -> list[EvidenceItem]:
        return _titled(value)

    @model_validator(mode="after")
    def _apply_confidence_policy(self):
        if self.confidence_level == "High" and not self.supports_high_confidence():
            self.confidence_level = "Moderate"
        return self

    def supports_high_confidence(self) -> bool:
        distinct = {item.identity() for item in self.supporting_evidence}
        return (
            self.verification_status == "Verified"
            and not self.contradicting_evidence
            and len(distinct) >= 3
        )


class VerifiedClaimsResult(EvidentiaModel):
    claims: list[VerifiedClaim] = Field(default_factory=list)
    overall_assessment: Optional[str] = None
    prompt_notes: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _check_keys(cls, data):
        _require_keys(data, "Verified claims", "claims")
        return data

    @field_validator("claims", mode="before")
    @classmethod
    def _norm_records(cls, value):
        return _records(value)

    @field_validator("claims")
    @classmethod
    def _drop_unidentified(cls, value: list[VerifiedClaim]) -> list[VerifiedClaim]:
        seen: set[str] = set()
        kept: list[VerifiedClaim] = []
        for claim in value:
            if not claim.claim_id or not claim.original_claim or claim.claim_id in seen:
                continue
            seen.add(claim.claim_id)
            kept.append(claim)
        if not kept:
            raise ValueError("claims must contain at least one verified claim")
        return kept

    @field_validator("overall_assessment", "prompt_notes", mode="before")
    @classmethod
    def _norm_optional(cls, value):
        return _optional_text(value)


# ---------------------------------------------------------------------------
# Thesis deep dive
# ---------------------------------------------------------------------------


class DeepDiveThesis(EvidentiaModel):
    thesis_title: Optional[str] = None
    author: Optional[str] = None
    year: Optional[int] = None
    research_group: Optional[str] = None
    principal_investigator: Optional[str] = None
    thesis_url: Optional[str] = None
    data_url: Optional[str] = None
    data_synopsis: Optional[str] = None
    data_access: Literal["public", "restricted", "unknown"] = "unknown"
    notes: Optional[str] = None

    @field_validator(
        "thesis_title", "author", "research_group", "principal_investigator", "data_synopsis", "notes",
        mode="before",
    )
    @classmethod
    def _norm_optional(cls, value):
        return _optional_text(value)

    @field_validator("year", mode="before")
    @classmethod
    def _norm_year(cls, value):
        return _year(value)

    @field_validator("thesis_url", "data_url", mode="before")
    @classmethod
    def _norm_url(cls, value):
        return clean_url_strict(value)

    @field_validator("data_access", mode="before")
    @classmethod
    def _norm_access(cls, value):
        return normalize_data_access(value)

    def has_identity(self) -> bool:
        return any((self.thesis_title, self.author, self.thesis_url, self.data_url, self.data_synopsis))


class DeepDiveStructured(EvidentiaModel):
    theses: list[DeepDiveThesis] = Field(default_factory=list)
    sources_checked: list[str] = Field(default_factory=list)
    follow_up: list[str] = Field(default_factory=list)
    prompt_notes: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _check_keys(cls, data):
        _require_keys(data, "Thesis deep dive", "theses")
        return data

    @field_validator("theses", mode="before")
    @classmethod
    def _norm_records(cls, value):
        return _records(value)

    @field_validator("theses")
    @classmethod
    def _drop_empty(cls, value: list[DeepDiveThesis]) -> list[DeepDiveThesis]:
        return [thesis for thesis in value if thesis.has_identity()]

    @field_validator("sources_checked", "follow_up", mode="before")
    @classmethod
    def _norm_lists(cls, value):
        return split_string_list(value)

    @field_validator("prompt_notes", mode="before")
    @classmethod
    def _norm_notes(cls, value):
        return _optional_text(value)


class DeepDivePaper(EvidentiaModel):
    title: str
    identifier: Optional[str] = None
    year: Optional[int] = None


class DeepDiveGroup(EvidentiaModel):
    name: str
    institution: Optional[str] = None
    website: Optional[str] = None


class ThesisDeepDive(EvidentiaModel):
    paper: DeepDivePaper
    group: DeepDiveGroup
    text: str = ""
    structured: Optional[DeepDiveStructured] = None
    generated_at: str


# ---------------------------------------------------------------------------
# Entry and stage records
# ---------------------------------------------------------------------------

StructuredT = TypeVar("StructuredT", bound=EvidentiaModel)


class StageOutput(EvidentiaModel, Generic[StructuredT]):
    raw_text: str = ""
    structured: Optional[StructuredT] = None
    prompt_notes: Optional[str] = None
    generated_at: str
    truncated: bool = False


class StageDraft(EvidentiaModel):
    discovery_text: str = ""
    cleanup_text: Optional[str] = None
    generated_at: str
    error: Optional[str] = None
    truncated: bool = False


class SourceDocument(EvidentiaModel):
    path: Optional[str] = None
    original_file_name: Optional[str] = None
    title: Optional[str] = None
    authors: list[str] = Field(default_factory=list)
    doi: Optional[str] = None
    pages: Optional[int] = None
    text: str = Field(default="", exclude=True)

    @field_validator("doi", mode="before")
    @classmethod
    def _norm_doi(cls, value):
        return normalize_doi(value)


class Entry(EvidentiaModel):
    id: str
    label: str = ""
    generated_at: str
    updated_at: str
    source_document: SourceDocument = Field(default_factory=SourceDocument)
    claims_analysis: Optional[StageOutput[ClaimsAnalysis]] = None
    similar_papers: Optional[StageOutput[SimilarPapersResult]] = None
    research_groups: Optional[StageOutput[ResearchGroupsResult]] = None
    researcher_theses: Optional[StageOutput[ResearcherThesesResult]] = None
    patents: Optional[StageOutput[PatentsResult]] = None
    verified_claims: Optional[StageOutput[VerifiedClaimsResult]] = None
    thesis_deep_dives: list[ThesisDeepDive] = Field(default_factory=list)
    drafts: dict[str, StageDraft] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Plain-text renderers
# ---------------------------------------------------------------------------


def format_claims(result: ClaimsAnalysis) -> str:
    lines: list[str] = []
    if result.executive_summary:
        lines.append("Executive summary:")
        lines.extend(f"- {item}" for item in result.executive_summary)
    lines.append("Claims:")
    for claim in result.claims:
        lines.append(f"{claim.id} ({claim.strength}): {claim.claim}")
        if claim.evidence_summary:
            lines.append(f"  Evidence: {claim.evidence_summary}")
        if claim.key_numbers:
            lines.append(f"  Key numbers: {'; '.join(claim.key_numbers)}")
    if result.gaps:
        lines.append("Gaps:")
        lines.extend(f"- {gap.category}: {gap.detail}" for gap in result.gaps)
    if result.open_questions:
        lines.append("Open questions:")
        lines.extend(f"- {question}" for question in result.open_questions)
    return "\n".join(lines)


def format_similar_papers(result: SimilarPapersResult) -> str:
    lines: list[str] = []
    for index, paper in enumerate(result.similar_papers, start=1):
        year = f" ({paper.year})" if paper.year else ""
        lines.append(f"{index}. {paper.title}{year} [{paper.cluster_label}]")
        if paper.identifier:
            lines.append(f"   Identifier: {paper.identifier}")
        if paper.why_relevant:
            lines.append(f"   Why relevant: {paper.why_relevant}")
        lines.append(f"   Method overlap: {'; '.join(paper.method_overlap)}")
    return "\n".join(lines)


def format_research_groups(result: ResearchGroupsResult) -> str:
    lines: list[str] = []
    for paper in result.papers:
        lines.append(f"Paper: {paper.title}")
        for author in paper.authors:
            email = f" <{author.email}>" if author.email else ""
            lines.append(f"  Author: {author.name}{email}")
        for group in paper.groups:
            where = f", {group.institution}" if group.institution else ""
            lines.append(f"  Group: {group.name}{where}")
            for person in group.researchers:
                role = f" ({person.role})" if person.role else ""
                lines.append(f"    - {person.name}{role}")
    return "\n".join(lines)


def format_researcher_theses(result: ResearcherThesesResult) -> str:
    lines: list[str] = []
    for record in result.researchers:
        group = f" ({record.group})" if record.group else ""
        lines.append(f"{record.name}{group}")
        if record.phd_thesis and record.phd_thesis.title:
            year = f" ({record.phd_thesis.year})" if record.phd_thesis.year else ""
            lines.append(f"  Thesis: {record.phd_thesis.title}{year}")
        else:
            lines.append("  Thesis: not found")
        lines.append(f"  Data availability: {record.data_availability}")
    return "\n".join(lines)


def format_patents(result: PatentsResult) -> str:
    lines: list[str] = []
    for patent in result.patents:
        assignee = f" - {patent.assignee}" if patent.assignee else ""
        lines.append(f"{patent.patent_number}: {patent.title}{assignee}")
        if patent.overlap_with_paper.claim_ids:
            lines.append(f"  Overlaps claims: {', '.join(patent.overlap_with_paper.claim_ids)}")
        if patent.overlap_with_paper.summary:
            lines.append(f"  {patent.overlap_with_paper.summary}")
    return "\n".join(lines)


def format_verified_claims(result: VerifiedClaimsResult) -> str:
    lines: list[str] = []
    for claim in result.claims:
        lines.append(f"{claim.claim_id}: {claim.verification_status} (confidence {claim.confidence_level})")
        lines.append(f"  {claim.original_claim}")
        for item in claim.supporting_evidence:
            lines.append(f"  + [{item.source}] {item.title}")
        for item in claim.contradicting_evidence:
            lines.append(f"  - [{item.source}] {item.title}")
        if claim.verification_summary:
            lines.append(f"  Summary: {claim.verification_summary}")
    if result.overall_assessment:
        lines.append(f"Overall: {result.overall_assessment}")
    return "\n".join(lines)
