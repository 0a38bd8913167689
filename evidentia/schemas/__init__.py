from .models import (
    Claim,
    ClaimsAnalysis,
    DeepDiveStructured,
    DeepDiveThesis,
    Entry,
    EvidenceItem,
    GroupsPaper,
    Patent,
    PatentsResult,
    PersonContact,
    ResearchGroup,
    ResearchGroupsResult,
    ResearcherThesesResult,
    SimilarPaper,
    SimilarPapersResult,
    SourceDocument,
    StageDraft,
    StageOutput,
    ThesisDeepDive,
    ThesisRecord,
    VerifiedClaim,
    VerifiedClaimsResult,
)

__all__ = [
    "Claim",
    "ClaimsAnalysis",
    "DeepDiveStructured",
    "DeepDiveThesis",
    "Entry",
    "EvidenceItem",
    "GroupsPaper",
    "Patent",
    "PatentsResult",
    "PersonContact",
    "ResearchGroup",
    "ResearchGroupsResult",
    "ResearcherThesesResult",
    "SimilarPaper",
    "SimilarPapersResult",
    "SourceDocument",
    "StageDraft",
    "StageOutput",
    "ThesisDeepDive",
    "ThesisRecord",
    "VerifiedClaim",
    "VerifiedClaimsResult",
]
