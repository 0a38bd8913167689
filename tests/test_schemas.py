from __future__ import annotations

import json

import pytest
from pydantic import ValidationError

from evidentia.schemas import (
    Claim,
    ClaimsAnalysis,
    DeepDiveStructured,
    EvidenceItem,
    Patent,
    PatentsResult,
    PersonContact,
    ResearchGroupsResult,
    ResearcherThesesResult,
    SimilarPaper,
    SimilarPapersResult,
    ThesisRecord,
    VerifiedClaim,
    VerifiedClaimsResult,
)
from evidentia.utils.text import clean_email_strict, clean_url_strict


def _verified_payload() -> dict:
    return {
        "claims": [
            {
                "claimId": "c1",
                "originalClaim": "Biochar raises soil carbon.",
                "verificationStatus": "partially verified",
                "confidenceLevel": "medium",
                "supportingEvidence": [
                    "[Patent] US7729863B2 soil amendment",
                    {"source": "papers", "title": "- Field trial of biochar", "relevance": "Same design"},
                ],
                "contradictingEvidence": "None found",
                "verificationSummary": "Directionally supported.",
            }
        ],
        "overallAssessment": "Reasonable",
    }


def test_closed_set_fallbacks() -> None:
    assert Claim(id="c1", claim="x", strength="strong").strength == "High"
    assert Claim(id="c1", claim="x", strength="whatever").strength == "Unclear"
    claim = VerifiedClaim(claim_id="C1", original_claim="x", verification_status="maybe", confidence_level="???")
    assert claim.verification_status == "Insufficient Evidence"
    assert claim.confidence_level == "Low"


def test_claims_unwrap_and_dedupe() -> None:
    analysis = ClaimsAnalysis.model_validate(
        {
            "structured": {
                "claims": [
                    {"id": "c1", "claim": "First"},
                    {"id": "C1", "claim": "Duplicate"},
                    {"id": "", "claim": "No id"},
                    {"id": "C2", "claim": "Second", "keyNumbers": "N=40; p<0.01"},
                ]
            },
            "promptNotes": "checked",
        }
    )
    assert analysis.claim_ids() == ["C1", "C2"]
    assert analysis.claims[1].key_numbers == ["N=40", "p<0.01"]
    assert analysis.prompt_notes == "checked"


def test_claims_without_claims_key_is_rejected() -> None:
    with pytest.raises(ValidationError):
        ClaimsAnalysis.model_validate({"executiveSummary": ["x"]})


def test_similar_papers_requires_key() -> None:
    with pytest.raises(ValidationError):
        SimilarPapersResult.model_validate({"papers": [{"title": "x"}]})


def test_similar_paper_normalisation() -> None:
    paper = SimilarPaper.model_validate(
        {
            "title": "Biochar field trial",
            "identifier": "doi:10.1000/ABC.1",
            "year": "n/a",
            "clusterLabel": "field deployment",
            "overlapHighlights": ["same soil", "same sensor"],
            "methodMatrix": {"sampleModel": "Loam plots", "outputsMetrics": "SOC"},
        }
    )
    assert paper.year is None
    assert paper.doi == "10.1000/abc.1"
    assert paper.cluster_label == "Field deployments"
    assert paper.method_overlap == ["same soil", "same sensor", "Not reported"]
    assert paper.method_comparison.sample == "Loam plots"
    assert paper.method_comparison.outcomes == "SOC"
    assert paper.method_comparison.equipment == "Not reported"

    long = SimilarPaper(title="t", method_overlap=["a", "b", "c", "d", "e"])
    assert long.method_overlap == ["a", "b", "c"]


def test_contact_cleaning() -> None:
    person = PersonContact.model_validate(
        {
            "name": "Ana  Lee",
            "email": "[a@x.edu](mailto:a@x.edu)",
            "orcid": "https://orcid.org/0000-0002-1825-009x",
            "profiles": [
                {"platform": "Google Scholar", "url": "Not found"},
                {"platform": "Website", "url": "[lab](https://lee.example.edu/people)."},
            ],
        }
    )
    assert person.name == "Ana Lee"
    assert person.email == "a@x.edu"
    assert person.orcid == "0000-0002-1825-009X"
    assert [p.url for p in person.profiles] == ["https://lee.example.edu/people"]


def test_url_and_email_cleaners() -> None:
    assert clean_url_strict("http://insecure.example.org") is None
    assert clean_url_strict("https://example.org/x]") == "https://example.org/x"
    assert clean_url_strict("see https://example.org/a, then") == "https://example.org/a"
    assert clean_email_strict("mailto:Someone@Uni.EDU") == "someone@uni.edu"
    assert clean_email_strict("Not found") is None


def test_thesis_record_nulls_missing_thesis() -> None:
    record = ThesisRecord.model_validate(
        {"name": "Ana Lee", "phdThesis": {"title": "Not found", "url": "Not found"}, "data_publicly_available": True}
    )
    assert record.phd_thesis is None
    assert record.data_availability == "yes"

    partial = ThesisRecord.model_validate({"name": "Ben Kim", "phdThesis": {"title": "Soil carbon", "url": "n/a"}})
    assert partial.phd_thesis is not None
    assert partial.phd_thesis.url is None


def test_patent_defaults() -> None:
    patent = Patent.model_validate({"patentNumber": "US 7,729,863 B2", "assignee": "Not reported"})
    assert patent.patent_number == "US7729863B2"
    assert patent.title == "Untitled patent"
    assert patent.assignee is None
    assert patent.url == "https://patents.google.com/patent/US7729863B2"


def test_evidence_prefixes_move_into_source() -> None:
    bracketed = EvidenceItem.model_validate("[Patent] US123 widget")
    assert (bracketed.source, bracketed.title) == ("Patent", "US123 widget")

    labelled = EvidenceItem.model_validate({"title": "- Thesis: Soil microbes"})
    assert (labelled.source, labelled.title) == ("Thesis", "Soil microbes")

    unknown = EvidenceItem.model_validate({"source": "blog", "title": "Some post"})
    assert unknown.source == "Similar Paper"

    assert "relevance" not in EvidenceItem(title="x").to_payload()


def test_placeholder_evidence_is_dropped() -> None:
    result = VerifiedClaimsResult.model_validate(_verified_payload())
    claim = result.claims[0]
    assert claim.claim_id == "C1"
    assert claim.verification_status == "Partially Verified"
    assert claim.confidence_level == "Moderate"
    assert claim.contradicting_evidence == []
    assert [item.source for item in claim.supporting_evidence] == ["Patent", "Similar Paper"]
    assert claim.supporting_evidence[1].title == "Field trial of biochar"


def test_high_confidence_needs_three_independent_sources() -> None:
    weak = VerifiedClaim(
        claim_id="C1",
        original_claim="x",
        verification_status="Verified",
        confidence_level="High",
        supporting_evidence=[{"source": "Similar Paper", "title": "A"}, {"source": "Similar Paper", "title": "a"}],
    )
    assert weak.confidence_level == "Moderate"

    strong = VerifiedClaim(
        claim_id="C1",
        original_claim="x",
        verification_status="Verified",
        confidence_level="High",
        supporting_evidence=[
            {"source": "Similar Paper", "title": "A"},
            {"source": "Patent", "title": "B"},
            {"source": "Thesis", "title": "C"},
        ],
    )
    assert strong.confidence_level == "High"

    contradicted = strong.model_copy(deep=True).model_dump(by_alias=True)
    contradicted["contradictingEvidence"] = [{"source": "Patent", "title": "D"}]
    assert VerifiedClaim.model_validate(contradicted).confidence_level == "Moderate"


def test_evidence_prefix_split_is_stable() -> None:
    once = EvidenceItem.model_validate({"title": "[Similar Paper] Paper - Smith et al. 2020"}).to_payload()
    assert once == {"source": "Similar Paper", "title": "Paper - Smith et al. 2020"}
    assert EvidenceItem.model_validate(once).to_payload() == once

    stacked = EvidenceItem.model_validate("Patent: Thesis: Microbial carbon").to_payload()
    assert stacked == {"source": "Patent", "title": "Thesis: Microbial carbon"}
    assert EvidenceItem.model_validate(stacked).to_payload() == stacked

    labelled = EvidenceItem.model_validate({"source": "Similar Paper", "title": "Patents: a primer"})
    assert labelled.title == "Patents: a primer"

    bullets = EvidenceItem.model_validate("- - Field trial of biochar")
    assert bullets.title == "Field trial of biochar"


MESSY_RESULTS = [
    (
        ClaimsAnalysis,
        {
            "structured": {
                "executiveSummary": "Biochar raises soil carbon.",
                "claims": [
                    {"id": "c1", "claim": "  Biochar   raises carbon ", "strength": "strong", "keyNumbers": "N=40; p<0.01"},
                    {"id": "C1", "claim": "Duplicate"},
                ],
            },
            "promptNotes": "n/a",
        },
    ),
    (
        SimilarPapersResult,
        {
            "similarPapers": [
                {
                    "title": "Biochar field trial",
                    "doi": "https://doi.org/10.1000/BETA.",
                    "url": "[trial](https://example.org/trial)",
                    "year": "not reported",
                    "authors": "Ben Kim; Cara Diaz",
                    "overlapHighlights": "a; b",
                }
            ]
        },
    ),
    (
        ResearchGroupsResult,
        {
            "papers": [
                {
                    "title": "Alpha paper",
                    "authors": [
                        {"name": "Ana  Lee", "email": "[a@x.edu](mailto:a@x.edu)", "orcid": "https://orcid.org/0000-0002-1825-0097"},
                        {"name": ""},
                    ],
                    "groups": [{"name": "Lee Soil Lab", "website": "Not found", "researchers": [{"name": "Ana Lee"}]}],
                }
            ]
        },
    ),
    (
        ResearcherThesesResult,
        [
            {
                "name": "Ana Lee",
                "phdThesis": {"title": "Carbon in loam soils", "year": "2014", "url": "Not found"},
                "data_publicly_available": "maybe",
            }
        ],
    ),
    (
        PatentsResult,
        {
            "patents": [
                {"patentNumber": "US 7,729,863 B2", "assignee": "Not reported", "overlapWithPaper": {"claimIds": "c1, c2"}},
                {"title": "No number"},
            ]
        },
    ),
    (
        VerifiedClaimsResult,
        {
            "claims": [
                {
                    "claimId": "c1",
                    "originalClaim": "Biochar raises soil carbon.",
                    "verificationStatus": "verified",
                    "confidenceLevel": "high",
                    "supportingEvidence": [
                        "[Similar Paper] Paper - Smith et al. 2020",
                        "Patent: Thesis: Microbial carbon",
                        {"source": "theses", "title": "- Soil microbes"},
                    ],
                    "contradictingEvidence": "None found",
                }
            ]
        },
    ),
    (
        DeepDiveStructured,
        {
            "theses": [{"thesis_title": "Alpha soils", "data_url": "https://zenodo.org/record/1", "data_access": "open"}],
            "sources_checked": "University repository",
            "follow_up": "Email the PI",
        },
    ),
]


@pytest.mark.parametrize("model, payload", MESSY_RESULTS, ids=[model.__name__ for model, _ in MESSY_RESULTS])
def test_normalisation_is_idempotent_through_json(model, payload) -> None:
    once = model.model_validate(payload).to_payload()
    twice = model.model_validate(json.loads(json.dumps(once))).to_payload()
    assert twice == once



def test_deep_dive_accepts_snake_case_keys() -> None:
    structured = DeepDiveStructured.model_validate(
        {
            "theses": [
                {"thesis_title": "Alpha soils", "data_url": "https://zenodo.org/record/1", "data_access": "open"},
                {"notes": "nothing useful"},
            ],
            "sources_checked": ["University repository"],
            "follow_up": "Email the PI",
        }
    )
    assert len(structured.theses) == 1
    assert structured.theses[0].data_access == "public"
    assert structured.sources_checked == ["University repository"]
    assert structured.follow_up == ["Email the PI"]
