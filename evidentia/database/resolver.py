from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterable, Optional

from evidentia.utils.identifiers import normalize_doi, normalize_title_key

if TYPE_CHECKING:
    from evidentia.schemas.models import Entry


@dataclass(frozen=True)
class KnownPaper:
    """A paper the pipeline already knows about, with the attributes it can lend."""

    title: str
    doi: Optional[str] = None
    year: Optional[int] = None
    authors: tuple[str, ...] = ()
    origin: str = "similar-paper"


@dataclass
class PaperIndex:
    by_doi: dict[str, KnownPaper] = field(default_factory=dict)
    by_title: dict[str, KnownPaper] = field(default_factory=dict)

    def add(self, paper: KnownPaper) -> None:
        # First registration wins so the source document outranks later duplicates.
        doi = normalize_doi(paper.doi)
        if doi and doi not in self.by_doi:
            self.by_doi[doi] = paper
        title = normalize_title_key(paper.title)
        if title and title not in self.by_title:
            self.by_title[title] = paper

    def resolve(self, title: str | None, identifier: str | None = None) -> KnownPaper | None:
        """DOI match first, then normalised title; None when neither hits."""
        for candidate in (identifier, title):
            doi = normalize_doi(candidate)
            if doi and doi in self.by_doi:
                return self.by_doi[doi]
        key = normalize_title_key(title)
        if key and key in self.by_title:
            return self.by_title[key]
        return None


def build_index(papers: Iterable[KnownPaper]) -> PaperIndex:
    index = PaperIndex()
    for paper in papers:
        index.add(paper)
    return index


def known_papers_for_entry(entry: "Entry") -> list[KnownPaper]:
    papers: list[KnownPaper] = []
    source = entry.source_document
    if source.title:
        papers.append(
            KnownPaper(
                title=source.title,
                doi=source.doi,
                authors=tuple(source.authors),
                origin="source",
            )
        )
    if entry.similar_papers and entry.similar_papers.structured:
        for paper in entry.similar_papers.structured.similar_papers:
            papers.append(
                KnownPaper(
                    title=paper.title,
                    doi=paper.doi,
                    year=paper.year,
                    authors=tuple(paper.authors),
                )
            )
    return papers


def index_for_entry(entry: "Entry") -> PaperIndex:
    return build_index(known_papers_for_entry(entry))
