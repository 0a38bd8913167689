from __future__ import annotations

from pathlib import Path

import pytest

from evidentia.sources import load_source_document


def test_header_lines_are_used(tmp_path: Path) -> None:
    paper = tmp_path / "alpha.txt"
    paper.write_text(
        "Title: Soil carbon under biochar\n"
        "Authors: Ana Lee; Ben Kim and Cara Diaz\n"
        "DOI: https://doi.org/10.1234/ABC.5\n\n"
        "Abstract. We measured soil carbon.\n",
        encoding="utf-8",
    )
    doc = load_source_document(paper)
    assert doc.title == "Soil carbon under biochar"
    assert doc.authors == ["Ana Lee", "Ben Kim", "Cara Diaz"]
    assert doc.doi == "10.1234/abc.5"
    assert doc.original_file_name == "alpha.txt"
    assert "We measured soil carbon." in doc.text
    assert "text" not in doc.to_payload()


def test_first_line_title_and_overrides(tmp_path: Path) -> None:
    paper = tmp_path / "beta.md"
    paper.write_text("\n# A markdown heading\n\nBody text.\n", encoding="utf-8")
    doc = load_source_document(paper)
    assert doc.title == "A markdown heading"
    assert doc.authors == []
    assert doc.doi is None

    overridden = load_source_document(paper, title="Override", authors=["Dana Wu"], doi="10.5555/beta")
    assert overridden.title == "Override"
    assert overridden.authors == ["Dana Wu"]
    assert overridden.doi == "10.5555/beta"


def test_unsupported_or_missing_files(tmp_path: Path) -> None:
    pdf = tmp_path / "paper.pdf"
    pdf.write_bytes(b"%PDF-1.7")
    with pytest.raises(ValueError):
        load_source_document(pdf)
    with pytest.raises(FileNotFoundError):
        load_source_document(tmp_path / "missing.txt")
