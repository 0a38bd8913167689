from __future__ import annotations

from pathlib import Path

from evidentia.database.store import LibraryStore
from evidentia.utils.logging import events_of_type, reset_events


def _source(path: str) -> dict:
    return {"path": path, "originalFileName": Path(path).name, "title": Path(path).stem}


def test_new_entry_at_capacity_evicts_oldest(tmp_path: Path) -> None:
    store = LibraryStore(str(tmp_path / "library.db"), capacity=2)
    try:
        assert store.upsert("a", {"label": "A"}).action == "inserted"
        store.upsert("b", {"label": "B"})
        result = store.upsert("c", {"label": "C"})
        assert result.evicted == "a"
        assert store.get("a") is None
        assert [row["id"] for row in store.list()] == ["b", "c"]
    finally:
        store.close()


def test_update_at_capacity_evicts_nothing(tmp_path: Path) -> None:
    store = LibraryStore(str(tmp_path / "library.db"), capacity=2)
    try:
        store.upsert("a", {"label": "A"})
        store.upsert("b", {"label": "B"})
        result = store.upsert("a", {"label": "A2"})
        assert result.action == "updated"
        assert result.evicted is None
        assert store.count() == 2
        # Updating does not move the entry in insertion order.
        assert [row["id"] for row in store.list()] == ["a", "b"]
    finally:
        store.close()


def test_upsert_merges_top_level_fields(tmp_path: Path) -> None:
    reset_events()
    store = LibraryStore(str(tmp_path / "library.db"))
    try:
        store.upsert("alpha", {"label": "Alpha"})
        first = store.get("alpha")
        store.upsert("alpha", {"sourceDocument": _source("/papers/alpha.txt"), "id": "ignored"})
        entry = store.get("alpha")
        assert entry is not None
        assert entry.id == "alpha"
        assert entry.label == "Alpha"
        assert entry.generated_at == first.generated_at
        assert entry.source_document.original_file_name == "alpha.txt"
        assert len(events_of_type("store.upsert")) == 2
    finally:
        store.close()


def test_delete_and_stats(tmp_path: Path) -> None:
    store = LibraryStore(str(tmp_path / "library.db"), capacity=5)
    try:
        store.upsert("alpha", {"label": "Alpha"})
        store.upsert("beta", {"label": "Beta"})
        assert store.delete("alpha") is True
        assert store.delete("alpha") is False
        stats = store.stats()
        assert stats["entries"] == 1
        assert stats["capacity"] == 5
        assert stats["stages"]["claimsAnalysis"] == 0
        assert stats["thesis_deep_dives"] == 0
    finally:
        store.close()


def test_entry_id_resolution(tmp_path: Path) -> None:
    store = LibraryStore(str(tmp_path / "library.db"))
    try:
        assert store.resolve_entry_id("/papers/My Paper.txt", "My Paper.txt", "My Paper") == "my-paper"
        store.upsert("my-paper", {"sourceDocument": _source("/papers/My Paper.txt")})

        # Same source path maps back to the existing entry.
        assert store.resolve_entry_id("/papers/My Paper.txt", "My Paper.txt", "My Paper") == "my-paper"
        # Same file name from another folder is treated as the same upload.
        assert store.resolve_entry_id("/elsewhere/My Paper.txt", "My Paper.txt", "My Paper") == "my-paper"
        # A different source with the same stem gets a suffixed slug.
        assert store.resolve_entry_id("/other/my-paper.md", "my-paper.md", "my-paper") == "my-paper-2"
        assert store.find_by_source(None, None) is None
    finally:
        store.close()
