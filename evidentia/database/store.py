from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from evidentia.schemas.models import Entry
from evidentia.utils.config import LIBRARY
from evidentia.utils.logging import log_event
from evidentia.utils.text import slugify

STAGE_FIELDS = (
    "claimsAnalysis",
    "similarPapers",
    "researchGroups",
    "researcherTheses",
    "patents",
    "verifiedClaims",
)


def _safe_json(data: Any) -> str:
    return json.dumps(data, ensure_ascii=True)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class UpsertResult:
    entry_id: str
    action: str
    evicted: str | None = None


class LibraryStore:
    """Bounded, insertion-ordered collection of pipeline entries kept in sqlite."""

    def __init__(self, db_path: str | None = None, capacity: int | None = None) -> None:
        self.db_path = Path(db_path or LIBRARY.db_path)
        if str(self.db_path) != ":memory:":
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.capacity = max(1, capacity if capacity is not None else LIBRARY.capacity)
        self.conn = sqlite3.connect(str(self.db_path))
        self.conn.row_factory = sqlite3.Row
        self._init_db()

    def close(self) -> None:
        self.conn.close()

    def _init_db(self) -> None:
        cur = self.conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS entries (
                entry_id TEXT PRIMARY KEY,
                seq INTEGER NOT NULL,
                label TEXT NOT NULL,
                source_path TEXT,
                original_file_name TEXT,
                entry_json TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )
        cur.execute("CREATE INDEX IF NOT EXISTS idx_entries_seq ON entries(seq)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_entries_source ON entries(source_path)")
        self.conn.commit()

    def _row(self, entry_id: str) -> sqlite3.Row | None:
        return self.conn.execute("SELECT * FROM entries WHERE entry_id = ?", (entry_id,)).fetchone()

    def _next_seq(self) -> int:
        row = self.conn.execute("SELECT COALESCE(MAX(seq), 0) AS seq FROM entries").fetchone()
        return int(row["seq"]) + 1

    def _oldest_id(self) -> str | None:
        row = self.conn.execute("SELECT entry_id FROM entries ORDER BY seq ASC LIMIT 1").fetchone()
        return row["entry_id"] if row else None

    def count(self) -> int:
        return int(self.conn.execute("SELECT COUNT(*) AS n FROM entries").fetchone()["n"])

    def get(self, entry_id: str) -> Entry | None:
        row = self._row(entry_id)
        if row is None:
            return None
        return Entry.model_validate(json.loads(row["entry_json"]))

    def upsert(self, entry_id: str, partial: dict[str, Any]) -> UpsertResult:
        """Merge top-level fields of ``partial`` (camelCase keys) into the entry.

        Fields absent from ``partial`` keep their stored value. Creating a new id
        while the store is full evicts the oldest entry first; updates never evict.
        """
        now = _now()
        evicted: str | None = None
        with self.conn:
            row = self._row(entry_id)
            if row is None:
                if self.count() >= self.capacity:
                    evicted = self._oldest_id()
                    if evicted:
                        self.conn.execute("DELETE FROM entries WHERE entry_id = ?", (evicted,))
                payload: dict[str, Any] = {"id": entry_id, "label": entry_id, "generatedAt": now}
                seq = self._next_seq()
                action = "inserted"
                created_at = now
            else:
                payload = json.loads(row["entry_json"])
                seq = int(row["seq"])
                action = "updated"
                created_at = row["created_at"]

            for key, value in partial.items():
                if key in {"id", "generatedAt"}:
                    continue
                payload[key] = value
            payload["updatedAt"] = now
            entry = Entry.model_validate(payload)
            stored = entry.to_payload()
            source = entry.source_document

            self.conn.execute(
                """
                INSERT INTO entries
                    (entry_id, seq, label, source_path, original_file_name, entry_json, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(entry_id) DO UPDATE SET
                    label = excluded.label,
                    source_path = excluded.source_path,
                    original_file_name = excluded.original_file_name,
                    entry_json = excluded.entry_json,
                    updated_at = excluded.updated_at
                """,
                (
                    entry_id,
                    seq,
                    entry.label or entry_id,
                    source.path,
                    source.original_file_name,
                    _safe_json(stored),
                    created_at,
                    now,
                ),
            )
        if evicted:
            log_event("store.evicted", {"entry_id": evicted, "capacity": self.capacity})
        log_event("store.upsert", {"entry_id": entry_id, "action": action, "fields": sorted(partial)})
        return UpsertResult(entry_id=entry_id, action=action, evicted=evicted)

    def list(self) -> list[dict[str, Any]]:
        rows = self.conn.execute(
            "SELECT entry_id, label, entry_json, created_at, updated_at FROM entries ORDER BY seq ASC"
        ).fetchall()
        out: list[dict[str, Any]] = []
        for row in rows:
            payload = json.loads(row["entry_json"])
            out.append(
                {
                    "id": row["entry_id"],
                    "label": row["label"],
                    "createdAt": row["created_at"],
                    "updatedAt": row["updated_at"],
                    "stages": [name for name in STAGE_FIELDS if (payload.get(name) or {}).get("structured")],
                }
            )
        return out

    def delete(self, entry_id: str) -> bool:
        with self.conn:
            cur = self.conn.execute("DELETE FROM entries WHERE entry_id = ?", (entry_id,))
        deleted = cur.rowcount > 0
        if deleted:
            log_event("store.delete", {"entry_id": entry_id})
        return deleted

    def find_by_source(self, path: str | None, original_file_name: str | None = None) -> str | None:
        if path:
            row = self.conn.execute(
                "SELECT entry_id FROM entries WHERE source_path = ? ORDER BY seq ASC LIMIT 1", (path,)
            ).fetchone()
            if row:
                return row["entry_id"]
        if original_file_name:
            row = self.conn.execute(
                "SELECT entry_id FROM entries WHERE original_file_name = ? ORDER BY seq ASC LIMIT 1",
                (original_file_name,),
            ).fetchone()
            if row:
                return row["entry_id"]
        return None

    def resolve_entry_id(self, path: str | None, original_file_name: str | None, stem: str) -> str:
        """Reuse the id of an entry for the same source, otherwise mint a unique slug."""
        existing = self.find_by_source(path, original_file_name)
        if existing:
            return existing
        base = slugify(stem)
        candidate = base
        suffix = 2
        while self._row(candidate) is not None:
            candidate = f"{base}-{suffix}"
            suffix += 1
        return candidate

    def stats(self) -> dict[str, Any]:
        stage_counts = {name: 0 for name in STAGE_FIELDS}
        deep_dives = 0
        for row in self.conn.execute("SELECT entry_json FROM entries").fetchall():
            payload = json.loads(row["entry_json"])
            for name in STAGE_FIELDS:
                if (payload.get(name) or {}).get("structured"):
                    stage_counts[name] += 1
            deep_dives += len(payload.get("thesisDeepDives") or [])
        return {
            "entries": self.count(),
            "capacity": self.capacity,
            "stages": stage_counts,
            "thesis_deep_dives": deep_dives,
        }
