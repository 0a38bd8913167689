from __future__ import annotations

import argparse
import json
from typing import Callable, Optional

from evidentia.agents.manager import STAGES, entry_state
from evidentia.agents.thesis_deep_dive import format_deep_dive
from evidentia.database.store import LibraryStore
from evidentia.schemas.models import (
    Entry,
    format_claims,
    format_patents,
    format_research_groups,
    format_researcher_theses,
    format_similar_papers,
    format_verified_claims,
)
from evidentia.utils.env import load_env_file

RENDERERS: dict[str, Callable] = {
    "claims": format_claims,
    "similar-papers": format_similar_papers,
    "research-groups": format_research_groups,
    "researcher-theses": format_researcher_theses,
    "patents": format_patents,
    "verified-claims": format_verified_claims,
}


def render_stage(entry: Entry, stage_name: str) -> Optional[str]:
    stage = next(stage for stage in STAGES if stage.name == stage_name)
    output = getattr(entry, stage.attribute)
    if output is None or output.structured is None:
        return None
    return RENDERERS[stage_name](output.structured)


def _cmd_list(args: argparse.Namespace) -> None:
    store = LibraryStore(args.db)
    try:
        print(json.dumps(store.list(), indent=2))
    finally:
        store.close()


def _cmd_show(args: argparse.Namespace) -> None:
    store = LibraryStore(args.db)
    try:
        entry = store.get(args.entry_id)
    finally:
        store.close()
    if entry is None:
        print(f"entry_id not found: {args.entry_id}")
        return
    if args.stage == "thesis-deep-dive":
        if not entry.thesis_deep_dives:
            print("No thesis deep dives stored for this entry.")
        for dive in entry.thesis_deep_dives:
            print(f"== {dive.group.name} ({dive.paper.title}) ==")
            print(format_deep_dive(dive.structured) if dive.structured else dive.text)
            print()
        return
    if args.stage:
        text = render_stage(entry, args.stage)
        print(text if text is not None else f"Stage {args.stage} has no structured output yet.")
        return
    payload = entry.to_payload()
    payload["state"] = entry_state(entry)
    print(json.dumps(payload, indent=2))


def _cmd_delete(args: argparse.Namespace) -> None:
    if not args.yes:
        answer = input(f"Delete entry {args.entry_id}? [y/N] ").strip().lower()
        if answer not in {"y", "yes"}:
            print("Aborted.")
            return
    store = LibraryStore(args.db)
    try:
        deleted = store.delete(args.entry_id)
    finally:
        store.close()
    print(f"Deleted {args.entry_id}" if deleted else f"entry_id not found: {args.entry_id}")


def _cmd_stats(args: argparse.Namespace) -> None:
    store = LibraryStore(args.db)
    try:
        print(json.dumps(store.stats(), indent=2))
    finally:
        store.close()


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Evidentia library CLI")
    p.add_argument("--db", type=str, default=None, help="SQLite library path")
    sub = p.add_subparsers(dest="cmd", required=True)

    list_p = sub.add_parser("list", help="List entries, oldest first")
    list_p.set_defaults(func=_cmd_list)

    show_p = sub.add_parser("show", help="Show one entry by id")
    show_p.add_argument("--entry-id", type=str, required=True)
    show_p.add_argument(
        "--stage",
        choices=[*RENDERERS, "thesis-deep-dive"],
        default=None,
        help="Print the plain-text rendering of one stage instead of the JSON entry",
    )
    show_p.set_defaults(func=_cmd_show)

    delete_p = sub.add_parser("delete", help="Delete one entry by id")
    delete_p.add_argument("--entry-id", type=str, required=True)
    delete_p.add_argument("--yes", action="store_true", help="Skip the confirmation prompt")
    delete_p.set_defaults(func=_cmd_delete)

    stats_p = sub.add_parser("stats", help="Library summary")
    stats_p.set_defaults(func=_cmd_stats)

    return p


def main() -> None:
    load_env_file()
    args = _build_parser().parse_args()
    args.func(args)


if __name__ == "__main__":
    main()
