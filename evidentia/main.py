from __future__ import annotations

import argparse
import asyncio
import json
from datetime import datetime, timezone
from pathlib import Path

from evidentia.agents.generation import GenerationClient
from evidentia.agents.manager import STAGE_NAMES, run_pipeline
from evidentia.agents.stage import StageContext
from evidentia.database.store import LibraryStore
from evidentia.sources import load_source_document
from evidentia.utils.env import load_env_file
from evidentia.utils.network import check_generation_service, check_openai_dns


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the Evidentia evidence-synthesis pipeline on one paper")
    parser.add_argument("source", type=Path, help="Path to the paper as plain text or markdown")
    parser.add_argument("--entry-id", type=str, default=None, help="Library entry id (default: resolved from the source)")
    parser.add_argument(
        "--start-stage",
        choices=STAGE_NAMES,
        default=STAGE_NAMES[0],
        help="Resume from this stage; earlier stage outputs must already be in the library",
    )
    parser.add_argument("--deep-dive", action="store_true", help="Run the thesis deep dive after verification")
    parser.add_argument("--paper-index", type=int, default=0, help="Deep dive: paper (among papers with groups)")
    parser.add_argument("--group-index", type=int, default=0, help="Deep dive: group within the chosen paper")
    parser.add_argument(
        "--reuse-discovery",
        action="store_true",
        help="Reuse stored discovery notes instead of repeating the search call",
    )
    parser.add_argument("--title", type=str, default=None, help="Override the derived paper title")
    parser.add_argument("--authors", type=str, default=None, help="Override authors (semicolon separated)")
    parser.add_argument("--doi", type=str, default=None, help="Override the derived DOI")
    parser.add_argument("--db", type=str, default=None, help="SQLite library path")
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=Path("outputs"),
        help="Directory to store the run log and the entry snapshot",
    )
    parser.add_argument(
        "--strict-network",
        action="store_true",
        help="Require the generation service preflight check to pass before running.",
    )
    return parser


async def _run(args: argparse.Namespace) -> dict[str, str]:
    authors = [name.strip() for name in args.authors.split(";") if name.strip()] if args.authors else None
    source = load_source_document(args.source, title=args.title, authors=authors, doi=args.doi)

    store = LibraryStore(args.db)
    generation = GenerationClient()
    try:
        entry_id = args.entry_id or store.resolve_entry_id(
            source.path, source.original_file_name, args.source.stem
        )
        ctx = StageContext(
            store=store,
            generation=generation,
            source=source,
            reuse_discovery=bool(args.reuse_discovery),
            options={"paper_index": args.paper_index, "group_index": args.group_index},
        )
        artifacts = await run_pipeline(ctx, entry_id, start_stage=args.start_stage, deep_dive=bool(args.deep_dive))
        entry = store.get(entry_id)
    finally:
        await generation.aclose()
        store.close()

    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    run_dir = args.output_dir / entry_id / timestamp
    run_dir.mkdir(parents=True, exist_ok=True)

    entry_path = run_dir / "entry.json"
    log_path = run_dir / "pipeline_log.md"
    timings_path = run_dir / "step_timings.json"

    entry_path.write_text(
        json.dumps(entry.to_payload() if entry else {}, indent=2),
        encoding="utf-8",
    )
    log_path.write_text(artifacts.retrieval_log_markdown, encoding="utf-8")
    timings_path.write_text(
        json.dumps(
            {
                "step_timings_seconds": artifacts.step_timings_seconds,
                "pipeline_duration_seconds": artifacts.pipeline_duration_seconds,
                "results": [
                    {"stage": r.stage, "status": r.status, "error": r.error, "reason": r.reason, "truncated": r.truncated}
                    for r in artifacts.results
                ],
            },
            indent=2,
        ),
        encoding="utf-8",
    )

    return {
        "entry_id": entry_id,
        "state": artifacts.state,
        "halted_at": artifacts.halted_at or "",
        "entry": str(entry_path),
        "log": str(log_path),
        "step_timings": str(timings_path),
        "pipeline_duration_seconds": f"{artifacts.pipeline_duration_seconds:.2f}",
    }


def main() -> None:
    load_env_file()
    parser = _build_arg_parser()
    args = parser.parse_args()
    ok, msg = check_openai_dns()
    if not ok:
        raise RuntimeError(f"{msg}. Fix DNS/network and retry.")
    svc_ok, svc_msg, details = check_generation_service()
    if args.strict_network and not svc_ok:
        raise RuntimeError(
            f"{svc_msg} (status={details['status_code']} error={details['error']})\n"
            "Set proxy/DNS and retry, or run without --strict-network."
        )
    if not svc_ok:
        print(f"[network] WARNING: {svc_msg}. Continuing without strict enforcement.", flush=True)
    summary = asyncio.run(_run(args))

    print("Evidentia pipeline finished")
    print(f"Entry: {summary['entry_id']}")
    print(f"State: {summary['state']}")
    if summary["halted_at"]:
        print(f"Halted at: {summary['halted_at']}")
    print(f"Entry snapshot: {summary['entry']}")
    print(f"Pipeline log: {summary['log']}")
    print(f"Step timings: {summary['step_timings']}")
    print(f"Pipeline duration (s): {summary['pipeline_duration_seconds']}")


if __name__ == "__main__":
    main()
