from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

PIPELINE_EVENTS: list[dict[str, Any]] = []


def log_event(event_type: str, payload: dict[str, Any]) -> None:
    PIPELINE_EVENTS.append(
        {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event_type": event_type,
            "payload": payload,
        }
    )


def reset_events() -> None:
    PIPELINE_EVENTS.clear()


def events_of_type(prefix: str) -> list[dict[str, Any]]:
    return [event for event in PIPELINE_EVENTS if event["event_type"].startswith(prefix)]


def events_as_markdown() -> str:
    lines = ["# Pipeline Log", ""]
    for event in PIPELINE_EVENTS:
        lines.append(
            f"- [{event['timestamp']}] **{event['event_type']}**: {event['payload']}"
        )
    if len(lines) == 2:
        lines.append("- No pipeline events captured.")
    return "\n".join(lines)
