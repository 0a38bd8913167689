from __future__ import annotations

import asyncio
import random
import re
from typing import Any, Awaitable, Callable

from openai import APIConnectionError, APITimeoutError, InternalServerError, RateLimitError

from evidentia.utils.logging import log_event


def _extract_wait_seconds(exc: RateLimitError) -> float:
    response = getattr(exc, "response", None)
    header = response.headers.get("retry-after") if response is not None else None
    if header:
        try:
            return float(header)
        except ValueError:
            pass
    error_text = str(exc)
    match = re.search(r"try again in\s+([0-9]+(?:\.[0-9]+)?)s", error_text, re.IGNORECASE)
    if match:
        return float(match.group(1))
    return 30.0


async def run_with_rate_limit_retry(
    coro_factory: Callable[[], Awaitable[Any]],
    max_retries: int = 4,
    label: str = "generation",
) -> Any:
    """Run an async callable and retry on transient OpenAI/API network failures."""
    attempt = 0
    while True:
        try:
            return await coro_factory()
        except RateLimitError as exc:
            attempt += 1
            if attempt > max_retries:
                raise
            wait_seconds = _extract_wait_seconds(exc) + 1.0
            log_event(
                "generation.retry",
                {"label": label, "attempt": attempt, "reason": "rate_limit", "wait_seconds": wait_seconds},
            )
            await asyncio.sleep(wait_seconds)
        except (APIConnectionError, APITimeoutError, InternalServerError) as exc:
            attempt += 1
            if attempt > max_retries:
                raise
            wait_seconds = min(60.0, (2**attempt) + random.uniform(0.0, 1.0))
            log_event(
                "generation.retry",
                {"label": label, "attempt": attempt, "reason": type(exc).__name__, "wait_seconds": wait_seconds},
            )
            await asyncio.sleep(wait_seconds)
