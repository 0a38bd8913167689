from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any

from openai import APIConnectionError, APIStatusError, APITimeoutError, AsyncOpenAI

from evidentia.errors import EmptyOutput, GenerationRejected, GenerationTimeout, TruncatedOutput
from evidentia.utils.config import GENERATION, GenerationSettings
from evidentia.utils.http_client import make_async_client
from evidentia.utils.logging import log_event
from evidentia.utils.retry import run_with_rate_limit_retry

TRUNCATION_NOTE = (
    "\n\n[Note: Response truncated because the model hit its output limit. "
    "Consider rerunning if key details are missing.]"
)
DEFAULT_REJECTION = "OpenAI request failed."


def _field(obj: Any, name: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def extract_response_text(response: Any) -> str:
    """Concatenate every output text segment of a Responses API result.

    Prefers the aggregated ``output_text`` field, then walks
    ``output[type=message].content[type=output_text]`` in order. Unknown or
    missing shapes yield an empty string.
    """
    text = _field(response, "output_text")
    if isinstance(text, str) and text.strip():
        return text

    output = _field(response, "output")
    if not isinstance(output, (list, tuple)):
        return ""
    parts: list[str] = []
    for item in output:
        if _field(item, "type") not in (None, "message"):
            continue
        content = _field(item, "content")
        if not isinstance(content, (list, tuple)):
            continue
        for segment in content:
            if _field(segment, "type") not in (None, "output_text"):
                continue
            segment_text = _field(segment, "text")
            if isinstance(segment_text, str) and segment_text:
                parts.append(segment_text)
    return "\n".join(parts)


def _service_message(response: Any) -> str | None:
    error = _field(response, "error")
    if isinstance(error, str) and error.strip():
        return error.strip()
    message = _field(error, "message")
    if isinstance(message, str) and message.strip():
        return message.strip()
    message = _field(response, "message")
    if isinstance(message, str) and message.strip():
        return message.strip()
    return None


@dataclass
class GenerationResult:
    text: str
    truncated: bool = False
    status: str = "completed"
    model: str = ""
    elapsed_seconds: float = 0.0


def classify_response(response: Any, label: str) -> GenerationResult:
    """Map a raw response onto complete, truncated, empty or rejected."""
    status = _field(response, "status") or "completed"
    text = extract_response_text(response).strip()

    if status == "completed":
        if not text:
            raise EmptyOutput(f"{label} response contained no text.")
        return GenerationResult(text=text, status=status)

    if status == "incomplete":
        reason = _field(_field(response, "incomplete_details"), "reason") or "unknown"
        if text:
            warning = TruncatedOutput(f"{label} response hit its output limit; partial text kept.")
            log_event("generation.truncated", {"label": label, "reason": reason, **warning.as_dict()})
            return GenerationResult(text=text + TRUNCATION_NOTE, truncated=True, status=status)
        if reason == "max_output_tokens":
            raise EmptyOutput(f"{label} response hit the output limit before completing.")
        raise EmptyOutput(f"{label} response ended early: {reason}")

    raise GenerationRejected(_service_message(response) or DEFAULT_REJECTION)


class GenerationClient:
    """Thin wrapper over ``AsyncOpenAI().responses.create`` with the two call profiles."""

    def __init__(self, client: Any | None = None, settings: GenerationSettings = GENERATION) -> None:
        self._client = client
        self.settings = settings

    @property
    def client(self) -> Any:
        if self._client is None:
            http_client = make_async_client(self.settings.timeout_seconds)
            self._client = AsyncOpenAI(http_client=http_client, max_retries=0)
        return self._client

    def _request(self, *, model: str, prompt: str, max_output_tokens: int, search: bool) -> dict[str, Any]:
        request: dict[str, Any] = {
            "model": model,
            "input": prompt,
            "reasoning": {"effort": self.settings.reasoning_effort},
            "max_output_tokens": max_output_tokens,
        }
        if search:
            request["tools"] = [{"type": "web_search", "search_context_size": self.settings.search_context_size}]
            request["tool_choice"] = "auto"
        return request

    async def generate(
        self,
        *,
        label: str,
        prompt: str,
        model: str,
        max_output_tokens: int,
        search: bool = False,
    ) -> GenerationResult:
        request = self._request(model=model, prompt=prompt, max_output_tokens=max_output_tokens, search=search)
        timeout = self.settings.timeout_seconds
        log_event(
            "generation.request",
            {"label": label, "model": model, "search": search, "prompt_chars": len(prompt)},
        )
        started = time.perf_counter()

        async def _call() -> Any:
            return await asyncio.wait_for(self.client.responses.create(**request), timeout=timeout)

        try:
            response = await run_with_rate_limit_retry(_call, max_retries=self.settings.max_retries, label=label)
        except asyncio.TimeoutError as exc:
            log_event("generation.timeout", {"label": label, "timeout_seconds": timeout})
            raise GenerationTimeout(label, timeout) from exc
        except APIStatusError as exc:
            body = exc.body if isinstance(exc.body, dict) else {}
            message = _service_message(body) or _service_message(exc) or DEFAULT_REJECTION
            log_event("generation.rejected", {"label": label, "status_code": exc.status_code, "message": message})
            raise GenerationRejected(message, status_code=exc.status_code) from exc
        except (APIConnectionError, APITimeoutError) as exc:
            log_event("generation.rejected", {"label": label, "message": str(exc)})
            raise GenerationRejected(str(exc) or DEFAULT_REJECTION) from exc

        result = classify_response(response, label)
        result.model = model
        result.elapsed_seconds = round(time.perf_counter() - started, 3)
        log_event(
            "generation.completed",
            {
                "label": label,
                "model": model,
                "chars": len(result.text),
                "truncated": result.truncated,
                "elapsed_seconds": result.elapsed_seconds,
            },
        )
        return result

    async def discover(self, *, label: str, prompt: str, model: str, max_output_tokens: int) -> GenerationResult:
        return await self.generate(
            label=label, prompt=prompt, model=model, max_output_tokens=max_output_tokens, search=True
        )

    async def convert(self, *, label: str, prompt: str, model: str, max_output_tokens: int) -> GenerationResult:
        return await self.generate(
            label=label, prompt=prompt, model=model, max_output_tokens=max_output_tokens, search=False
        )

    async def aclose(self) -> None:
        if self._client is not None and hasattr(self._client, "close"):
            await self._client.close()
