from __future__ import annotations

import asyncio
from types import SimpleNamespace
from typing import Any

import httpx
import openai
import pytest

from evidentia.agents.generation import GenerationClient, TRUNCATION_NOTE, classify_response, extract_response_text
from evidentia.errors import EmptyOutput, GenerationRejected, GenerationTimeout
from evidentia.utils.config import GenerationSettings
from evidentia.utils.logging import events_of_type, reset_events
from evidentia.utils.retry import run_with_rate_limit_retry


class _Responses:
    def __init__(self, result: Any = None, delay: float = 0.0, error: Exception | None = None) -> None:
        self.result = result
        self.delay = delay
        self.error = error
        self.requests: list[dict[str, Any]] = []

    async def create(self, **kwargs: Any) -> Any:
        self.requests.append(kwargs)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result


def _client(**kwargs: Any) -> tuple[GenerationClient, _Responses]:
    responses = _Responses(**kwargs)
    settings = GenerationSettings(timeout_seconds=0.05, max_retries=0)
    return GenerationClient(client=SimpleNamespace(responses=responses), settings=settings), responses


def test_extractor_prefers_output_text() -> None:
    assert extract_response_text({"output_text": "hello", "output": []}) == "hello"


def test_extractor_walks_message_segments() -> None:
    response = SimpleNamespace(
        output_text="",
        output=[
            SimpleNamespace(type="web_search_call", content=None),
            SimpleNamespace(
                type="message",
                content=[
                    SimpleNamespace(type="output_text", text="first"),
                    SimpleNamespace(type="refusal", text="ignored"),
                    SimpleNamespace(type="output_text", text="second"),
                ],
            ),
        ],
    )
    assert extract_response_text(response) == "first\nsecond"


def test_extractor_handles_unknown_shapes() -> None:
    assert extract_response_text(None) == ""
    assert extract_response_text({"output": "not a list"}) == ""
    assert extract_response_text({"output": [{"type": "message", "content": None}]}) == ""


def test_classification() -> None:
    reset_events()
    done = classify_response({"status": "completed", "output_text": "notes"}, "claims discovery")
    assert (done.text, done.truncated) == ("notes", False)

    truncated = classify_response(
        {"status": "incomplete", "incomplete_details": {"reason": "max_output_tokens"}, "output_text": "partial"},
        "claims discovery",
    )
    assert truncated.truncated is True
    assert truncated.text == "partial" + TRUNCATION_NOTE
    assert events_of_type("generation.truncated")[-1]["payload"]["code"] == "truncated_output"

    with pytest.raises(EmptyOutput, match="output limit"):
        classify_response({"status": "incomplete", "incomplete_details": {"reason": "max_output_tokens"}}, "x")
    with pytest.raises(EmptyOutput, match="content_filter"):
        classify_response({"status": "incomplete", "incomplete_details": {"reason": "content_filter"}}, "x")
    with pytest.raises(EmptyOutput):
        classify_response({"status": "completed", "output_text": "   "}, "x")
    with pytest.raises(GenerationRejected, match="quota exceeded"):
        classify_response({"status": "failed", "error": {"message": "quota exceeded"}}, "x")
    with pytest.raises(GenerationRejected, match="OpenAI request failed."):
        classify_response({"status": "cancelled"}, "x")


@pytest.mark.asyncio
async def test_discovery_requests_web_search() -> None:
    client, responses = _client(result={"status": "completed", "output_text": "notes"})
    result = await client.discover(label="claims discovery", prompt="p", model="m", max_output_tokens=10)
    assert result.text == "notes"
    assert result.model == "m"
    request = responses.requests[0]
    assert request["tools"][0]["type"] == "web_search"
    assert request["max_output_tokens"] == 10

    await client.convert(label="claims cleanup", prompt="p", model="m", max_output_tokens=10)
    assert "tools" not in responses.requests[1]


@pytest.mark.asyncio
async def test_timeout_is_reported() -> None:
    client, _ = _client(result={"status": "completed", "output_text": "late"}, delay=1.0)
    with pytest.raises(GenerationTimeout) as info:
        await client.generate(label="patents discovery", prompt="p", model="m", max_output_tokens=10)
    assert info.value.code == "generation_timeout"
    assert "patents discovery" in info.value.message


@pytest.mark.asyncio
async def test_status_error_is_rejected_with_code() -> None:
    request = httpx.Request("POST", "https://api.openai.com/v1/responses")
    response = httpx.Response(400, request=request)
    error = openai.BadRequestError("bad", response=response, body={"error": {"message": "bad model"}})
    client, _ = _client(error=error)
    with pytest.raises(GenerationRejected) as info:
        await client.generate(label="claims cleanup", prompt="p", model="m", max_output_tokens=10)
    assert info.value.status_code == 400
    assert info.value.message == "bad model"


@pytest.mark.asyncio
async def test_rate_limit_waits_for_retry_after(monkeypatch: pytest.MonkeyPatch) -> None:
    reset_events()
    waits: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        waits.append(seconds)

    monkeypatch.setattr("evidentia.utils.retry.asyncio.sleep", fake_sleep)
    request = httpx.Request("POST", "https://api.openai.com/v1/responses")
    response = httpx.Response(429, request=request, headers={"retry-after": "2"})
    attempts = {"count": 0}

    async def flaky() -> str:
        attempts["count"] += 1
        if attempts["count"] == 1:
            raise openai.RateLimitError("slow down", response=response, body=None)
        return "ok"

    assert await run_with_rate_limit_retry(flaky, max_retries=2, label="claims discovery") == "ok"
    assert waits == [3.0]
    assert events_of_type("generation.retry")[0]["payload"]["reason"] == "rate_limit"
