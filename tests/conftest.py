"""Shared test fixtures for the triage test suite."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Sequence, Union

import pytest
from langchain_core.messages import AIMessageChunk

from triage.core.config import Settings
from triage.core.models import Log
from triage.llm.client import ModelStream
from triage.retrieval.memory import InMemoryObservabilityPlatform

INCIDENT_TIME = datetime(2025, 3, 19, 4, 25, 0, tzinfo=timezone.utc)


# ── Scripted language model ─────────────────────────────────────


def text_chunk(text: str) -> AIMessageChunk:
    return AIMessageChunk(content=text)


def tool_chunk(name: str, args: Union[dict, str], call_id: str = "call_1", index: int = 0) -> AIMessageChunk:
    raw = args if isinstance(args, str) else json.dumps(args, default=str)
    return AIMessageChunk(
        content="",
        tool_call_chunks=[{"name": name, "args": raw, "id": call_id, "index": index}],
    )


class ScriptedLLM:
    """Stands in for ``ChatModelClient``; replays one scripted response per call.

    A response is a list of message chunks, or an exception to raise when the
    stream is opened. Once the script runs out every call returns plain text
    with no tool calls.
    """

    def __init__(self, responses: Sequence[Union[list[AIMessageChunk], BaseException]] = ()) -> None:
        self.responses = list(responses)
        self.calls: list[dict[str, Any]] = []

    async def stream(self, *, system: str, prompt: str, tools: Optional[dict] = None, tool_choice: str = "auto"):
        self.calls.append(
            {"system": system, "prompt": prompt, "tools": dict(tools or {}), "tool_choice": tool_choice}
        )
        response = self.responses.pop(0) if self.responses else [text_chunk("Done.")]
        if isinstance(response, BaseException):
            raise response

        async def chunks():
            for chunk in response:
                yield chunk

        return ModelStream(chunks(), tools or {})

    async def generate(self, *, system: str, prompt: str, tools: Optional[dict] = None, tool_choice: str = "auto"):
        stream = await self.stream(system=system, prompt=prompt, tools=tools, tool_choice=tool_choice)
        return await stream.collect()


def log_query_args(query: str = "service:orders OR service:tickets", **overrides) -> dict:
    args = {
        "query": query,
        "start": (INCIDENT_TIME - timedelta(minutes=30)).isoformat(),
        "end": (INCIDENT_TIME + timedelta(minutes=15)).isoformat(),
        "limit": 100,
        "page_cursor": None,
        "reasoning": f"Looking at {query}",
    }
    args.update(overrides)
    return args


# ── Fixtures ────────────────────────────────────────────────────


@pytest.fixture
def incident_time() -> datetime:
    return INCIDENT_TIME


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        groq_api_key="test-key",
        log_search_max_iterations=4,
        code_search_max_iterations=3,
        known_services=["orders", "payments", "tickets", "expiration"],
    )


@pytest.fixture
def sample_logs() -> list[Log]:
    return [
        Log(
            timestamp=INCIDENT_TIME - timedelta(minutes=20),
            service="orders",
            message="Order created order_id=ord_1 ticket_id=tkt_1",
            attributes={"order_id": "ord_1", "ticket_id": "tkt_1"},
        ),
        Log(
            timestamp=INCIDENT_TIME - timedelta(minutes=19),
            service="expiration",
            level="warn",
            message="No jobs received in 300s on queue=order:expiration-v2",
            attributes={"queue": "order:expiration-v2"},
        ),
        Log(
            timestamp=INCIDENT_TIME - timedelta(minutes=5),
            service="orders",
            level="debug",
            message="GET /health 200",
        ),
        Log(
            timestamp=INCIDENT_TIME,
            service="tickets",
            level="error",
            message="Cannot reserve ticket_id=tkt_1: ticket already reserved",
            attributes={"ticket_id": "tkt_1", "status_code": 409},
        ),
        Log(
            timestamp=INCIDENT_TIME + timedelta(minutes=1),
            service="payments",
            level="error",
            message="Stripe charge failed order_id=ord_2: ReadTimeout after 5000ms",
            attributes={"order_id": "ord_2", "provider": "stripe"},
        ),
    ]


@pytest.fixture
def platform(sample_logs) -> InMemoryObservabilityPlatform:
    return InMemoryObservabilityPlatform(sample_logs)


@pytest.fixture
def sample_labels() -> dict[str, list[str]]:
    return {
        "service": ["expiration", "orders", "payments", "tickets"],
        "level": ["error", "info", "warn"],
    }
