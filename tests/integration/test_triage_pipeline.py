"""Integration test for the full LangGraph triage flow.

A scripted model stands in for Groq so the whole graph runs without API
calls: log search, reasoning, review, re-dispatch and postprocessing.
"""

from __future__ import annotations

from unittest.mock import patch

import pytest

from conftest import INCIDENT_TIME, ScriptedLLM, log_query_args, text_chunk, tool_chunk
from triage.core.cancellation import CancellationToken
from triage.core.config import Settings
from triage.core.errors import UnknownToolError
from triage.core.reducer import reduce_all
from triage.core.tools import LOG_SEARCH_TOOL, REQUEST_TOOLS
from triage.graph.triage import TriagePipeline

QUESTION = "Why did ticket tkt_1 fail to reserve at 04:25 UTC?"


def _search(query: str):
    return [text_chunk(f"Searching {query}. "), tool_chunk(LOG_SEARCH_TOOL, log_query_args(query))]


def _fact(query: str) -> dict:
    args = log_query_args(query)
    return {"title": "Charge timeouts", "fact": "Stripe timed out.", "query": query, "start": args["start"], "end": args["end"]}


def _full_script():
    return [
        _search("service:orders OR service:tickets"),       # initial log search
        [text_chunk("Enough for a first draft.")],           # log search done
        [text_chunk("Draft: "), text_chunk("ticket was double reserved.")],
        [
            text_chunk("Payments are not covered."),
            tool_chunk("logRequest", {"request": "payment failures for ord_2", "reasoning": "gap"}, call_id="req_1"),
        ],
        _search("service:payments"),                        # dispatched log search
        [text_chunk("Done.")],
        [text_chunk("Draft 2: payment timeouts left the reservation dangling.")],
        [text_chunk("Final: payment timeouts left the reservation dangling.")],
        [tool_chunk("logPostprocessing", {"facts": [_fact("service:payments")]})],
    ]


@pytest.fixture
def pipeline_settings() -> Settings:
    return Settings(
        _env_file=None,
        groq_api_key="test-key",
        log_search_max_iterations=3,
        max_review_rounds=3,
        known_services=["orders", "payments", "tickets", "expiration"],
    )


class TestTriagePipeline:
    @pytest.mark.asyncio
    async def test_full_flow_with_review_round(self, platform, pipeline_settings):
        llm = ScriptedLLM(_full_script())
        updates = []
        pipeline = TriagePipeline(llm, platform, settings=pipeline_settings)

        answer = await pipeline.run(QUESTION, on_update=updates.append, now=INCIDENT_TIME)

        assert len(llm.calls) == 9
        assert answer.error is None
        assert answer.response == "Final: payment timeouts left the reservation dangling."

        searches = [s for s in answer.steps if s.type == "logSearch" and s.data]
        assert [s.data[0].input.query for s in searches] == ["service:orders OR service:tickets", "service:payments"]
        assert [s.data for s in answer.steps_of_type("reasoning")] == [
            "Draft: ticket was double reserved.",
            "Draft 2: payment timeouts left the reservation dangling.",
        ]
        assert answer.steps_of_type("review")[-1].content == answer.response
        facts = answer.steps_of_type("logPostprocessing")[0].data
        assert [f.query for f in facts] == ["service:payments"]

        # the streamed updates alone rebuild the same answer
        assert reduce_all(updates).steps == answer.steps

        dispatched = [u for u in updates if u.type == "logSearch-tools" and u.parent_id == "req_1"]
        assert len(dispatched) == 1

        # reviewer feedback reaches the second draft
        assert "payment failures for ord_2" in llm.calls[6]["prompt"]

    @pytest.mark.asyncio
    async def test_review_rounds_are_bounded(self, platform, test_settings):
        settings = test_settings.model_copy(update={"max_review_rounds": 1})
        llm = ScriptedLLM(
            [
                [text_chunk("Nothing to search.")],
                [text_chunk("Draft only.")],
                [tool_chunk("logRequest", {"request": "more", "reasoning": "gap"})],
            ]
        )

        answer = await TriagePipeline(llm, platform, settings=settings).run(QUESTION, now=INCIDENT_TIME)

        assert answer.response == "Draft only."
        assert len(llm.calls) == 3

    @pytest.mark.asyncio
    async def test_code_request_without_searcher_is_skipped(self, platform, test_settings):
        llm = ScriptedLLM(
            [
                [text_chunk("Nothing to search.")],
                [text_chunk("Draft.")],
                [tool_chunk("codeRequest", {"request": "worker queue name", "reasoning": "gap"})],
                [text_chunk("Draft again.")],
                [text_chunk("Accepted.")],
            ]
        )

        answer = await TriagePipeline(llm, platform, settings=test_settings).run(QUESTION, now=INCIDENT_TIME)

        assert answer.response == "Accepted."
        assert answer.steps_of_type("codeSearch") == []

    @pytest.mark.asyncio
    async def test_contract_violation_is_raised(self, platform, test_settings):
        llm = ScriptedLLM(
            [
                [text_chunk("Nothing to search.")],
                [text_chunk("Draft.")],
                [tool_chunk("traceRequest", {"request": "traces", "reasoning": "gap"})],
            ]
        )
        pipeline = TriagePipeline(llm, platform, settings=test_settings)

        with patch("triage.graph.triage.logger") as mock_logger:
            with pytest.raises(UnknownToolError):
                await pipeline.run(QUESTION, now=INCIDENT_TIME)

        assert mock_logger.error.call_args.args == ("answer_failed",)

    @pytest.mark.asyncio
    async def test_cancellation_finalizes_with_error(self, platform, test_settings):
        cancel = CancellationToken()
        llm = ScriptedLLM([[text_chunk("Nothing to search.")], [text_chunk("Draft.")]])

        def on_update(update):
            if update.type == "reasoning-chunk":
                cancel.cancel("user stopped")

        answer = await TriagePipeline(llm, platform, settings=test_settings).run(
            QUESTION, on_update=on_update, cancel=cancel, now=INCIDENT_TIME
        )

        assert answer.error == "Cancelled: user stopped"
        assert answer.steps_of_type("reasoning")[0].data == "Draft."
        assert len(llm.calls) == 2

    @pytest.mark.asyncio
    async def test_reasoner_requests_evidence_before_drafting(self, platform, test_settings):
        llm = ScriptedLLM(
            [
                [text_chunk("Nothing to search.")],
                [
                    text_chunk("Payments are not covered yet."),
                    tool_chunk("logRequest", {"request": "payment failures", "reasoning": "gap"}, call_id="r_req"),
                ],
                _search("service:payments"),
                [text_chunk("Done.")],
                [text_chunk("Draft: payment timeouts.")],
                [text_chunk("Accepted.")],
                [tool_chunk("logPostprocessing", {"facts": []})],
            ]
        )
        updates = []

        answer = await TriagePipeline(llm, platform, settings=test_settings).run(
            QUESTION, on_update=updates.append, now=INCIDENT_TIME
        )

        assert len(llm.calls) == 7
        assert answer.response == "Accepted."
        assert llm.calls[1]["tools"] == REQUEST_TOOLS
        dispatched = [u for u in updates if u.type == "logSearch-tools" and u.parent_id == "r_req"]
        assert len(dispatched) == 1
        assert "Query: service:payments" in llm.calls[4]["prompt"]
        assert answer.steps_of_type("reasoning")[-1].data == "Draft: payment timeouts."
        assert reduce_all(updates).steps == answer.steps

    @pytest.mark.asyncio
    async def test_reasoner_requests_are_bounded(self, platform, test_settings):
        settings = test_settings.model_copy(update={"max_reasoning_requests": 1})
        llm = ScriptedLLM(
            [
                [text_chunk("Nothing to search.")],
                [tool_chunk("logRequest", {"request": "more", "reasoning": "gap"}, call_id="r1")],
                [text_chunk("Done.")],
                [text_chunk("Draft.")],
                [text_chunk("Accepted.")],
            ]
        )

        answer = await TriagePipeline(llm, platform, settings=settings).run(QUESTION, now=INCIDENT_TIME)

        assert answer.response == "Accepted."
        assert len(llm.calls) == 5
        assert llm.calls[1]["tools"] == REQUEST_TOOLS
        assert llm.calls[3]["tools"] == {}

    @pytest.mark.asyncio
    async def test_fallback_search_uses_run_clock(self, platform, test_settings):
        llm = ScriptedLLM(
            [
                RuntimeError("model down"),
                [text_chunk("Done.")],
                [text_chunk("Draft.")],
                [text_chunk("Accepted.")],
                [tool_chunk("logPostprocessing", {"facts": []})],
            ]
        )

        answer = await TriagePipeline(llm, platform, settings=test_settings).run(QUESTION, now=INCIDENT_TIME)

        fallback = answer.steps_of_type("logSearch")[0].data[0]
        assert fallback.input.end == INCIDENT_TIME
        assert fallback.results.logs
        assert answer.response == "Accepted."
