"""LangGraph triage pipeline.

Graph structure:
    START → labels → log_search → reason
    reason → (conditional) dispatch → reason          (reasoner asked for evidence)
           → (conditional) review
    review → (conditional) dispatch → reason          (reviewer asked for evidence)
           → (conditional) postprocess → END          (accepted or out of rounds)

``dispatch`` routes each request from the reasoner or the reviewer to the
sub-agent registered for its tool name. The reasoner may request evidence at
most ``max_reasoning_requests`` times per run; after that it must draft.
Every stage pushes its stream updates into one ``AnswerUpdater``, whose
answer is returned at the end.
"""

from __future__ import annotations

import operator
from datetime import datetime, timedelta
from typing import Annotated, Any, Iterable, Optional, Union

from langchain_core.runnables import RunnableConfig
from langgraph.graph import END, START, StateGraph
from typing_extensions import TypedDict

from triage.agents.code_search import CodeSearchAgent
from triage.agents.log_search import LogSearchAgent
from triage.agents.postprocessing import CodePostprocessor, LogPostprocessor
from triage.agents.reasoner import Reasoner
from triage.agents.reviewer import Reviewer
from triage.agents.subagent import RetrievalSubAgent
from triage.core.cancellation import CancellationToken
from triage.core.config import Settings, get_settings
from triage.core.errors import ContractViolation, GenerationCancelled
from triage.core.logging import bind_answer_context, clear_answer_context, get_logger
from triage.core.models import AssistantAnswer, Step, UserMessage, utc_now
from triage.core.reducer import AnswerUpdater
from triage.core.tools import CODE_REQUEST_TOOL, LOG_REQUEST_TOOL, SubAgentCall
from triage.core.updates import StreamUpdate, UpdateSink
from triage.llm.client import ChatModelClient
from triage.retrieval.protocols import CodeSearcher, LabelMap, ObservabilityPlatform

logger = get_logger("pipeline")


class TriageState(TypedDict):
    # ── Input ───────────────────────────────────────────────────
    query: str
    chat_history: list[Union[UserMessage, AssistantAnswer]]

    # ── Pre-processing ──────────────────────────────────────────
    labels: LabelMap

    # ── Evidence and drafts (append-only via reducer) ───────────
    steps: Annotated[list[Step], operator.add]
    draft_answer: str

    # ── Review cycle ────────────────────────────────────────────
    pending_requests: list[SubAgentCall]
    feedback: str
    reasoning_requests: int
    review_rounds: int
    accepted: bool

    # ── Output ──────────────────────────────────────────────────
    response: Optional[str]


def _runtime(config: RunnableConfig) -> dict[str, Any]:
    return config.get("configurable", {})


class TriagePipeline:
    """Runs one question through search, reasoning, review and postprocessing."""

    def __init__(
        self,
        llm: ChatModelClient,
        platform: ObservabilityPlatform,
        code_searcher: Optional[CodeSearcher] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.platform = platform
        self.log_agent = LogSearchAgent(llm, platform, self.settings)
        self.code_agent = CodeSearchAgent(llm, code_searcher, self.settings) if code_searcher else None
        self.reasoner = Reasoner(llm)
        self.reviewer = Reviewer(llm)
        self.log_postprocessor = LogPostprocessor(llm)
        self.code_postprocessor = CodePostprocessor(llm)

        self.dispatch_table: dict[str, RetrievalSubAgent] = {LOG_REQUEST_TOOL: self.log_agent}
        if self.code_agent is not None:
            self.dispatch_table[CODE_REQUEST_TOOL] = self.code_agent

        self._graph = self._build_graph()

    # ── Graph ───────────────────────────────────────────────────

    def _build_graph(self):
        graph = StateGraph(TriageState)

        graph.add_node("labels", self._labels_node)
        graph.add_node("log_search", self._log_search_node)
        graph.add_node("reason", self._reason_node)
        graph.add_node("review", self._review_node)
        graph.add_node("dispatch", self._dispatch_node)
        graph.add_node("postprocess", self._postprocess_node)

        graph.add_edge(START, "labels")
        graph.add_edge("labels", "log_search")
        graph.add_edge("log_search", "reason")
        graph.add_conditional_edges(
            "reason",
            self._after_reason,
            {"dispatch": "dispatch", "review": "review"},
        )
        graph.add_conditional_edges(
            "review",
            self._after_review,
            {"dispatch": "dispatch", "postprocess": "postprocess"},
        )
        graph.add_edge("dispatch", "reason")
        graph.add_edge("postprocess", END)

        return graph.compile()

    def _after_reason(self, state: TriageState) -> str:
        return "dispatch" if state["pending_requests"] else "review"

    def _after_review(self, state: TriageState) -> str:
        if state["accepted"]:
            return "postprocess"
        if state["review_rounds"] >= self.settings.max_review_rounds:
            logger.warning("review_rounds_exhausted", rounds=state["review_rounds"])
            return "postprocess"
        return "dispatch"

    # ── Nodes ───────────────────────────────────────────────────

    async def _labels_node(self, state: TriageState, config: RunnableConfig) -> dict:
        now: datetime = _runtime(config)["now"]
        start = now - timedelta(minutes=self.settings.label_lookback_minutes)
        labels = await self.platform.get_log_labels(start, now)
        logger.info("log_labels_fetched", facets=len(labels))
        return {"labels": labels}

    async def _log_search_node(self, state: TriageState, config: RunnableConfig) -> dict:
        runtime = _runtime(config)
        result = await self.log_agent.run(
            query=state["query"],
            request=state["query"],
            prior_history=state["steps"],
            labels=state["labels"],
            system_overview=self.settings.system_overview,
            on_update=runtime["on_update"],
            cancel=runtime["cancel"],
            now=runtime["now"],
        )
        return {"steps": result.new_steps}

    async def _reason_node(self, state: TriageState, config: RunnableConfig) -> dict:
        runtime = _runtime(config)
        response = await self.reasoner.reason(
            query=state["query"],
            chat_history=state["chat_history"],
            steps=state["steps"],
            labels=state["labels"],
            system_overview=self.settings.system_overview,
            feedback=state["feedback"],
            on_update=runtime["on_update"],
            cancel=runtime["cancel"],
            allow_requests=state["reasoning_requests"] < self.settings.max_reasoning_requests,
        )

        if response.type == "toolCalls":
            return {
                "pending_requests": list(response.tool_calls),
                "reasoning_requests": state["reasoning_requests"] + 1,
            }
        return {"steps": [response], "draft_answer": response.data}

    async def _review_node(self, state: TriageState, config: RunnableConfig) -> dict:
        runtime = _runtime(config)
        rounds = state["review_rounds"] + 1
        response = await self.reviewer.review(
            query=state["query"],
            chat_history=state["chat_history"],
            steps=state["steps"],
            draft_answer=state["draft_answer"],
            labels=state["labels"],
            parent_id=state["steps"][-1].id if state["steps"] else None,
            on_update=runtime["on_update"],
            system_overview=self.settings.system_overview,
            cancel=runtime["cancel"],
        )

        if response.type == "review":
            return {
                "steps": [response],
                "accepted": True,
                "response": response.content,
                "review_rounds": rounds,
            }

        feedback = "\n".join(f"- {call.type}: {call.request} ({call.reasoning})" for call in response.tool_calls)
        return {
            "accepted": False,
            "pending_requests": list(response.tool_calls),
            "feedback": feedback,
            "review_rounds": rounds,
        }

    async def _dispatch_node(self, state: TriageState, config: RunnableConfig) -> dict:
        runtime = _runtime(config)
        history = list(state["steps"])
        new_steps: list[Step] = []

        for call in state["pending_requests"]:
            agent = self.dispatch_table.get(call.type)
            if agent is None:
                logger.warning("request_without_handler", request_type=call.type, request=call.request)
                continue

            result = await agent.run(
                query=state["query"],
                request=call.request,
                prior_history=history,
                labels=state["labels"],
                system_overview=self.settings.system_overview,
                parent_id=call.tool_call_id,
                on_update=runtime["on_update"],
                cancel=runtime["cancel"],
                now=runtime["now"],
            )
            history.extend(result.new_steps)
            new_steps.extend(result.new_steps)

        return {"steps": new_steps, "pending_requests": []}

    async def _postprocess_node(self, state: TriageState, config: RunnableConfig) -> dict:
        runtime = _runtime(config)
        answer = state["response"] or state["draft_answer"]
        steps = state["steps"]
        new_steps: list[Step] = []

        if any(s.type == "logSearch" and s.data for s in steps):
            new_steps.append(
                await self.log_postprocessor.process(
                    query=state["query"],
                    answer=answer,
                    steps=steps,
                    labels=state["labels"],
                    on_update=runtime["on_update"],
                    cancel=runtime["cancel"],
                )
            )
        if any(s.type == "codeSearch" and s.data for s in steps):
            new_steps.append(
                await self.code_postprocessor.process(
                    query=state["query"],
                    answer=answer,
                    steps=steps,
                    on_update=runtime["on_update"],
                    cancel=runtime["cancel"],
                )
            )

        return {"steps": new_steps, "response": answer}

    # ── Entry point ─────────────────────────────────────────────

    async def run(
        self,
        query: str,
        *,
        chat_history: Iterable[Union[UserMessage, AssistantAnswer]] = (),
        on_update: Optional[UpdateSink] = None,
        cancel: Optional[CancellationToken] = None,
        now: Optional[datetime] = None,
    ) -> AssistantAnswer:
        """Answer ``query`` and return the materialized answer.

        Contract violations finalize the answer with an error and are re-raised.
        Cancellation finalizes the answer with the cancellation reason.
        """
        updater = AnswerUpdater()

        def sink(update: StreamUpdate) -> None:
            updater.apply(update)
            if on_update is not None:
                on_update(update)

        initial_state: TriageState = {
            "query": query,
            "chat_history": list(chat_history),
            "labels": {},
            "steps": [],
            "draft_answer": "",
            "pending_requests": [],
            "feedback": "",
            "reasoning_requests": 0,
            "review_rounds": 0,
            "accepted": False,
            "response": None,
        }
        config: RunnableConfig = {
            "configurable": {
                "on_update": sink,
                "cancel": cancel,
                "now": now or utc_now(),
            }
        }

        bind_answer_context(updater.answer.id, query)
        logger.info("answer_started")
        try:
            result = await self._graph.ainvoke(initial_state, config=config)
            return updater.finalize(response=result["response"])
        except GenerationCancelled as exc:
            logger.info("answer_cancelled", reason=str(exc))
            return updater.finalize(error=f"Cancelled: {exc}")
        except ContractViolation as exc:
            logger.error("answer_failed", error=str(exc), error_type=type(exc).__name__)
            updater.finalize(error=str(exc))
            raise
        finally:
            clear_answer_context()
