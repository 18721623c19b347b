"""Retrieval sub-agent engine.

A sub-agent runs a bounded loop against one retrieval collaborator. Each
iteration asks the model for the next query (or for nothing, which means the
evidence is sufficient), executes the query and records the outcome as a new
search step. The loop:

- stops early when the model emits no tool call,
- stops after ``max_iterations`` model calls (forced completion, logged),
- stops at an iteration boundary once the cancellation token is set,
- records retrieval failures as the step's result instead of raising,
- replaces a failed model call with a broad fallback query,
- propagates contract violations (more than one tool call, unknown tool,
  malformed arguments) to the caller.

Subclasses plug in the step kind, the query schema, the prompt, the executor
and the fallback query.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, ClassVar, Literal, Optional, Sequence

from pydantic import BaseModel

from triage.core.cancellation import CancellationToken, is_cancelled
from triage.core.config import Settings, get_settings
from triage.core.errors import ContractViolation
from triage.core.logging import get_logger
from triage.core.models import Step, new_id, utc_now
from triage.core.tools import TaskComplete, ensure_single_tool_call
from triage.core.updates import UpdateSink, emit
from triage.llm.client import ChatModelClient
from triage.retrieval.protocols import LabelMap

logger = get_logger("subagent")

FALLBACK_REASONING = (
    "Failed to generate query with LLM. Using fallback query to get a broad view of microservices."
)

StopReason = Literal["taskComplete", "maxIterations", "cancelled"]


@dataclass(frozen=True)
class PromptContext:
    """Everything a sub-agent prompt is built from for one iteration."""

    query: str
    request: str
    history: Sequence[Step]
    last_step: Optional[Step]
    labels: LabelMap
    iteration: int
    max_iterations: int
    system_overview: str
    current_time: datetime

    @property
    def remaining(self) -> int:
        return self.max_iterations - (self.iteration - 1)


@dataclass
class SubAgentResult:
    new_steps: list[Step] = field(default_factory=list)
    stop_reason: StopReason = "taskComplete"
    iterations: int = 0


@dataclass
class _Decision:
    action: BaseModel  # a retrieval query or TaskComplete
    reasoning: str


class RetrievalSubAgent(ABC):
    name: ClassVar[str]
    step_type: ClassVar[str]
    tool_name: ClassVar[str]
    input_schema: ClassVar[type[BaseModel]]
    step_cls: ClassVar[type[BaseModel]]
    tool_call_cls: ClassVar[type[BaseModel]]
    chunk_update_cls: ClassVar[type[BaseModel]]
    tools_update_cls: ClassVar[type[BaseModel]]
    system_prompt: ClassVar[str]

    def __init__(self, llm: ChatModelClient, settings: Optional[Settings] = None) -> None:
        self.llm = llm
        self.settings = settings or get_settings()

    # ── Hooks ───────────────────────────────────────────────────

    @property
    @abstractmethod
    def default_max_iterations(self) -> int: ...

    @abstractmethod
    def build_prompt(self, context: PromptContext) -> str: ...

    @abstractmethod
    async def execute(self, query: Any) -> Any:
        """Run ``query`` against the collaborator; any exception is recorded as the result."""

    @abstractmethod
    def fallback_query(self, context: PromptContext) -> BaseModel: ...

    def describe_query(self, query: Any) -> dict[str, Any]:
        return {"query": getattr(query, "query", None)}

    # ── Loop ────────────────────────────────────────────────────

    async def run(
        self,
        *,
        query: str,
        request: str,
        prior_history: Sequence[Step] = (),
        labels: Optional[LabelMap] = None,
        system_overview: str = "",
        max_iterations: Optional[int] = None,
        parent_id: Optional[str] = None,
        on_update: Optional[UpdateSink] = None,
        cancel: Optional[CancellationToken] = None,
        now: Optional[datetime] = None,
    ) -> SubAgentResult:
        """Run the loop for one request. ``now`` anchors prompt times and the fallback window."""
        if max_iterations is None:
            max_iterations = self.default_max_iterations
        if max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")

        previous: list[Step] = [step for step in prior_history if step.type == self.step_type]
        last_step: Optional[Step] = None
        result = SubAgentResult()

        logger.info("subagent_started", agent=self.name, request=request, max_iterations=max_iterations)

        for iteration in range(1, max_iterations + 1):
            if is_cancelled(cancel):
                result.stop_reason = "cancelled"
                logger.info("subagent_cancelled", agent=self.name, iterations=result.iterations)
                break

            context = PromptContext(
                query=query,
                request=request,
                history=tuple(previous),
                last_step=last_step,
                labels=labels or {},
                iteration=iteration,
                max_iterations=max_iterations,
                system_overview=system_overview,
                current_time=now or utc_now(),
            )
            step_id = new_id()
            decision = await self._decide(context, step_id, parent_id, on_update)
            result.iterations = iteration

            if isinstance(decision.action, TaskComplete):
                result.stop_reason = "taskComplete"
                logger.info("subagent_task_complete", agent=self.name, iterations=iteration)
                break

            tool_call = await self._execute(decision.action)
            step = self.step_cls(id=step_id, reasoning=decision.reasoning, data=(tool_call,))
            emit(
                on_update,
                self.tools_update_cls(id=step_id, parent_id=parent_id, tool_calls=step.data),
            )

            previous.append(step)
            result.new_steps.append(step)
            last_step = step
        else:
            result.stop_reason = "maxIterations"
            logger.info(
                "subagent_forced_completion",
                agent=self.name,
                reason="reached maximum iterations",
                max_iterations=max_iterations,
            )

        logger.info(
            "subagent_finished",
            agent=self.name,
            stop_reason=result.stop_reason,
            new_steps=len(result.new_steps),
        )
        return result

    async def _decide(
        self,
        context: PromptContext,
        step_id: str,
        parent_id: Optional[str],
        on_update: Optional[UpdateSink],
    ) -> _Decision:
        chunks: list[str] = []

        def say(text: str) -> None:
            chunks.append(text)
            emit(on_update, self.chunk_update_cls(id=step_id, parent_id=parent_id, chunk=text))

        prompt = self.build_prompt(context)
        try:
            stream = await self.llm.stream(
                system=self.system_prompt,
                prompt=prompt,
                tools={self.tool_name: self.input_schema},
                tool_choice="auto",
            )
            async for delta in stream.text_deltas():
                say(delta)
            tool_calls = await stream.tool_calls()
        except ContractViolation:
            raise
        except Exception as exc:
            fallback = self.fallback_query(context)
            logger.warning(
                "subagent_fallback_query",
                agent=self.name,
                error=str(exc),
                **self.describe_query(fallback),
            )
            say(FALLBACK_REASONING)
            return _Decision(action=fallback, reasoning="".join(chunks))

        call = ensure_single_tool_call(tool_calls)
        if call is None:
            text = "".join(chunks)
            return _Decision(action=TaskComplete(reasoning=text), reasoning=text)

        if not chunks and getattr(call.args, "reasoning", ""):
            say(call.args.reasoning)
        return _Decision(action=call.args, reasoning="".join(chunks))

    async def _execute(self, query: Any) -> BaseModel:
        logger.info("subagent_query", agent=self.name, **self.describe_query(query))
        try:
            results = await self.execute(query)
        except Exception as exc:
            message = str(exc) or type(exc).__name__
            logger.warning("subagent_retrieval_failed", agent=self.name, error=message)
            results = message
        return self.tool_call_cls(input=query, results=results)
