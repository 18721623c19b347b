"""Reasoner: drafts the root-cause analysis from the evidence gathered so far.

While it still has request budget the reasoner may instead ask for more
evidence with `logRequest` / `codeRequest`; the pipeline dispatches those to
the retrieval sub-agents and calls the reasoner again.
"""

from __future__ import annotations

from typing import Iterable, Optional, Sequence, Union

from triage.agents.formatting import format_chat_history, format_facet_values, format_search_steps
from triage.core.cancellation import CancellationToken
from triage.core.logging import get_logger
from triage.core.models import AssistantAnswer, ReasoningStep, Step, UserMessage, new_id
from triage.core.tools import REQUEST_TOOLS, RequestToolCalls, request_tool_calls
from triage.core.updates import ReasoningChunkUpdate, UpdateSink, emit
from triage.llm.client import ChatModelClient
from triage.retrieval.protocols import LabelMap

logger = get_logger("reasoner")

ReasonerResponse = Union[ReasoningStep, RequestToolCalls]

REQUEST_INSTRUCTIONS = """\
- If the context is not enough to name a root cause, do not guess. Call
  `logRequest` or `codeRequest` with a specific directive instead of writing
  the analysis. Otherwise write the analysis and call no tool.
"""

SYSTEM_PROMPT = """\
You are an expert AI assistant that helps engineers debug production issues.
You cannot change the system; you reason about it by walking through the
sequence of events shown in the gathered logs and code.
"""

PROMPT_TEMPLATE = """\
Given the user query about an issue/event and the context gathered from logs
and code, write a root cause analysis.

Guidelines:
- In microservices the root cause is often not in the service that fails but
  in one that interacts with it. Consider each involved service.
- Weigh several candidate causes before settling on one.
- Be concrete: name the service, the event sequence and the exact change that
  would fix it. Vague causes such as "performance issues" are not acceptable.
- Cite log lines (with timestamps) and code locations as evidence.
- If a reviewer left feedback, address it.
{request_instructions}
<query>
{query}
</query>

<chat_history>
{chat_history}
</chat_history>

<log_labels>
{labels}
</log_labels>

<log_context>
{log_context}
</log_context>

<code_context>
{code_context}
</code_context>

<system_overview>
{system_overview}
</system_overview>

<reviewer_feedback>
{feedback}
</reviewer_feedback>
"""


class Reasoner:
    def __init__(self, llm: ChatModelClient) -> None:
        self.llm = llm

    async def reason(
        self,
        *,
        query: str,
        chat_history: Iterable[Union[UserMessage, AssistantAnswer]] = (),
        steps: Sequence[Step] = (),
        labels: Optional[LabelMap] = None,
        system_overview: str = "",
        feedback: str = "",
        parent_id: Optional[str] = None,
        on_update: Optional[UpdateSink] = None,
        cancel: Optional[CancellationToken] = None,
        allow_requests: bool = True,
    ) -> ReasonerResponse:
        if cancel is not None:
            cancel.raise_if_cancelled()

        prompt = PROMPT_TEMPLATE.format(
            query=query,
            chat_history=format_chat_history(chat_history),
            labels=format_facet_values(labels or {}),
            log_context=format_search_steps(s for s in steps if s.type == "logSearch"),
            code_context=format_search_steps(s for s in steps if s.type == "codeSearch"),
            system_overview=system_overview,
            feedback=feedback,
            request_instructions=REQUEST_INSTRUCTIONS if allow_requests else "",
        )

        step_id = new_id()
        stream = await self.llm.stream(
            system=SYSTEM_PROMPT,
            prompt=prompt,
            tools=REQUEST_TOOLS if allow_requests else None,
        )
        async for delta in stream.text_deltas():
            emit(on_update, ReasoningChunkUpdate(id=step_id, parent_id=parent_id, chunk=delta))
        tool_calls = await stream.tool_calls()

        if tool_calls:
            requests = request_tool_calls(tool_calls)
            logger.info("evidence_requested", requests=[call.type for call in requests.tool_calls])
            return requests

        logger.info("draft_answer_generated", chars=len(stream.text))
        return ReasoningStep(id=step_id, data=stream.text)
