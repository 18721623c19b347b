"""Reviewer: critiques a draft root-cause analysis against the gathered evidence.

A single streamed model call. Text deltas are forwarded as ``review`` updates
while they arrive; once the stream ends the reviewer either accepts the draft
(no tool calls) or asks for more evidence through the request tools.
"""

from __future__ import annotations

from typing import Iterable, Optional, Sequence, Union

from triage.agents.formatting import format_chat_history, format_facet_values, format_search_steps
from triage.core.cancellation import CancellationToken
from triage.core.logging import get_logger
from triage.core.models import AssistantAnswer, ReviewStep, Step, UserMessage, new_id
from triage.core.tools import REQUEST_TOOLS, RequestToolCalls, request_tool_calls
from triage.core.updates import ReviewUpdate, UpdateSink, emit
from triage.llm.client import ChatModelClient
from triage.retrieval.protocols import LabelMap

logger = get_logger("reviewer")

ReviewerResponse = Union[ReviewStep, RequestToolCalls]

SYSTEM_PROMPT = """\
You are an expert AI assistant that reviews root cause analyses of production
issues for completeness and accuracy before they are shown to an engineer.
"""

PROMPT_TEMPLATE = """\
Given the user query about an issue/event and a draft root cause analysis,
review the analysis for:
1. Completeness: are there gaps in the explanation?
2. Accuracy: does the explanation agree with the gathered logs and code?
3. Actionability: is the proposed fix concrete and a true forward fix?

If more evidence is needed, call one or more of these tools:
- `logRequest`: a directive to search logs for specific events or services.
- `codeRequest`: a directive to search a specific area of the codebase.

If the analysis is correct and complete, do not call any tool and write the
final answer.

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

<root_cause_analysis>
{draft_answer}
</root_cause_analysis>
"""


class Reviewer:
    def __init__(self, llm: ChatModelClient) -> None:
        self.llm = llm

    async def review(
        self,
        *,
        query: str,
        chat_history: Iterable[Union[UserMessage, AssistantAnswer]] = (),
        steps: Sequence[Step] = (),
        draft_answer: str,
        labels: Optional[LabelMap] = None,
        parent_id: Optional[str] = None,
        on_update: Optional[UpdateSink] = None,
        system_overview: str = "",
        cancel: Optional[CancellationToken] = None,
    ) -> ReviewerResponse:
        if cancel is not None:
            cancel.raise_if_cancelled()

        prompt = PROMPT_TEMPLATE.format(
            query=query,
            chat_history=format_chat_history(chat_history),
            labels=format_facet_values(labels or {}),
            log_context=format_search_steps(s for s in steps if s.type == "logSearch"),
            code_context=format_search_steps(s for s in steps if s.type == "codeSearch"),
            system_overview=system_overview,
            draft_answer=draft_answer,
        )

        review_id = new_id()
        stream = await self.llm.stream(
            system=SYSTEM_PROMPT,
            prompt=prompt,
            tools=REQUEST_TOOLS,
            tool_choice="auto",
        )

        text = []
        async for delta in stream.text_deltas():
            text.append(delta)
            emit(on_update, ReviewUpdate(id=review_id, parent_id=parent_id, chunk=delta))
        tool_calls = await stream.tool_calls()

        if not tool_calls:
            content = "".join(text)
            if not content.strip():
                # Nothing worth keeping was streamed, so the draft stands as written
                emit(on_update, ReviewUpdate(id=review_id, parent_id=parent_id, chunk=draft_answer))
                content += draft_answer
            logger.info("review_completed", accepted=True, review_chars=len(content))
            return ReviewStep(id=review_id, content=content)

        requests = request_tool_calls(tool_calls)
        logger.info(
            "review_completed",
            accepted=False,
            requests=[request.type for request in requests.tool_calls],
        )
        return requests
