"""Postprocessing: extract cited facts that support the accepted answer.

Each postprocessor forces exactly one tool call whose arguments are the list of
facts, then emits the finished step as a single postprocessing update.
"""

from __future__ import annotations

from typing import Optional, Sequence

from triage.agents.formatting import format_facet_values, format_search_steps
from triage.core.cancellation import CancellationToken
from triage.core.errors import MissingToolCallError
from triage.core.logging import get_logger
from triage.core.models import CodePostprocessingStep, LogPostprocessingStep, Step, new_id
from triage.core.tools import (
    CODE_POSTPROCESSING_TOOL,
    LOG_POSTPROCESSING_TOOL,
    CodeFact,
    CodePostprocessing,
    LogFact,
    LogPostprocessing,
    ensure_single_tool_call,
)
from triage.core.updates import CodePostprocessingUpdate, LogPostprocessingUpdate, UpdateSink, emit
from triage.llm.client import ChatModelClient
from triage.retrieval.protocols import LabelMap

logger = get_logger("postprocessing")

SYSTEM_PROMPT = """\
You are an expert AI assistant that assists engineers debugging production
issues. You review answers to user queries and cite the evidence that supports them.
"""

LOG_PROMPT = """\
Given the user query, the final answer and the previously gathered log
context, cite the log queries inside <previous_log_context> that support the
answer. Each fact pairs a concise title and a one-sentence statement with the
query that shows it.

Selection criteria:
- Copy the query text exactly as it appears in <previous_log_context>; narrow
  the start/end times to the events that matter.
- Prefer queries that show the sequence of events around the issue, not a single line.
- Output at most 8 facts.

You must call `{tool_name}` exactly once.

<query>
{query}
</query>

<answer>
{answer}
</answer>

<log_labels>
{labels}
</log_labels>

<previous_log_context>
{context}
</previous_log_context>
"""

CODE_PROMPT = """\
Given the user query, the final answer and the previously gathered code
context, cite the code blocks inside <previous_code_context> that support the
answer. Each fact names the file and the exact line range.

- Only cite files that appear in <previous_code_context>.
- Output at most 8 facts.

You must call `{tool_name}` exactly once.

<query>
{query}
</query>

<answer>
{answer}
</answer>

<previous_code_context>
{context}
</previous_code_context>
"""


async def _forced_call(llm: ChatModelClient, tool_name: str, schema, prompt: str):
    response = await llm.generate(
        system=SYSTEM_PROMPT,
        prompt=prompt,
        tools={tool_name: schema},
        tool_choice=tool_name,
    )
    call = ensure_single_tool_call(response.tool_calls)
    if call is None:
        raise MissingToolCallError(tool_name)
    return call.args


class LogPostprocessor:
    def __init__(self, llm: ChatModelClient) -> None:
        self.llm = llm

    async def process(
        self,
        *,
        query: str,
        answer: str,
        steps: Sequence[Step],
        labels: Optional[LabelMap] = None,
        parent_id: Optional[str] = None,
        on_update: Optional[UpdateSink] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> LogPostprocessingStep:
        if cancel is not None:
            cancel.raise_if_cancelled()

        log_steps = [s for s in steps if s.type == "logSearch"]
        prompt = LOG_PROMPT.format(
            tool_name=LOG_POSTPROCESSING_TOOL,
            query=query,
            answer=answer,
            labels=format_facet_values(labels or {}),
            context=format_search_steps(log_steps),
        )
        args: LogPostprocessing = await _forced_call(
            self.llm, LOG_POSTPROCESSING_TOOL, LogPostprocessing, prompt
        )

        gathered = {call.input.query for step in log_steps for call in step.data}
        facts: list[LogFact] = []
        for fact in args.facts:
            if fact.query in gathered:
                facts.append(fact)
            else:
                logger.warning("log_fact_unmatched", query=fact.query, title=fact.title)

        step = LogPostprocessingStep(id=new_id(), data=tuple(facts))
        emit(on_update, LogPostprocessingUpdate(id=step.id, parent_id=parent_id, data=step.data))
        logger.info("log_postprocessing_complete", facts=len(facts), dropped=len(args.facts) - len(facts))
        return step


class CodePostprocessor:
    def __init__(self, llm: ChatModelClient) -> None:
        self.llm = llm

    async def process(
        self,
        *,
        query: str,
        answer: str,
        steps: Sequence[Step],
        parent_id: Optional[str] = None,
        on_update: Optional[UpdateSink] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> CodePostprocessingStep:
        if cancel is not None:
            cancel.raise_if_cancelled()

        prompt = CODE_PROMPT.format(
            tool_name=CODE_POSTPROCESSING_TOOL,
            query=query,
            answer=answer,
            context=format_search_steps(s for s in steps if s.type == "codeSearch"),
        )
        args: CodePostprocessing = await _forced_call(
            self.llm, CODE_POSTPROCESSING_TOOL, CodePostprocessing, prompt
        )

        facts: tuple[CodeFact, ...] = tuple(args.facts)
        step = CodePostprocessingStep(id=new_id(), data=facts)
        emit(on_update, CodePostprocessingUpdate(id=step.id, parent_id=parent_id, data=step.data))
        logger.info("code_postprocessing_complete", facts=len(facts))
        return step
