"""Plain-text renderings of evidence for prompts and terminal output."""

from __future__ import annotations

import json
from typing import Iterable, Mapping, Sequence

from triage.core.models import (
    AssistantAnswer,
    CodeSearchToolCall,
    Log,
    LogSearchToolCall,
    Step,
    UserMessage,
)
from triage.core.tools import CodeSearchInput, LogSearchInput


def format_facet_values(facets: Mapping[str, Sequence[str]]) -> str:
    return "\n".join(f"{facet}: {', '.join(values)}" for facet, values in facets.items())


def format_single_log(log: Log) -> str:
    attributes = ", ".join(f"{key}={json.dumps(value, default=str)}" for key, value in log.attributes.items())
    line = f"[{log.timestamp.isoformat()}] {log.level.upper()} [{log.service}] {log.message}"
    if attributes:
        line += f" [attributes: {attributes}]"
    return line


def format_log_query(query: LogSearchInput) -> str:
    text = (
        f"Query: {query.query}\n"
        f"Start: {query.start.isoformat()}\n"
        f"End: {query.end.isoformat()}\n"
        f"Limit: {query.limit}"
    )
    if query.page_cursor:
        text += f"\nPage Cursor: {query.page_cursor}"
    return text


def format_code_query(query: CodeSearchInput) -> str:
    text = f"Pattern: {query.query}\nLimit: {query.limit}"
    if query.path:
        text += f"\nPath: {query.path}"
    return text


def format_log_search_call(call: LogSearchToolCall) -> str:
    if isinstance(call.results, str):
        return f"{format_log_query(call.input)}\nPage Cursor Or Indicator: None\nResults:\nError: {call.results}"

    content = "\n".join(format_single_log(log) for log in call.results.logs) or "No logs found"
    return (
        f"{format_log_query(call.input)}\n"
        f"Page Cursor Or Indicator: {call.results.page_cursor_or_indicator}\n"
        f"Results:\n{content}"
    )


def format_code_search_call(call: CodeSearchToolCall) -> str:
    if isinstance(call.results, str):
        return f"{format_code_query(call.input)}\nResults:\nError: {call.results}"

    content = "\n".join(
        f"{match.filepath}:{match.line_number}: {match.line}" for match in call.results.matches
    ) or "No matches found"
    if call.results.truncated:
        content += "\n(results truncated, narrow the pattern or path)"
    return f"{format_code_query(call.input)}\nResults:\n{content}"


def format_tool_call(call: LogSearchToolCall | CodeSearchToolCall) -> str:
    if isinstance(call, LogSearchToolCall):
        return format_log_search_call(call)
    return format_code_search_call(call)


def format_search_steps(steps: Iterable[Step]) -> str:
    """Every retrieval tool call in ``steps``, oldest first."""
    blocks = [
        format_tool_call(call)
        for step in steps
        if step.type in ("logSearch", "codeSearch")
        for call in step.data
    ]
    return "\n\n".join(blocks)


def format_chat_history(messages: Iterable[UserMessage | AssistantAnswer]) -> str:
    lines = []
    for message in messages:
        if isinstance(message, UserMessage):
            lines.append(f"User: {message.content}")
        elif message.response:
            lines.append(f"Assistant: {message.response}")
        elif message.error:
            lines.append(f"Assistant (failed): {message.error}")
    return "\n\n".join(lines)


def format_step(step: Step) -> str:
    if step.type == "reasoning":
        return f"## Reasoning\n{step.data}"
    if step.type in ("logSearch", "codeSearch"):
        title = "Log search" if step.type == "logSearch" else "Code search"
        body = "\n\n".join(format_tool_call(call) for call in step.data)
        return f"## {title}\n{step.reasoning.strip()}\n\n{body}".rstrip()
    if step.type == "logPostprocessing":
        facts = "\n".join(
            f"- {fact.title}: {fact.fact} (query: {fact.query}, {fact.start.isoformat()} to {fact.end.isoformat()})"
            for fact in step.data
        )
        return f"## Log facts\n{facts}"
    if step.type == "codePostprocessing":
        facts = "\n".join(
            f"- {fact.title}: {fact.fact} ({fact.filepath}:{fact.start_line}-{fact.end_line})"
            for fact in step.data
        )
        return f"## Code facts\n{facts}"
    return f"## Review\n{step.content}"


def format_answer(answer: AssistantAnswer) -> str:
    return "\n\n".join(format_step(step) for step in answer.steps)
