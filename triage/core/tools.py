"""Tool-call contract between the language model and the triage agent.

Each tool is a pydantic model; its JSON schema is what the model sees and its
validator is what the model's arguments are checked against. Anything the
model emits that does not fit these shapes is a ``ContractViolation``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Literal, Mapping, Optional, Sequence

from langchain_core.utils.function_calling import convert_to_openai_tool
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from triage.core.errors import MultipleToolCallsError, ToolArgumentsError, UnknownToolError

REASONING_DESCRIPTION = (
    "Intermediate reasoning where you can explain what you see from the given "
    "information and what information you need next (if any)."
)

LOG_SEARCH_TOOL = "logSearchInput"
CODE_SEARCH_TOOL = "codeSearchInput"
LOG_REQUEST_TOOL = "logRequest"
CODE_REQUEST_TOOL = "codeRequest"
LOG_POSTPROCESSING_TOOL = "logPostprocessing"
CODE_POSTPROCESSING_TOOL = "codePostprocessing"


class ToolArguments(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


# ── Retrieval queries ────────────────────────────────────────────


class LogSearchInput(ToolArguments):
    """Input parameters for searching logs."""

    query: str = Field(description="Log search query in the observability platform query language")
    start: datetime = Field(
        description=(
            "Start time in ISO 8601 format with timezone (e.g. '2025-03-19T04:10:00Z'). "
            "Be generous and give -15 minutes if the user provided an exact time."
        )
    )
    end: datetime = Field(
        description=(
            "End time in ISO 8601 format with timezone (e.g. '2025-03-19T04:40:00Z'). "
            "Be generous and give +15 minutes if the user provided an exact time."
        )
    )
    limit: int = Field(default=500, ge=1, description="Maximum number of logs to return, default to 500")
    page_cursor: Optional[str] = Field(
        default=None,
        description="Cursor for pagination. Always set to null when no cursor is needed.",
    )
    reasoning: str = Field(description=REASONING_DESCRIPTION)

    @field_validator("start", "end")
    @classmethod
    def assume_utc(cls, value: datetime) -> datetime:
        return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


class CodeSearchInput(ToolArguments):
    """Input parameters for searching the codebase with a regular expression."""

    query: str = Field(description="Regular expression to search for in tracked source files")
    path: Optional[str] = Field(
        default=None,
        description="Optional directory or glob (relative to the repository root) to restrict the search",
    )
    limit: int = Field(default=50, ge=1, description="Maximum number of matching lines to return")
    reasoning: str = Field(description=REASONING_DESCRIPTION)


class TaskComplete(BaseModel):
    """Signal from a retrieval sub-agent that it has gathered enough evidence."""

    model_config = ConfigDict(frozen=True)

    type: Literal["taskComplete"] = "taskComplete"
    reasoning: str = ""


# ── Reviewer requests ────────────────────────────────────────────


class LogRequest(ToolArguments):
    """A directive to search for/explore specific logs related to specific events, services, etc."""

    request: str = Field(
        description=(
            "A directive to search for/explore specific logs. This should be a specific "
            "request for logs related to specific events, services, etc."
        )
    )
    reasoning: str = Field(description=REASONING_DESCRIPTION)


class CodeRequest(ToolArguments):
    """A directive to search for/explore a specific area of code (service, module, package, etc.)."""

    request: str = Field(
        description=(
            "A directive to search for/explore a specific area of code. This should be a "
            "specific request for service, module, package, etc."
        )
    )
    reasoning: str = Field(description=REASONING_DESCRIPTION)


class SubAgentCall(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["logRequest", "codeRequest"]
    request: str
    reasoning: str = ""
    tool_call_id: Optional[str] = None


class RequestToolCalls(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["toolCalls"] = "toolCalls"
    tool_calls: tuple[SubAgentCall, ...]


REQUEST_TOOLS = {
    LOG_REQUEST_TOOL: LogRequest,
    CODE_REQUEST_TOOL: CodeRequest,
}


# ── Postprocessing facts ─────────────────────────────────────────


class LogFact(ToolArguments):
    title: str = Field(description="A concise title summarizing the fact")
    fact: str = Field(
        description=(
            "A fact derived from the log search result that supports the answer and "
            "some context on why it is relevant."
        )
    )
    query: str = Field(description="The original log search query from the previous log context")
    start: datetime = Field(description="The narrowed in start time in ISO 8601 format")
    end: datetime = Field(description="The narrowed in end time in ISO 8601 format")
    limit: int = Field(default=500, ge=1)
    page_cursor: Optional[str] = None
    highlight_keywords: list[str] = Field(
        default_factory=list,
        description="Keywords matching the content of the log lines that support the fact",
    )

    @field_validator("start", "end")
    @classmethod
    def assume_utc(cls, value: datetime) -> datetime:
        return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


class CodeFact(ToolArguments):
    title: str = Field(description="A concise title summarizing the fact")
    fact: str = Field(
        description=(
            "A fact derived from the code search result that supports the answer and "
            "some context on why it is relevant."
        )
    )
    filepath: str = Field(description="The relative file path of the code block that supports the fact")
    start_line: int = Field(ge=1, description="The start line of the code block that supports the fact")
    end_line: int = Field(ge=1, description="The end line of the code block that supports the fact")


class LogPostprocessing(ToolArguments):
    """Cite the log queries that support the answer."""

    facts: list[LogFact] = Field(
        description="One or more facts along with the log query for citation. At most 8 facts.",
        max_length=8,
    )


class CodePostprocessing(ToolArguments):
    """Cite the code blocks that support the answer."""

    facts: list[CodeFact] = Field(
        description="One or more facts along with the file path for citation. At most 8 facts.",
        max_length=8,
    )


# ── Invocation plumbing ──────────────────────────────────────────


@dataclass(frozen=True)
class ToolInvocation:
    """A validated tool call: the tool's name and its parsed arguments."""

    name: str
    args: BaseModel
    id: Optional[str] = None


ToolSet = Mapping[str, type[BaseModel]]


def tool_definition(name: str, schema: type[BaseModel]) -> dict[str, Any]:
    """OpenAI-format tool definition for ``schema`` exposed under ``name``."""
    definition = convert_to_openai_tool(schema)
    definition["function"]["name"] = name
    return definition


def validate_tool_call(
    name: str,
    raw_args: Mapping[str, Any] | None,
    tools: ToolSet,
    call_id: Optional[str] = None,
) -> ToolInvocation:
    schema = tools.get(name)
    if schema is None:
        raise UnknownToolError(name, sorted(tools))
    try:
        args = schema.model_validate(dict(raw_args or {}))
    except ValidationError as exc:
        raise ToolArgumentsError(name, str(exc)) from exc
    return ToolInvocation(name=name, args=args, id=call_id)


def ensure_single_tool_call(tool_calls: Sequence[ToolInvocation]) -> ToolInvocation | None:
    """Return the only tool call, ``None`` when there are none, fail on more."""
    if not tool_calls:
        return None
    if len(tool_calls) > 1:
        raise MultipleToolCallsError([call.name for call in tool_calls])
    return tool_calls[0]


def request_tool_calls(tool_calls: Sequence[ToolInvocation]) -> RequestToolCalls:
    """Wrap validated ``logRequest`` / ``codeRequest`` invocations for dispatch."""
    return RequestToolCalls(
        tool_calls=tuple(
            SubAgentCall(
                type=call.name,
                request=call.args.request,
                reasoning=call.args.reasoning,
                tool_call_id=call.id,
            )
            for call in tool_calls
        )
    )
