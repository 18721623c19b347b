"""Step model: the audit trail of evidence and reasoning behind an answer.

Every step kind is a frozen pydantic model discriminated on ``type``. Steps are
never mutated; the reducer replaces them with updated copies.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from triage.core.tools import CodeFact, CodeSearchInput, LogFact, LogSearchInput


def new_id() -> str:
    return uuid4().hex


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True)


# ── Retrieval results ────────────────────────────────────────────


class Log(FrozenModel):
    timestamp: datetime
    message: str
    service: str
    level: str = "info"
    attributes: dict[str, Any] = Field(default_factory=dict)


class LogsWithPagination(FrozenModel):
    logs: tuple[Log, ...] = ()
    # Platforms without real cursors use this to say whether more results exist
    page_cursor_or_indicator: Optional[str] = None


class CodeMatch(FrozenModel):
    filepath: str
    line_number: int
    line: str


class CodeSearchResults(FrozenModel):
    matches: tuple[CodeMatch, ...] = ()
    truncated: bool = False


# ── Tool calls with results ──────────────────────────────────────


class LogSearchToolCall(FrozenModel):
    type: Literal["logSearch"] = "logSearch"
    timestamp: datetime = Field(default_factory=utc_now)
    input: LogSearchInput
    results: Union[LogsWithPagination, str]

    @property
    def failed(self) -> bool:
        return isinstance(self.results, str)


class CodeSearchToolCall(FrozenModel):
    type: Literal["codeSearch"] = "codeSearch"
    timestamp: datetime = Field(default_factory=utc_now)
    input: CodeSearchInput
    results: Union[CodeSearchResults, str]

    @property
    def failed(self) -> bool:
        return isinstance(self.results, str)


# ── Steps ────────────────────────────────────────────────────────


class BaseStep(FrozenModel):
    id: str = Field(default_factory=new_id)
    timestamp: datetime = Field(default_factory=utc_now)


class ReasoningStep(BaseStep):
    type: Literal["reasoning"] = "reasoning"
    data: str = ""


class LogSearchStep(BaseStep):
    type: Literal["logSearch"] = "logSearch"
    reasoning: str = ""
    data: tuple[LogSearchToolCall, ...] = ()


class CodeSearchStep(BaseStep):
    type: Literal["codeSearch"] = "codeSearch"
    reasoning: str = ""
    data: tuple[CodeSearchToolCall, ...] = ()


class LogPostprocessingStep(BaseStep):
    type: Literal["logPostprocessing"] = "logPostprocessing"
    data: tuple[LogFact, ...] = ()


class CodePostprocessingStep(BaseStep):
    type: Literal["codePostprocessing"] = "codePostprocessing"
    data: tuple[CodeFact, ...] = ()


class ReviewStep(BaseStep):
    type: Literal["review"] = "review"
    content: str = ""


Step = Annotated[
    Union[
        ReasoningStep,
        LogSearchStep,
        CodeSearchStep,
        LogPostprocessingStep,
        CodePostprocessingStep,
        ReviewStep,
    ],
    Field(discriminator="type"),
]

STEP_TYPES = (
    "reasoning",
    "logSearch",
    "codeSearch",
    "logPostprocessing",
    "codePostprocessing",
    "review",
)


# ── Chat messages / answers ──────────────────────────────────────


class UserMessage(FrozenModel):
    role: Literal["user"] = "user"
    content: str


class AssistantAnswer(FrozenModel):
    """The materialized answer: an ordered step list plus the final response."""

    role: Literal["assistant"] = "assistant"
    id: str = Field(default_factory=new_id)
    steps: tuple[Step, ...] = ()
    response: Optional[str] = None
    error: Optional[str] = None

    def find_step(self, step_id: str) -> Optional[Step]:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def steps_of_type(self, step_type: str) -> list[Step]:
        return [s for s in self.steps if s.type == step_type]

step_adapter: TypeAdapter[Step] = TypeAdapter(Step)
