"""Stream update protocol.

Updates are transient envelopes pushed from the agents to any listener while
the model is still generating. ``id`` names the step being created or
updated; ``parent_id`` names the stage that spawned it.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Callable, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from triage.core.errors import UnknownUpdateError
from triage.core.models import CodeSearchToolCall, LogSearchToolCall, utc_now
from triage.core.tools import CodeFact, LogFact


class BaseUpdate(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    parent_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=utc_now)


# ── Incremental text chunks ──────────────────────────────────────


class ReasoningChunkUpdate(BaseUpdate):
    type: Literal["reasoning-chunk"] = "reasoning-chunk"
    chunk: str


class LogSearchChunkUpdate(BaseUpdate):
    type: Literal["logSearch-chunk"] = "logSearch-chunk"
    chunk: str


class CodeSearchChunkUpdate(BaseUpdate):
    type: Literal["codeSearch-chunk"] = "codeSearch-chunk"
    chunk: str


class ReviewUpdate(BaseUpdate):
    type: Literal["review"] = "review"
    chunk: str


# ── Complete snapshots ───────────────────────────────────────────


class LogSearchToolsUpdate(BaseUpdate):
    type: Literal["logSearch-tools"] = "logSearch-tools"
    tool_calls: tuple[LogSearchToolCall, ...]


class CodeSearchToolsUpdate(BaseUpdate):
    type: Literal["codeSearch-tools"] = "codeSearch-tools"
    tool_calls: tuple[CodeSearchToolCall, ...]


class LogPostprocessingUpdate(BaseUpdate):
    type: Literal["logPostprocessing"] = "logPostprocessing"
    data: tuple[LogFact, ...]


class CodePostprocessingUpdate(BaseUpdate):
    type: Literal["codePostprocessing"] = "codePostprocessing"
    data: tuple[CodeFact, ...]


StreamUpdate = Annotated[
    Union[
        ReasoningChunkUpdate,
        LogSearchChunkUpdate,
        CodeSearchChunkUpdate,
        LogSearchToolsUpdate,
        CodeSearchToolsUpdate,
        LogPostprocessingUpdate,
        CodePostprocessingUpdate,
        ReviewUpdate,
    ],
    Field(discriminator="type"),
]

UPDATE_TYPES = frozenset(
    {
        "reasoning-chunk",
        "logSearch-chunk",
        "codeSearch-chunk",
        "logSearch-tools",
        "codeSearch-tools",
        "logPostprocessing",
        "codePostprocessing",
        "review",
    }
)

UpdateSink = Callable[[StreamUpdate], None]

_update_adapter: TypeAdapter[StreamUpdate] = TypeAdapter(StreamUpdate)


def parse_update(payload: Mapping[str, Any]) -> StreamUpdate:
    """Validate a raw update (e.g. replayed from a log) into a typed update."""
    update_type = payload.get("type")
    if update_type not in UPDATE_TYPES:
        raise UnknownUpdateError(update_type)
    return _update_adapter.validate_python(dict(payload))


def emit(sink: UpdateSink | None, update: StreamUpdate) -> None:
    if sink is not None:
        sink(update)
