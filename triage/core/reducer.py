"""Update reducer: folds stream updates into a materialized answer.

``reduce`` is pure. It never mutates the answer it is given and returns a new
value for every update, so a reader holding an older answer never observes a
half-applied change. Steps keep the position at which they first appeared.
"""

from __future__ import annotations

from typing import Any, Callable, Iterable, Mapping, TypeVar, Union

from triage.core.errors import StepTypeMismatchError, UnknownUpdateError
from triage.core.logging import get_logger
from triage.core.models import (
    AssistantAnswer,
    CodePostprocessingStep,
    CodeSearchStep,
    LogPostprocessingStep,
    LogSearchStep,
    ReasoningStep,
    ReviewStep,
    Step,
)
from triage.core.updates import (
    CodePostprocessingUpdate,
    CodeSearchChunkUpdate,
    CodeSearchToolsUpdate,
    LogPostprocessingUpdate,
    LogSearchChunkUpdate,
    LogSearchToolsUpdate,
    ReasoningChunkUpdate,
    ReviewUpdate,
    StreamUpdate,
    parse_update,
)

logger = get_logger("reducer")

S = TypeVar("S", bound=Step)


def _find_and_update(
    answer: AssistantAnswer,
    step_id: str,
    step_type: str,
    create: Callable[[], S],
    update_existing: Callable[[S], S],
) -> AssistantAnswer:
    for index, step in enumerate(answer.steps):
        if step.id != step_id:
            continue
        if step.type != step_type:
            raise StepTypeMismatchError(step_id, step.type, step_type)
        steps = answer.steps[:index] + (update_existing(step),) + answer.steps[index + 1 :]
        return answer.model_copy(update={"steps": steps})

    return answer.model_copy(update={"steps": answer.steps + (create(),)})


# ── Per-kind merge rules ─────────────────────────────────────────


def _reasoning_chunk(answer: AssistantAnswer, update: ReasoningChunkUpdate) -> AssistantAnswer:
    return _find_and_update(
        answer,
        update.id,
        "reasoning",
        create=lambda: ReasoningStep(id=update.id, timestamp=update.timestamp, data=update.chunk),
        update_existing=lambda step: step.model_copy(update={"data": step.data + update.chunk}),
    )


def _search_chunk(
    answer: AssistantAnswer,
    update: Union[LogSearchChunkUpdate, CodeSearchChunkUpdate],
) -> AssistantAnswer:
    step_cls = LogSearchStep if isinstance(update, LogSearchChunkUpdate) else CodeSearchStep
    return _find_and_update(
        answer,
        update.id,
        step_cls.model_fields["type"].default,
        create=lambda: step_cls(id=update.id, timestamp=update.timestamp, reasoning=update.chunk),
        update_existing=lambda step: step.model_copy(
            update={"reasoning": step.reasoning + update.chunk}
        ),
    )


def _search_tools(
    answer: AssistantAnswer,
    update: Union[LogSearchToolsUpdate, CodeSearchToolsUpdate],
) -> AssistantAnswer:
    step_cls = LogSearchStep if isinstance(update, LogSearchToolsUpdate) else CodeSearchStep
    return _find_and_update(
        answer,
        update.id,
        step_cls.model_fields["type"].default,
        create=lambda: step_cls(
            id=update.id, timestamp=update.timestamp, reasoning="", data=update.tool_calls
        ),
        # Each tools update is a full snapshot, never a delta
        update_existing=lambda step: step.model_copy(update={"data": update.tool_calls}),
    )


def _postprocessing(
    answer: AssistantAnswer,
    update: Union[LogPostprocessingUpdate, CodePostprocessingUpdate],
) -> AssistantAnswer:
    step_cls = (
        LogPostprocessingStep
        if isinstance(update, LogPostprocessingUpdate)
        else CodePostprocessingStep
    )
    return _find_and_update(
        answer,
        update.id,
        step_cls.model_fields["type"].default,
        create=lambda: step_cls(id=update.id, timestamp=update.timestamp, data=update.data),
        update_existing=lambda step: step.model_copy(update={"data": update.data}),
    )


def _review(answer: AssistantAnswer, update: ReviewUpdate) -> AssistantAnswer:
    return _find_and_update(
        answer,
        update.id,
        "review",
        create=lambda: ReviewStep(id=update.id, timestamp=update.timestamp, content=update.chunk),
        update_existing=lambda step: step.model_copy(
            update={"content": step.content + update.chunk}
        ),
    )


def reduce(
    answer: AssistantAnswer,
    update: Union[StreamUpdate, Mapping[str, Any]],
) -> AssistantAnswer:
    """Apply one stream update to ``answer`` and return the new answer."""
    if isinstance(update, Mapping):
        update = parse_update(update)

    update_type = getattr(update, "type", None)

    if update_type == "reasoning-chunk":
        return _reasoning_chunk(answer, update)
    if update_type in ("logSearch-chunk", "codeSearch-chunk"):
        return _search_chunk(answer, update)
    if update_type in ("logSearch-tools", "codeSearch-tools"):
        return _search_tools(answer, update)
    if update_type in ("logPostprocessing", "codePostprocessing"):
        return _postprocessing(answer, update)
    if update_type == "review":
        return _review(answer, update)

    raise UnknownUpdateError(update_type)


def reduce_all(
    updates: Iterable[Union[StreamUpdate, Mapping[str, Any]]],
    answer: AssistantAnswer | None = None,
) -> AssistantAnswer:
    answer = answer if answer is not None else AssistantAnswer()
    for update in updates:
        answer = reduce(answer, update)
    return answer


AnswerListener = Callable[[AssistantAnswer], None]


class AnswerUpdater:
    """Holds the latest materialized answer and notifies listeners on change.

    Instances are callable, so one can be passed directly as an ``on_update``
    sink to the agents.
    """

    def __init__(
        self,
        answer: AssistantAnswer | None = None,
        listeners: Iterable[AnswerListener] = (),
    ) -> None:
        self._answer = answer if answer is not None else AssistantAnswer()
        self._listeners: list[AnswerListener] = list(listeners)
        self.applied = 0

    @property
    def answer(self) -> AssistantAnswer:
        return self._answer

    def apply(self, update: Union[StreamUpdate, Mapping[str, Any]]) -> AssistantAnswer:
        self._answer = reduce(self._answer, update)
        self.applied += 1
        for listener in self._listeners:
            listener(self._answer)
        return self._answer

    __call__ = apply

    def finalize(self, *, response: str | None = None, error: str | None = None) -> AssistantAnswer:
        self._answer = self._answer.model_copy(update={"response": response, "error": error})
        logger.info(
            "answer_finalized",
            answer_id=self._answer.id,
            steps=len(self._answer.steps),
            updates_applied=self.applied,
            failed=error is not None,
        )
        for listener in self._listeners:
            listener(self._answer)
        return self._answer
