"""Exception taxonomy for the triage agent.

Retrieval failures and model inference failures are recovered inside the
retrieval loop and never reach callers as exceptions. Contract violations
mean the model or the update protocol drifted from the expected schema; they
abort the current answer and propagate to the orchestrator.
"""

from __future__ import annotations


class TriageError(Exception):
    pass


class RetrievalError(TriageError):
    """Raised by a retrieval collaborator when a search cannot be executed."""


class GenerationCancelled(TriageError):
    """A stage was asked to start after the answer was cancelled."""


# ── Contract violations ──────────────────────────────────────────


class ContractViolation(TriageError):
    pass


class MultipleToolCallsError(ContractViolation):
    def __init__(self, tool_names: list[str]) -> None:
        self.tool_names = tool_names
        super().__init__(
            f"Expected at most one tool call, got {len(tool_names)}: {', '.join(tool_names)}"
        )


class UnknownToolError(ContractViolation):
    def __init__(self, tool_name: str, allowed: list[str]) -> None:
        self.tool_name = tool_name
        self.allowed = allowed
        super().__init__(
            f"Unrecognized tool '{tool_name}'. Allowed tools: {', '.join(allowed) or '(none)'}"
        )


class ToolArgumentsError(ContractViolation):
    def __init__(self, tool_name: str, detail: str) -> None:
        self.tool_name = tool_name
        super().__init__(f"Invalid arguments for tool '{tool_name}': {detail}")


class UnknownUpdateError(ContractViolation):
    def __init__(self, update_type: object) -> None:
        self.update_type = update_type
        super().__init__(f"Unknown stream update type: {update_type!r}")


class StepTypeMismatchError(ContractViolation):
    def __init__(self, step_id: str, existing: str, incoming: str) -> None:
        self.step_id = step_id
        super().__init__(
            f"Update '{incoming}' targets step {step_id} which is of type '{existing}'"
        )


class MissingToolCallError(ContractViolation):
    def __init__(self, tool_name: str) -> None:
        self.tool_name = tool_name
        super().__init__(f"Expected a '{tool_name}' tool call, got none")
