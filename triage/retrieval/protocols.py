"""Interfaces of the retrieval collaborators consumed by the sub-agents."""

from __future__ import annotations

from datetime import datetime
from typing import Protocol, runtime_checkable

from triage.core.models import CodeSearchResults, LogsWithPagination
from triage.core.tools import CodeSearchInput, LogSearchInput

LabelMap = dict[str, list[str]]


@runtime_checkable
class ObservabilityPlatform(Protocol):
    """Log search and facet enumeration on an observability backend.

    Implementations raise ``RetrievalError`` (or any exception) when a query
    cannot be executed; the log-search agent records the message as the
    step's result.
    """

    def log_query_instructions(self) -> str: ...

    async def get_log_labels(self, start: datetime, end: datetime) -> LabelMap: ...

    async def fetch_logs(self, query: LogSearchInput) -> LogsWithPagination: ...


@runtime_checkable
class CodeSearcher(Protocol):
    def code_query_instructions(self) -> str: ...

    def file_tree(self, max_entries: int = 200) -> str: ...

    async def search_code(self, query: CodeSearchInput) -> CodeSearchResults: ...
