"""In-memory observability platform over a fixed set of log entries.

Understands a small subset of the Datadog log query syntax:

- ``key:value`` attribute filters (``service``, ``level``, or any attribute);
  several values for the same key are OR-ed together,
- bare words and ``"quoted phrases"`` matched case-insensitively against the
  message, all of which must match,
- ``-term`` / ``NOT term`` exclusions, applied to filters and words alike.

``OR``/``AND`` keywords and parentheses are accepted and ignored.
"""

from __future__ import annotations

import shlex
from collections import defaultdict
from datetime import datetime
from typing import Iterable, Optional

from triage.core.errors import RetrievalError
from triage.core.logging import get_logger
from triage.core.models import Log, LogsWithPagination
from triage.core.tools import LogSearchInput
from triage.retrieval.protocols import LabelMap

logger = get_logger("memory_platform")

QUERY_INSTRUCTIONS = """\
Log queries use a Datadog-like syntax:
- Filter on attributes with key:value, e.g. service:orders or level:error.
- Repeating a key ORs its values: service:orders OR service:payments.
- Bare words or "quoted phrases" must appear in the log message.
- Prefix a filter or word with - (or NOT) to exclude matching logs, e.g. -"health check".
- An empty query (or *) returns every log in the time range.
- Pagination: pass the returned page cursor as page_cursor to fetch the next page.
"""


def _parse_query(query: str) -> tuple[dict[str, set[str]], list[str], list[tuple[Optional[str], str]]]:
    try:
        tokens = shlex.split(query.replace("(", " ").replace(")", " "))
    except ValueError as exc:
        raise RetrievalError(f"Malformed log query: {exc}") from exc

    filters: dict[str, set[str]] = defaultdict(set)
    words: list[str] = []
    exclusions: list[tuple[Optional[str], str]] = []
    negate_next = False

    for token in tokens:
        if token in ("OR", "AND", "*"):
            continue
        if token == "NOT":
            negate_next = True
            continue

        negated = negate_next or token.startswith("-")
        negate_next = False
        token = token.lstrip("-")
        if not token:
            continue

        key, sep, value = token.partition(":")
        if sep and key and value:
            if negated:
                exclusions.append((key, value.lower()))
            else:
                filters[key].add(value.lower())
        elif negated:
            exclusions.append((None, token.lower()))
        else:
            words.append(token.lower())

    return filters, words, exclusions


def _attribute(log: Log, key: str) -> Optional[str]:
    if key == "service":
        return log.service
    if key == "level":
        return log.level
    value = log.attributes.get(key)
    return None if value is None else str(value)


def _matches(log: Log, filters: dict[str, set[str]], words: list[str], exclusions) -> bool:
    for key, values in filters.items():
        value = _attribute(log, key)
        if value is None or value.lower() not in values:
            return False

    message = log.message.lower()
    if any(word not in message for word in words):
        return False

    for key, value in exclusions:
        if key is None:
            if value in message:
                return False
        else:
            attr = _attribute(log, key)
            if attr is not None and attr.lower() == value:
                return False
    return True


class InMemoryObservabilityPlatform:
    def __init__(self, logs: Iterable[Log]) -> None:
        self._logs = sorted(logs, key=lambda log: log.timestamp)

    def log_query_instructions(self) -> str:
        return QUERY_INSTRUCTIONS

    async def get_log_labels(self, start: datetime, end: datetime) -> LabelMap:
        labels: dict[str, set[str]] = defaultdict(set)
        for log in self._logs:
            if start <= log.timestamp <= end:
                labels["service"].add(log.service)
                labels["level"].add(log.level)
                for key, value in log.attributes.items():
                    if isinstance(value, (str, int)) and not isinstance(value, bool):
                        labels[key].add(str(value))
        return {key: sorted(values) for key, values in sorted(labels.items())}

    async def fetch_logs(self, query: LogSearchInput) -> LogsWithPagination:
        if query.start > query.end:
            raise RetrievalError(
                f"Invalid time range: start {query.start.isoformat()} is after end {query.end.isoformat()}"
            )

        offset = 0
        if query.page_cursor:
            try:
                offset = int(query.page_cursor)
            except ValueError as exc:
                raise RetrievalError(f"Invalid page cursor: {query.page_cursor}") from exc

        filters, words, exclusions = _parse_query(query.query)
        entries = [
            log
            for log in self._logs
            if query.start <= log.timestamp <= query.end and _matches(log, filters, words, exclusions)
        ]

        page = entries[offset : offset + query.limit]
        next_offset = offset + len(page)
        cursor = str(next_offset) if next_offset < len(entries) else None

        logger.debug(
            "logs_fetched",
            query=query.query,
            matched=len(entries),
            returned=len(page),
            next_cursor=cursor,
        )
        return LogsWithPagination(logs=tuple(page), page_cursor_or_indicator=cursor)
