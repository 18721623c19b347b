"""Regex code search over a local checkout."""

from __future__ import annotations

import asyncio
import fnmatch
import re
from pathlib import Path

from triage.core.errors import RetrievalError
from triage.core.logging import get_logger
from triage.core.models import CodeMatch, CodeSearchResults
from triage.core.tools import CodeSearchInput

logger = get_logger("code_search")

SKIP_DIRS = frozenset({".git", "node_modules", "__pycache__", ".venv", "venv", ".mypy_cache", ".pytest_cache", "dist", "build"})
MAX_FILE_BYTES = 512 * 1024
MAX_LINE_CHARS = 300

QUERY_INSTRUCTIONS = """\
Code queries are Python regular expressions matched line by line against the
repository's text files (case-sensitive unless you use (?i)).
- Use path to restrict the search to a directory (e.g. "services/orders") or a
  glob (e.g. "*.py", "services/*/config/*.yaml").
- Prefer identifiers (function, class, config key names) and distinctive
  fragments of log or error messages over generic words.
- Results are "<filepath>:<line number>: <line>"; a truncated result means the
  limit was hit and the query should be narrowed.
"""


class LocalCodeSearcher:
    def __init__(self, repo_path: str | Path) -> None:
        self.root = Path(repo_path).resolve()

    def code_query_instructions(self) -> str:
        return QUERY_INSTRUCTIONS

    def _iter_files(self):
        for path in sorted(self.root.rglob("*")):
            if not path.is_file():
                continue
            rel = path.relative_to(self.root)
            if any(part in SKIP_DIRS for part in rel.parts[:-1]):
                continue
            yield rel, path

    def file_tree(self, max_entries: int = 200) -> str:
        entries = [rel.as_posix() for rel, _ in self._iter_files()]
        if len(entries) > max_entries:
            remaining = len(entries) - max_entries
            entries = entries[:max_entries] + [f"... ({remaining} more files)"]
        return "\n".join(entries)

    def _selected(self, rel: Path, path_filter: str | None) -> bool:
        if not path_filter:
            return True
        posix = rel.as_posix()
        prefix = path_filter.strip("/")
        if posix == prefix or posix.startswith(prefix + "/"):
            return True
        return fnmatch.fnmatch(posix, path_filter) or fnmatch.fnmatch(rel.name, path_filter)

    def _search(self, query: CodeSearchInput) -> CodeSearchResults:
        try:
            pattern = re.compile(query.query)
        except re.error as exc:
            raise RetrievalError(f"Invalid regular expression {query.query!r}: {exc}") from exc

        matches: list[CodeMatch] = []
        for rel, path in self._iter_files():
            if not self._selected(rel, query.path):
                continue
            try:
                if path.stat().st_size > MAX_FILE_BYTES:
                    continue
                raw = path.read_bytes()
            except OSError:
                continue
            if b"\0" in raw[:1024]:
                continue

            text = raw.decode("utf-8", errors="replace")
            for number, line in enumerate(text.splitlines(), start=1):
                if pattern.search(line):
                    if len(matches) >= query.limit:
                        return CodeSearchResults(matches=tuple(matches), truncated=True)
                    matches.append(
                        CodeMatch(
                            filepath=rel.as_posix(),
                            line_number=number,
                            line=line.strip()[:MAX_LINE_CHARS],
                        )
                    )
        return CodeSearchResults(matches=tuple(matches), truncated=False)

    async def search_code(self, query: CodeSearchInput) -> CodeSearchResults:
        if not self.root.is_dir():
            raise RetrievalError(f"Repository path does not exist: {self.root}")

        results = await asyncio.to_thread(self._search, query)
        logger.debug(
            "code_searched",
            pattern=query.query,
            path=query.path,
            matches=len(results.matches),
            truncated=results.truncated,
        )
        return results
