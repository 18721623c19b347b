"""Unit tests for triage/retrieval/code.py."""

from __future__ import annotations

import pytest

from triage.core.errors import RetrievalError
from triage.core.tools import CodeSearchInput
from triage.retrieval.code import LocalCodeSearcher
from triage.retrieval.protocols import CodeSearcher


@pytest.fixture
def repo(tmp_path):
    (tmp_path / "expiration" / "src").mkdir(parents=True)
    (tmp_path / "expiration" / "src" / "worker.ts").write_text(
        "const QUEUE = 'order:expiration-v2';\n"
        "export function startWorker() {\n"
        "  queue.process(QUEUE, handleExpiration);\n"
        "}\n"
    )
    (tmp_path / "orders" / "src").mkdir(parents=True)
    (tmp_path / "orders" / "src" / "publisher.ts").write_text(
        "export const EXPIRATION_QUEUE = 'order:expiration';\n"
    )
    (tmp_path / "node_modules" / "bull").mkdir(parents=True)
    (tmp_path / "node_modules" / "bull" / "index.js").write_text("// order:expiration vendored\n")
    (tmp_path / "logo.png").write_bytes(b"\x89PNG\0\0order:expiration")
    return tmp_path


def _query(pattern: str, **overrides) -> CodeSearchInput:
    return CodeSearchInput(query=pattern, reasoning="", **overrides)


class TestLocalCodeSearcher:
    def test_satisfies_protocol(self, repo):
        assert isinstance(LocalCodeSearcher(repo), CodeSearcher)

    @pytest.mark.asyncio
    async def test_finds_matches_with_line_numbers(self, repo):
        results = await LocalCodeSearcher(repo).search_code(_query(r"order:expiration"))

        found = {(m.filepath, m.line_number) for m in results.matches}
        assert found == {("expiration/src/worker.ts", 1), ("orders/src/publisher.ts", 1)}
        assert not results.truncated

    @pytest.mark.asyncio
    async def test_path_prefix_and_glob(self, repo):
        searcher = LocalCodeSearcher(repo)

        by_dir = await searcher.search_code(_query("expiration", path="orders"))
        by_glob = await searcher.search_code(_query("QUEUE", path="*.ts"))

        assert {m.filepath for m in by_dir.matches} == {"orders/src/publisher.ts"}
        assert {m.filepath for m in by_glob.matches} == {"expiration/src/worker.ts", "orders/src/publisher.ts"}

    @pytest.mark.asyncio
    async def test_limit_truncates(self, repo):
        results = await LocalCodeSearcher(repo).search_code(_query("e", limit=2))
        assert len(results.matches) == 2
        assert results.truncated

    @pytest.mark.asyncio
    async def test_invalid_regex_raises(self, repo):
        with pytest.raises(RetrievalError):
            await LocalCodeSearcher(repo).search_code(_query("(unclosed"))

    @pytest.mark.asyncio
    async def test_missing_repo_raises(self, tmp_path):
        with pytest.raises(RetrievalError):
            await LocalCodeSearcher(tmp_path / "nope").search_code(_query("x"))

    def test_file_tree_skips_vendored_dirs(self, repo):
        tree = LocalCodeSearcher(repo).file_tree().splitlines()
        assert "expiration/src/worker.ts" in tree
        assert not any(line.startswith("node_modules") for line in tree)

    def test_file_tree_is_capped(self, repo):
        tree = LocalCodeSearcher(repo).file_tree(max_entries=1).splitlines()
        assert len(tree) == 2
        assert tree[-1].startswith("...")
