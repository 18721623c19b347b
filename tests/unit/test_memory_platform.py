"""Unit tests for triage/retrieval/memory.py."""

from __future__ import annotations

from datetime import timedelta

import pytest

from triage.core.errors import RetrievalError
from triage.core.tools import LogSearchInput
from triage.retrieval.protocols import ObservabilityPlatform


def _query(incident_time, query: str, **overrides) -> LogSearchInput:
    params = {
        "query": query,
        "start": incident_time - timedelta(minutes=30),
        "end": incident_time + timedelta(minutes=15),
        "limit": 100,
        "reasoning": "",
    }
    params.update(overrides)
    return LogSearchInput(**params)


class TestInMemoryObservabilityPlatform:
    def test_satisfies_protocol(self, platform):
        assert isinstance(platform, ObservabilityPlatform)
        assert "service:" in platform.log_query_instructions()

    @pytest.mark.asyncio
    async def test_service_filters_are_ored(self, platform, incident_time):
        result = await platform.fetch_logs(_query(incident_time, "service:tickets OR service:payments"))
        assert {log.service for log in result.logs} == {"tickets", "payments"}

    @pytest.mark.asyncio
    async def test_filters_on_different_keys_are_anded(self, platform, incident_time):
        result = await platform.fetch_logs(_query(incident_time, "service:orders level:debug"))
        assert [log.message for log in result.logs] == ["GET /health 200"]

    @pytest.mark.asyncio
    async def test_words_and_phrases_match_message(self, platform, incident_time):
        result = await platform.fetch_logs(_query(incident_time, '"already reserved" tkt_1'))
        assert len(result.logs) == 1
        assert result.logs[0].service == "tickets"

    @pytest.mark.asyncio
    async def test_attribute_filter(self, platform, incident_time):
        result = await platform.fetch_logs(_query(incident_time, "order_id:ord_2"))
        assert [log.service for log in result.logs] == ["payments"]

    @pytest.mark.asyncio
    async def test_exclusions(self, platform, incident_time):
        result = await platform.fetch_logs(_query(incident_time, 'service:orders -"GET /health"'))
        assert all("health" not in log.message for log in result.logs)
        assert len(result.logs) == 1

        result = await platform.fetch_logs(_query(incident_time, "NOT level:error"))
        assert all(log.level != "error" for log in result.logs)

    @pytest.mark.asyncio
    async def test_wildcard_and_empty_return_everything_in_range(self, platform, incident_time):
        everything = await platform.fetch_logs(_query(incident_time, "*"))
        empty = await platform.fetch_logs(_query(incident_time, ""))
        assert len(everything.logs) == len(empty.logs) == 5

    @pytest.mark.asyncio
    async def test_time_range_is_applied(self, platform, incident_time):
        result = await platform.fetch_logs(
            _query(incident_time, "*", start=incident_time - timedelta(minutes=1), end=incident_time)
        )
        assert [log.service for log in result.logs] == ["tickets"]

    @pytest.mark.asyncio
    async def test_pagination(self, platform, incident_time):
        first = await platform.fetch_logs(_query(incident_time, "*", limit=2))
        assert len(first.logs) == 2
        assert first.page_cursor_or_indicator == "2"

        second = await platform.fetch_logs(_query(incident_time, "*", limit=2, page_cursor="2"))
        third = await platform.fetch_logs(_query(incident_time, "*", limit=2, page_cursor="4"))
        assert len(second.logs) == 2
        assert len(third.logs) == 1
        assert third.page_cursor_or_indicator is None
        assert not {l.message for l in first.logs} & {l.message for l in second.logs}

    @pytest.mark.asyncio
    async def test_invalid_range_raises(self, platform, incident_time):
        with pytest.raises(RetrievalError):
            await platform.fetch_logs(
                _query(incident_time, "*", start=incident_time, end=incident_time - timedelta(minutes=5))
            )

    @pytest.mark.asyncio
    async def test_invalid_cursor_raises(self, platform, incident_time):
        with pytest.raises(RetrievalError):
            await platform.fetch_logs(_query(incident_time, "*", page_cursor="abc"))

    @pytest.mark.asyncio
    async def test_unbalanced_quote_raises(self, platform, incident_time):
        with pytest.raises(RetrievalError):
            await platform.fetch_logs(_query(incident_time, 'service:orders "unterminated'))

    @pytest.mark.asyncio
    async def test_labels(self, platform, incident_time):
        labels = await platform.get_log_labels(incident_time - timedelta(hours=1), incident_time + timedelta(hours=1))
        assert labels["service"] == ["expiration", "orders", "payments", "tickets"]
        assert "error" in labels["level"]
        assert labels["status_code"] == ["409"]
        assert "ord_1" in labels["order_id"]
