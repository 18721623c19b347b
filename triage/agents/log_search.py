"""Log Search Agent: explores the observability platform for one objective."""

from __future__ import annotations

from datetime import timedelta
from typing import Any, Optional

from triage.agents.formatting import format_facet_values, format_search_steps
from triage.agents.subagent import FALLBACK_REASONING, PromptContext, RetrievalSubAgent
from triage.core.config import Settings
from triage.core.models import LogSearchStep, LogSearchToolCall, LogsWithPagination
from triage.core.tools import LOG_SEARCH_TOOL, LogSearchInput
from triage.core.updates import LogSearchChunkUpdate, LogSearchToolsUpdate
from triage.llm.client import ChatModelClient
from triage.retrieval.protocols import ObservabilityPlatform

SYSTEM_PROMPT = """\
You are an expert AI assistant that helps engineers debug production issues by
searching through logs. Your task is to find logs relevant to the issue/event.
"""

PROMPT_TEMPLATE = """\
Given the available log labels, a user query about an issue/event and the logs
gathered so far, fetch logs for the following objective: {request}

Call `{tool_name}` to read logs from the observability platform. When you have
enough logs for the objective, do not call any tool; no tool call means you are done.

## Tips
- Do not query infrastructure services (collectors, agents, operators, message
  brokers, databases). Stick to user-facing services.
- Early on, tag several related services in one query instead of one search per service.
- Read <previous_log_query_result> and <log_results_history> before deciding the next query.
- Once you find identifiers (order IDs, user IDs, trace IDs), use them to follow
  the event across services.
- At least once, zoom out and drop most filters to see the broader system.
- Only filter on service names, fragments of error messages or unique identifiers,
  never on code symbols or file names.
- On empty results: shorten or remove keyword filters, use attribute filters,
  widen the time range or add services.
- Anchor time ranges on timestamps from the query or gathered context, with
  +/- 15 minutes of slack. Times are UTC.

## Rules
- Call `{tool_name}` at most once per turn.
- Never repeat a query from <log_results_history>.
- Explain in 3-5 sentences, outside the tool call, what you are exploring and why.

<iteration>
{iteration} of {max_iterations}
</iteration>

<remaining_queries>
{remaining}
</remaining_queries>

<current_time>
{current_time}
</current_time>

<query>
{query}
</query>

<log_labels>
{labels}
</log_labels>

<platform_specific_instructions>
{instructions}
</platform_specific_instructions>
{previous_result}
<log_results_history>
{history}
</log_results_history>

<system_overview>
{system_overview}
</system_overview>
"""


class LogSearchAgent(RetrievalSubAgent):
    name = "log_search"
    step_type = "logSearch"
    tool_name = LOG_SEARCH_TOOL
    input_schema = LogSearchInput
    step_cls = LogSearchStep
    tool_call_cls = LogSearchToolCall
    chunk_update_cls = LogSearchChunkUpdate
    tools_update_cls = LogSearchToolsUpdate
    system_prompt = SYSTEM_PROMPT

    def __init__(
        self,
        llm: ChatModelClient,
        platform: ObservabilityPlatform,
        settings: Optional[Settings] = None,
    ) -> None:
        super().__init__(llm, settings)
        self.platform = platform

    @property
    def default_max_iterations(self) -> int:
        return self.settings.log_search_max_iterations

    def build_prompt(self, context: PromptContext) -> str:
        previous_result = ""
        if context.last_step is not None:
            previous_result = (
                "\n<previous_log_query_result>\n"
                f"{format_search_steps([context.last_step])}\n"
                "</previous_log_query_result>\n"
            )

        return PROMPT_TEMPLATE.format(
            request=context.request,
            tool_name=self.tool_name,
            iteration=context.iteration,
            max_iterations=context.max_iterations,
            remaining=context.remaining,
            current_time=context.current_time.isoformat(),
            query=context.query,
            labels=format_facet_values(context.labels),
            instructions=self.platform.log_query_instructions(),
            previous_result=previous_result,
            history=format_search_steps(context.history),
            system_overview=context.system_overview,
        )

    async def execute(self, query: LogSearchInput) -> LogsWithPagination:
        return await self.platform.fetch_logs(query)

    def fallback_query(self, context: PromptContext) -> LogSearchInput:
        """Broad, unfiltered query over every known service for the last day."""
        services = self.settings.known_services or context.labels.get("service", [])
        return LogSearchInput(
            query=" OR ".join(f"service:{service}" for service in services) or "*",
            start=context.current_time - timedelta(hours=self.settings.fallback_window_hours),
            end=context.current_time,
            limit=self.settings.fallback_log_limit,
            page_cursor=None,
            reasoning=FALLBACK_REASONING,
        )

    def describe_query(self, query: LogSearchInput) -> dict[str, Any]:
        return {
            "query": query.query,
            "start": query.start.isoformat(),
            "end": query.end.isoformat(),
            "limit": query.limit,
        }
