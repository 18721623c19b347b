"""Code Search Agent: greps the service codebase for one objective."""

from __future__ import annotations

from typing import Any, Optional

from triage.agents.formatting import format_facet_values, format_search_steps
from triage.agents.subagent import FALLBACK_REASONING, PromptContext, RetrievalSubAgent
from triage.core.config import Settings
from triage.core.models import CodeSearchResults, CodeSearchStep, CodeSearchToolCall
from triage.core.tools import CODE_SEARCH_TOOL, CodeSearchInput
from triage.core.updates import CodeSearchChunkUpdate, CodeSearchToolsUpdate
from triage.llm.client import ChatModelClient
from triage.retrieval.protocols import CodeSearcher

SYSTEM_PROMPT = """\
You are an expert AI assistant that helps engineers debug production issues by
reading the source code of the affected services.
"""

PROMPT_TEMPLATE = """\
Given the user query about an issue/event, the repository file tree and the
code gathered so far, find the code needed for this objective: {request}

Call `{tool_name}` with a regular expression to search the repository. When
you have enough code for the objective, do not call any tool.

## Tips
- Search for the handlers, consumers and configuration named in log messages.
- Follow calls across services: publishers and their subscribers, clients and their servers.
- Restrict broad patterns with a path once you know which service is involved.
- Use the log labels to map service names to directories in the file tree.

## Rules
- Call `{tool_name}` at most once per turn.
- Never repeat a pattern from <code_results_history>.

<iteration>
{iteration} of {max_iterations}
</iteration>

<remaining_queries>
{remaining}
</remaining_queries>

<query>
{query}
</query>

<log_labels>
{labels}
</log_labels>

<search_instructions>
{instructions}
</search_instructions>

<file_tree>
{file_tree}
</file_tree>
{previous_result}
<code_results_history>
{history}
</code_results_history>

<system_overview>
{system_overview}
</system_overview>
"""


class CodeSearchAgent(RetrievalSubAgent):
    name = "code_search"
    step_type = "codeSearch"
    tool_name = CODE_SEARCH_TOOL
    input_schema = CodeSearchInput
    step_cls = CodeSearchStep
    tool_call_cls = CodeSearchToolCall
    chunk_update_cls = CodeSearchChunkUpdate
    tools_update_cls = CodeSearchToolsUpdate
    system_prompt = SYSTEM_PROMPT

    def __init__(
        self,
        llm: ChatModelClient,
        searcher: CodeSearcher,
        settings: Optional[Settings] = None,
    ) -> None:
        super().__init__(llm, settings)
        self.searcher = searcher

    @property
    def default_max_iterations(self) -> int:
        return self.settings.code_search_max_iterations

    def build_prompt(self, context: PromptContext) -> str:
        previous_result = ""
        if context.last_step is not None:
            previous_result = (
                "\n<previous_code_query_result>\n"
                f"{format_search_steps([context.last_step])}\n"
                "</previous_code_query_result>\n"
            )

        return PROMPT_TEMPLATE.format(
            request=context.request,
            tool_name=self.tool_name,
            iteration=context.iteration,
            max_iterations=context.max_iterations,
            remaining=context.remaining,
            query=context.query,
            labels=format_facet_values(context.labels),
            instructions=self.searcher.code_query_instructions(),
            file_tree=self.searcher.file_tree(),
            previous_result=previous_result,
            history=format_search_steps(context.history),
            system_overview=context.system_overview,
        )

    async def execute(self, query: CodeSearchInput) -> CodeSearchResults:
        return await self.searcher.search_code(query)

    def fallback_query(self, context: PromptContext) -> CodeSearchInput:
        return CodeSearchInput(
            query=r"(?i)(error|exception|timeout|retry)",
            path=None,
            limit=50,
            reasoning=FALLBACK_REASONING,
        )

    def describe_query(self, query: CodeSearchInput) -> dict[str, Any]:
        return {"pattern": query.query, "path": query.path, "limit": query.limit}
