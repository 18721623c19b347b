"""Language-model adapter.

Wraps a LangChain chat model behind the streaming contract the agents rely
on: a system prompt, a user prompt, a set of named tool schemas and a tool
choice policy go in; an async sequence of text deltas and, once generation
completes, a list of validated tool invocations come out.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Optional

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import BaseMessageChunk, HumanMessage, SystemMessage
from langchain_groq import ChatGroq

from triage.core.config import Settings, get_settings
from triage.core.errors import ToolArgumentsError
from triage.core.logging import get_logger
from triage.core.rate_limiter import TokenBucketRateLimiter, get_rate_limiter
from triage.core.tools import ToolInvocation, ToolSet, tool_definition, validate_tool_call

logger = get_logger("llm")


@dataclass
class ModelResponse:
    text: str
    tool_calls: list[ToolInvocation] = field(default_factory=list)


def _chunk_text(chunk: BaseMessageChunk) -> str:
    content = chunk.content
    if isinstance(content, str):
        return content
    parts = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


class ModelStream:
    """One in-progress generation.

    Iterate ``text_deltas()`` to receive text as it is produced, then await
    ``tool_calls()`` for the finalized, validated tool calls. Awaiting
    ``tool_calls()`` first simply drains the text.
    """

    def __init__(self, chunks: AsyncIterator[BaseMessageChunk], tools: ToolSet) -> None:
        self._chunks = chunks
        self._tools = tools
        self._gathered: Optional[BaseMessageChunk] = None
        self._text: list[str] = []
        self._exhausted = False

    @property
    def text(self) -> str:
        return "".join(self._text)

    async def text_deltas(self) -> AsyncIterator[str]:
        if self._exhausted:
            return
        async for chunk in self._chunks:
            self._gathered = chunk if self._gathered is None else self._gathered + chunk
            delta = _chunk_text(chunk)
            if delta:
                self._text.append(delta)
                yield delta
        self._exhausted = True

    async def tool_calls(self) -> list[ToolInvocation]:
        async for _ in self.text_deltas():
            pass
        if self._gathered is None:
            return []

        for invalid in getattr(self._gathered, "invalid_tool_calls", None) or []:
            raise ToolArgumentsError(invalid.get("name") or "<unnamed>", invalid.get("error") or "unparseable arguments")

        return [
            validate_tool_call(call["name"], call.get("args"), self._tools, call_id=call.get("id"))
            for call in getattr(self._gathered, "tool_calls", None) or []
        ]

    async def collect(self) -> ModelResponse:
        tool_calls = await self.tool_calls()
        return ModelResponse(text=self.text, tool_calls=tool_calls)


class ChatModelClient:
    def __init__(
        self,
        llm: BaseChatModel,
        rate_limiter: Optional[TokenBucketRateLimiter] = None,
    ) -> None:
        self._llm = llm
        self._rate_limiter = rate_limiter

    async def stream(
        self,
        *,
        system: str,
        prompt: str,
        tools: Optional[ToolSet] = None,
        tool_choice: str = "auto",
    ) -> ModelStream:
        if self._rate_limiter is not None:
            await self._rate_limiter.acquire()

        runnable: Any = self._llm
        if tools:
            runnable = self._llm.bind_tools(
                [tool_definition(name, schema) for name, schema in tools.items()],
                tool_choice=tool_choice,
            )

        logger.debug(
            "model_stream_opened",
            tools=sorted(tools or {}),
            tool_choice=tool_choice,
            prompt_chars=len(prompt),
        )
        messages = [SystemMessage(content=system), HumanMessage(content=prompt)]
        return ModelStream(runnable.astream(messages), tools or {})

    async def generate(
        self,
        *,
        system: str,
        prompt: str,
        tools: Optional[ToolSet] = None,
        tool_choice: str = "auto",
    ) -> ModelResponse:
        stream = await self.stream(system=system, prompt=prompt, tools=tools, tool_choice=tool_choice)
        return await stream.collect()


def build_chat_model(settings: Optional[Settings] = None) -> BaseChatModel:
    settings = settings or get_settings()
    return ChatGroq(
        api_key=settings.groq_api_key,
        model=settings.groq_model,
        temperature=settings.groq_temperature,
        max_tokens=settings.groq_max_tokens,
    )


def build_llm_client(settings: Optional[Settings] = None) -> ChatModelClient:
    return ChatModelClient(build_chat_model(settings), rate_limiter=get_rate_limiter())
