"""Chat model abstraction and an OpenAI-compatible implementation over httpx."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Protocol, Sequence

import httpx
import orjson

from context_coach.core.config import Settings
from context_coach.core.errors import ProviderError, TransientProviderError
from context_coach.core.logging import get_logger

logger = get_logger(__name__)

MAX_TOOL_ROUNDS = 5


@dataclass(slots=True)
class ChatMessage:
    role: str
    content: str | None = None
    tool_calls: list[dict[str, Any]] | None = None
    tool_call_id: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_calls:
            payload["tool_calls"] = self.tool_calls
        if self.tool_call_id:
            payload["tool_call_id"] = self.tool_call_id
        return payload


@dataclass(slots=True)
class ChatCompletion:
    content: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass(slots=True)
class StreamChunk:
    """Either a content increment or, last in a stream, the usage totals."""

    content: str | None = None
    input_tokens: int | None = None
    output_tokens: int | None = None
    model: str | None = None

    @property
    def is_usage(self) -> bool:
        return self.input_tokens is not None or self.output_tokens is not None


class Tool(Protocol):
    name: str
    description: str
    parameters: dict[str, Any]

    async def invoke(self, arguments: dict[str, Any]) -> str: ...


class ChatModel(Protocol):
    model_name: str

    async def complete(self, messages: Sequence[ChatMessage], tools: Sequence[Tool] = ()) -> ChatCompletion: ...

    def stream(self, messages: Sequence[ChatMessage], tools: Sequence[Tool] = ()) -> AsyncIterator[StreamChunk]: ...


@dataclass(slots=True)
class _PendingToolCall:
    id: str = ""
    name: str = ""
    arguments: list[str] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": "".join(self.arguments)},
        }


class OpenAIChatModel:
    """``/chat/completions`` client with tool calling and server-sent-event streaming."""

    def __init__(
        self,
        api_key: str | None,
        model: str,
        base_url: str = "https://api.openai.com/v1",
        max_tokens: int = 2048,
        temperature: float = 0.7,
        timeout: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.model_name = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout, headers=headers)

    @classmethod
    def from_settings(cls, settings: Settings) -> "OpenAIChatModel":
        return cls(
            api_key=settings.openai_api_key,
            model=settings.chat_model,
            base_url=settings.openai_base_url,
            max_tokens=settings.chat_max_tokens,
            temperature=settings.chat_temperature,
            timeout=settings.http_timeout,
        )

    async def complete(self, messages: Sequence[ChatMessage], tools: Sequence[Tool] = ()) -> ChatCompletion:
        conversation = list(messages)
        input_tokens = 0
        output_tokens = 0
        for _ in range(MAX_TOOL_ROUNDS + 1):
            response = await self._client.post("/chat/completions", json=self._payload(conversation, tools))
            _raise_for_status(response.status_code, response.text)
            data = response.json()
            usage = data.get("usage") or {}
            input_tokens += int(usage.get("prompt_tokens", 0))
            output_tokens += int(usage.get("completion_tokens", 0))
            message = data["choices"][0]["message"]
            tool_calls = message.get("tool_calls") or []
            if not tool_calls or not tools:
                return ChatCompletion(
                    content=message.get("content") or "",
                    model=data.get("model", self.model_name),
                    input_tokens=input_tokens,
                    output_tokens=output_tokens,
                )
            conversation.append(ChatMessage(role="assistant", content=message.get("content"), tool_calls=tool_calls))
            conversation.extend(await _run_tools(tool_calls, tools))
        raise ProviderError("Model kept requesting tools without answering")

    async def stream(self, messages: Sequence[ChatMessage], tools: Sequence[Tool] = ()) -> AsyncIterator[StreamChunk]:
        conversation = list(messages)
        input_tokens = 0
        output_tokens = 0
        model = self.model_name
        for _ in range(MAX_TOOL_ROUNDS + 1):
            payload = self._payload(conversation, tools)
            payload["stream"] = True
            payload["stream_options"] = {"include_usage": True}
            pending: dict[int, _PendingToolCall] = {}
            async with self._client.stream("POST", "/chat/completions", json=payload) as response:
                if response.status_code >= 400:
                    body = await response.aread()
                    _raise_for_status(response.status_code, body.decode("utf-8", errors="replace"))
                async for line in response.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    data = line[len("data:") :].strip()
                    if data == "[DONE]":
                        break
                    event = orjson.loads(data)
                    model = event.get("model") or model
                    usage = event.get("usage")
                    if usage:
                        input_tokens += int(usage.get("prompt_tokens", 0))
                        output_tokens += int(usage.get("completion_tokens", 0))
                    for choice in event.get("choices") or []:
                        delta = choice.get("delta") or {}
                        if delta.get("content"):
                            yield StreamChunk(content=delta["content"])
                        for call in delta.get("tool_calls") or []:
                            entry = pending.setdefault(call.get("index", 0), _PendingToolCall())
                            entry.id = call.get("id") or entry.id
                            function = call.get("function") or {}
                            entry.name = function.get("name") or entry.name
                            if function.get("arguments"):
                                entry.arguments.append(function["arguments"])
            if not pending or not tools:
                yield StreamChunk(input_tokens=input_tokens, output_tokens=output_tokens, model=model)
                return
            tool_calls = [pending[index].to_payload() for index in sorted(pending)]
            conversation.append(ChatMessage(role="assistant", tool_calls=tool_calls))
            conversation.extend(await _run_tools(tool_calls, tools))
        raise ProviderError("Model kept requesting tools without answering")

    async def aclose(self) -> None:
        await self._client.aclose()

    def _payload(self, messages: Sequence[ChatMessage], tools: Sequence[Tool]) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.model_name,
            "messages": [message.to_payload() for message in messages],
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
        }
        if tools:
            payload["tools"] = [
                {
                    "type": "function",
                    "function": {"name": tool.name, "description": tool.description, "parameters": tool.parameters},
                }
                for tool in tools
            ]
        return payload


async def _run_tools(tool_calls: Sequence[dict[str, Any]], tools: Sequence[Tool]) -> list[ChatMessage]:
    by_name = {tool.name: tool for tool in tools}
    results: list[ChatMessage] = []
    for call in tool_calls:
        function = call.get("function") or {}
        name = function.get("name", "")
        tool = by_name.get(name)
        if tool is None:
            output = f"Unknown tool: {name}"
        else:
            try:
                arguments = orjson.loads(function.get("arguments") or "{}")
            except orjson.JSONDecodeError:
                arguments = {}
            output = await tool.invoke(arguments)
            logger.debug("Tool %s returned %s characters", name, len(output))
        results.append(ChatMessage(role="tool", content=output, tool_call_id=call.get("id")))
    return results


def _raise_for_status(status_code: int, body: str) -> None:
    if status_code == 429 or status_code >= 500:
        raise TransientProviderError(f"Chat provider returned {status_code}", status_code=status_code)
    if status_code >= 400:
        raise ProviderError(f"Chat provider rejected request ({status_code}): {body[:200]}", status_code=status_code)


__all__ = [
    "ChatMessage",
    "ChatCompletion",
    "StreamChunk",
    "Tool",
    "ChatModel",
    "OpenAIChatModel",
]
