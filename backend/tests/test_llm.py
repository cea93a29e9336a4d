"""OpenAI-compatible chat client over a mocked transport."""

from __future__ import annotations

import httpx
import orjson
import pytest

from context_coach.chat.llm import ChatMessage, OpenAIChatModel
from context_coach.core.errors import ProviderError, TransientProviderError


class RecordingTool:
    name = "search_knowledge_base"
    description = "Search"
    parameters = {"type": "object", "properties": {"query": {"type": "string"}}}

    def __init__(self) -> None:
        self.arguments: list[dict] = []

    async def invoke(self, arguments: dict) -> str:
        self.arguments.append(arguments)
        return "<knowledge_base>closures capture variables</knowledge_base>"


def _model(handler) -> OpenAIChatModel:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="https://llm.test/v1")
    return OpenAIChatModel(api_key="key", model="gpt-test", client=client)


def _sse(*events: object) -> bytes:
    lines = [b"data: " + (event if isinstance(event, bytes) else orjson.dumps(event)) for event in events]
    return b"\n\n".join(lines) + b"\n\n"


@pytest.mark.asyncio
async def test_stream_yields_content_then_usage() -> None:
    requests: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(orjson.loads(request.content))
        body = _sse(
            {"model": "gpt-test-2024", "choices": [{"delta": {"content": "Hel"}}]},
            {"choices": [{"delta": {"content": "lo"}}]},
            {"choices": [], "usage": {"prompt_tokens": 7, "completion_tokens": 2}},
            b"[DONE]",
        )
        return httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})

    model = _model(handler)
    chunks = [chunk async for chunk in model.stream([ChatMessage(role="user", content="hi")])]

    assert [chunk.content for chunk in chunks[:-1]] == ["Hel", "lo"]
    usage = chunks[-1]
    assert usage.is_usage
    assert (usage.input_tokens, usage.output_tokens, usage.model) == (7, 2, "gpt-test-2024")
    assert requests[0]["stream"] is True
    assert requests[0]["stream_options"] == {"include_usage": True}
    assert "tools" not in requests[0]
    await model.aclose()


@pytest.mark.asyncio
async def test_complete_runs_requested_tools() -> None:
    requests: list[dict] = []
    tool_call = {
        "id": "call_1",
        "type": "function",
        "function": {"name": "search_knowledge_base", "arguments": '{"query": "closures"}'},
    }
    responses = iter(
        [
            {
                "model": "gpt-test",
                "choices": [{"message": {"role": "assistant", "content": None, "tool_calls": [tool_call]}}],
                "usage": {"prompt_tokens": 10, "completion_tokens": 3},
            },
            {
                "model": "gpt-test",
                "choices": [{"message": {"role": "assistant", "content": "Closures capture variables."}}],
                "usage": {"prompt_tokens": 20, "completion_tokens": 6},
            },
        ]
    )

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(orjson.loads(request.content))
        return httpx.Response(200, json=next(responses))

    tool = RecordingTool()
    model = _model(handler)
    completion = await model.complete([ChatMessage(role="user", content="closures?")], [tool])

    assert completion.content == "Closures capture variables."
    assert (completion.input_tokens, completion.output_tokens) == (30, 9)
    assert tool.arguments == [{"query": "closures"}]
    assert requests[0]["tools"][0]["function"]["name"] == "search_knowledge_base"
    followup = requests[1]["messages"]
    assert followup[-2]["tool_calls"] == [tool_call]
    assert followup[-1] == {
        "role": "tool",
        "content": "<knowledge_base>closures capture variables</knowledge_base>",
        "tool_call_id": "call_1",
    }
    await model.aclose()


@pytest.mark.asyncio
async def test_error_statuses_map_to_provider_errors() -> None:
    statuses = iter([503, 401])

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(next(statuses), text="nope")

    model = _model(handler)
    with pytest.raises(TransientProviderError):
        await model.complete([ChatMessage(role="user", content="hi")])
    with pytest.raises(ProviderError):
        await model.complete([ChatMessage(role="user", content="hi")])
    await model.aclose()
