"""Scripted stand-ins for the chat model, PDF extractor and page fetcher."""

from __future__ import annotations

from typing import Sequence

import httpx

from context_coach.chat.llm import ChatCompletion, ChatMessage, StreamChunk, Tool
from context_coach.core.errors import ProviderError


class FakeChatModel:
    """Scripted chat model: ``stream`` yields ``chunks``, ``complete`` returns ``replies`` in turn."""

    model_name = "fake-model"

    def __init__(
        self,
        chunks: Sequence[str] = ("Hello", " there"),
        replies: Sequence[str] = ("Hello there",),
        fail_after: int | None = None,
        error: Exception | None = None,
    ) -> None:
        self.chunks = list(chunks)
        self.replies = list(replies)
        self.fail_after = fail_after
        self.error = error
        self.calls: list[list[ChatMessage]] = []
        self.tool_calls: list[list[str]] = []

    async def complete(self, messages: Sequence[ChatMessage], tools: Sequence[Tool] = ()) -> ChatCompletion:
        self.calls.append(list(messages))
        self.tool_calls.append([tool.name for tool in tools])
        if self.error is not None:
            raise self.error
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        return ChatCompletion(content=reply, model=self.model_name, input_tokens=10, output_tokens=5)

    async def stream(self, messages: Sequence[ChatMessage], tools: Sequence[Tool] = ()):
        self.calls.append(list(messages))
        self.tool_calls.append([tool.name for tool in tools])
        for index, text in enumerate(self.chunks):
            if self.fail_after is not None and index >= self.fail_after:
                raise ProviderError("stream interrupted")
            yield StreamChunk(content=text)
        yield StreamChunk(input_tokens=10, output_tokens=5, model=self.model_name)


class FakePdfExtractor:
    def __init__(self, pages: Sequence[str]) -> None:
        self.pages = list(pages)

    async def extract_pages(self, data: bytes) -> list[str]:
        return list(self.pages)


class FakePageFetcher:
    """Serves pages from a dict; unknown URLs fail like an unreachable host."""

    def __init__(self, pages: dict[str, str]) -> None:
        self.pages = pages
        self.fetched: list[str] = []

    async def fetch(self, url: str) -> str:
        self.fetched.append(url)
        if url not in self.pages:
            raise httpx.ConnectError(f"cannot reach {url}")
        return self.pages[url]


def paragraphs(prefix: str, count: int, words: int = 20) -> str:
    """``count`` blank-line separated paragraphs of ``words`` distinct words."""
    return "\n\n".join(
        " ".join(f"{prefix}p{para}w{word}" for word in range(words)) for para in range(count)
    )
