"""Collaborators that turn raw inputs into text: PDF page extraction and page fetching."""

from __future__ import annotations

import asyncio
from typing import Protocol

import fitz
import httpx

from context_coach.core.logging import get_logger

logger = get_logger(__name__)


class PdfPageExtractor(Protocol):
    async def extract_pages(self, data: bytes) -> list[str]: ...


class PyMuPdfPageExtractor:
    """Extract page text in reading order with PyMuPDF."""

    async def extract_pages(self, data: bytes) -> list[str]:
        return await asyncio.to_thread(self._extract, data)

    @staticmethod
    def _extract(data: bytes) -> list[str]:
        with fitz.open(stream=data, filetype="pdf") as doc:
            return [page.get_text("text", sort=True) for page in doc]


class PageFetcher(Protocol):
    async def fetch(self, url: str) -> str: ...


class HttpPageFetcher:
    """Fetch HTML pages politely, sleeping ``request_delay`` seconds before each request."""

    def __init__(
        self,
        request_delay: float = 1.0,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.request_delay = request_delay
        self._client = client or httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            headers={"User-Agent": "context-coach/0.1 (+docs ingestion)"},
        )

    async def fetch(self, url: str) -> str:
        if self.request_delay > 0:
            await asyncio.sleep(self.request_delay)
        response = await self._client.get(url)
        response.raise_for_status()
        logger.debug("Fetched %s (%s bytes)", url, len(response.content))
        return response.text

    async def aclose(self) -> None:
        await self._client.aclose()


__all__ = ["PdfPageExtractor", "PyMuPdfPageExtractor", "PageFetcher", "HttpPageFetcher"]
