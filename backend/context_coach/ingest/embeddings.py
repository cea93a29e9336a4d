"""Embedding providers, retry policy and vector helpers."""

from __future__ import annotations

import hashlib
import math
import re
import sys
from array import array
from typing import Protocol, Sequence

import httpx
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from context_coach.core.config import Settings
from context_coach.core.errors import DimensionMismatchError, ProviderError, TransientProviderError
from context_coach.core.logging import get_logger

logger = get_logger(__name__)

_TOKEN_RE = re.compile(r"\w+")


class EmbeddingProvider(Protocol):
    dim: int

    async def embed_raw(self, text: str) -> list[float]: ...


class HashedEmbeddingProvider:
    """Lightweight hashed embedding model with deterministic output."""

    def __init__(self, dim: int = 384) -> None:
        self.dim = dim

    async def embed_raw(self, text: str) -> list[float]:
        return self.encode(text)

    def encode(self, text: str) -> list[float]:
        vector = [0.0] * self.dim
        for token in _tokenize(text):
            vector[_hash_token(token, self.dim)] += 1.0
        _normalize(vector)
        return vector


class OpenAIEmbeddingProvider:
    """Embeddings from an OpenAI-compatible ``/embeddings`` endpoint."""

    def __init__(
        self,
        api_key: str,
        model: str,
        dim: int,
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.model = model
        self.dim = dim
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers={"Authorization": f"Bearer {api_key}"},
        )

    async def embed_raw(self, text: str) -> list[float]:
        response = await self._client.post(
            "/embeddings",
            json={"model": self.model, "input": text, "dimensions": self.dim},
        )
        if response.status_code == 429 or response.status_code >= 500:
            raise TransientProviderError(
                f"Embedding provider returned {response.status_code}",
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            raise ProviderError(
                f"Embedding provider rejected request: {response.text[:200]}",
                status_code=response.status_code,
            )
        payload = response.json()
        return [float(value) for value in payload["data"][0]["embedding"]]

    async def aclose(self) -> None:
        await self._client.aclose()


class EmbeddingService:
    """Embed text through a provider, retrying transient failures with exponential backoff."""

    def __init__(self, provider: EmbeddingProvider, max_attempts: int = 5, base_delay: float = 1.0) -> None:
        self.provider = provider
        self.max_attempts = max_attempts
        self.base_delay = base_delay

    @property
    def dim(self) -> int:
        return self.provider.dim

    async def embed(self, text: str) -> list[float]:
        retrying = AsyncRetrying(
            retry=retry_if_exception(_is_transient),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.base_delay, exp_base=2),
            before_sleep=_log_retry,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await self.provider.embed_raw(text)
        raise AssertionError("unreachable")  # pragma: no cover

    async def embed_bytes(self, text: str) -> bytes:
        return serialize_embedding(await self.embed(text))


def build_embedding_service(settings: Settings) -> EmbeddingService:
    if settings.embedding_provider == "openai":
        if not settings.openai_api_key:
            raise ValueError("openai_api_key is required for the openai embedding provider")
        provider: EmbeddingProvider = OpenAIEmbeddingProvider(
            api_key=settings.openai_api_key,
            model=settings.embedding_model,
            dim=settings.embedding_dim,
            base_url=settings.openai_base_url,
            timeout=settings.http_timeout,
        )
    else:
        provider = HashedEmbeddingProvider(dim=settings.embedding_dim)
    return EmbeddingService(
        provider,
        max_attempts=settings.embedding_max_attempts,
        base_delay=settings.embedding_retry_base_delay,
    )


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    if len(a) != len(b):
        raise DimensionMismatchError(len(a), len(b))
    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return dot / (math.sqrt(norm_a) * math.sqrt(norm_b))


def serialize_embedding(vector: Sequence[float]) -> bytes:
    """Pack a vector as little-endian float32, four bytes per component."""
    arr = array("f", vector)
    if sys.byteorder == "big":
        arr.byteswap()
    return arr.tobytes()


def deserialize_embedding(data: bytes) -> list[float]:
    if len(data) % 4:
        raise ValueError(f"Embedding byte length {len(data)} is not a multiple of 4")
    arr = array("f")
    arr.frombytes(data)
    if sys.byteorder == "big":
        arr.byteswap()
    return arr.tolist()


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, TransientProviderError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status == 429 or status >= 500
    return isinstance(exc, httpx.TransportError)


def _log_retry(retry_state) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning("Embedding attempt %s failed: %s", retry_state.attempt_number, exc)


def _tokenize(text: str) -> list[str]:
    return _TOKEN_RE.findall(text.lower())


def _hash_token(token: str, dim: int) -> int:
    digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
    value = int.from_bytes(digest, "big")
    return value % dim


def _normalize(vector: list[float]) -> None:
    norm = math.sqrt(sum(value * value for value in vector))
    if norm == 0:
        return
    inv = 1.0 / norm
    for idx, value in enumerate(vector):
        vector[idx] = value * inv


__all__ = [
    "EmbeddingProvider",
    "HashedEmbeddingProvider",
    "OpenAIEmbeddingProvider",
    "EmbeddingService",
    "build_embedding_service",
    "cosine_similarity",
    "serialize_embedding",
    "deserialize_embedding",
]
