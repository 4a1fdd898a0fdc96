"""Embedding abstractions, a deterministic baseline and an OpenAI provider."""

from __future__ import annotations

from abc import ABC, abstractmethod
from hashlib import blake2b
from math import sqrt
from typing import Any

import openai
import structlog
from langchain_core.embeddings import Embeddings

from knowledge_search.errors import ProviderUnavailable, RateLimited

logger = structlog.get_logger(__name__)


class Embedder(ABC):
    """Embedder interface used by ingest and retrieval components.

    Implementations never retry; the ingestion pipeline owns retry policy.
    """

    dimension: int

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Embed one text (a chunk or a query)."""

    async def embed_many(self, texts: list[str]) -> list[list[float]]:
        """Embed many texts, preserving input order."""
        return [await self.embed(text) for text in texts]


class HashingEmbedder(Embedder):
    """Deterministic sparse-like embedding without external model calls.

    This class is primarily used for local runs and deterministic tests. In
    production, configure `OpenAIEmbedder` instead.
    """

    def __init__(self, dimension: int = 256) -> None:
        self.dimension = dimension

    async def embed(self, text: str) -> list[float]:
        return self._embed(text)

    async def embed_many(self, texts: list[str]) -> list[list[float]]:
        return [self._embed(text) for text in texts]

    def _embed(self, text: str) -> list[float]:
        vector = [0.0 for _ in range(self.dimension)]
        tokens = text.lower().split()
        if not tokens:
            return vector

        for token in tokens:
            digest = blake2b(token.encode("utf-8"), digest_size=8).digest()
            idx = int.from_bytes(digest[:4], "little") % self.dimension
            sign = -1.0 if digest[4] % 2 else 1.0
            vector[idx] += sign

        norm = sqrt(sum(value * value for value in vector))
        if norm == 0:
            return vector
        return [value / norm for value in vector]


class OpenAIEmbedder(Embedder):
    """Embedding provider backed by LangChain's OpenAI integration.

    SDK errors are translated into `RateLimited` / `ProviderUnavailable`;
    client errors (4xx other than 429) propagate unchanged.
    """

    def __init__(
        self,
        *,
        model: str = "text-embedding-3-small",
        dimension: int = 768,
        client: Embeddings | None = None,
    ) -> None:
        self.dimension = dimension
        if client is None:
            from langchain_openai import OpenAIEmbeddings

            client = OpenAIEmbeddings(model=model, dimensions=dimension)
        self._client: Embeddings = client

    async def embed(self, text: str) -> list[float]:
        return await self._call(self._client.aembed_query, text)

    async def embed_many(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        return await self._call(self._client.aembed_documents, texts)

    async def _call(self, method: Any, payload: Any) -> Any:
        try:
            return await method(payload)
        except openai.RateLimitError as exc:
            logger.warning("embedding rate limited", error=str(exc))
            raise RateLimited(str(exc)) from exc
        except (openai.APIConnectionError, openai.APITimeoutError) as exc:
            raise ProviderUnavailable(f"Embedding service unreachable: {exc}") from exc
        except openai.APIStatusError as exc:
            if exc.status_code >= 500:
                raise ProviderUnavailable(
                    f"Embedding service error {exc.status_code}: {exc}"
                ) from exc
            raise
