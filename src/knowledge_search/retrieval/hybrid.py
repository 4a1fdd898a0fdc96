"""Hybrid (vector + keyword) search with result caching."""

from __future__ import annotations

import asyncio

import pydantic
import structlog

from knowledge_search.config import RetrievalConfig
from knowledge_search.errors import (
    CacheUnavailable,
    CollectionNotFound,
    ProviderUnavailable,
    ValidationError,
)
from knowledge_search.ingest.embedder import Embedder
from knowledge_search.obs.tracing import SearchTraceStore, Timer
from knowledge_search.retrieval.cache import Cache
from knowledge_search.retrieval.fusion import FusionLayer
from knowledge_search.retrieval.vector_store import VectorIndex
from knowledge_search.types import Route, RouteHit, SearchResultSet

logger = structlog.get_logger(__name__)


def normalize_query(query: str) -> str:
    return query.strip().casefold()


class HybridSearchCoordinator:
    """Runs semantic and keyword retrieval concurrently and caches the fusion.

    Partial failures degrade: when one route raises, the surviving route's
    results are returned with `partial=True` and the failed route listed in
    `failed_routes`. Degraded result sets are not cached, so the next request
    retries both routes. If both routes fail the request fails.
    """

    def __init__(
        self,
        vector_index: VectorIndex,
        embedder: Embedder,
        cache: Cache,
        *,
        collection: str,
        fusion_layer: FusionLayer | None = None,
        config: RetrievalConfig | None = None,
        trace_store: SearchTraceStore | None = None,
    ) -> None:
        self.vector_index = vector_index
        self.embedder = embedder
        self.cache = cache
        self.collection = collection
        self.config = config or RetrievalConfig()
        self.fusion_layer = fusion_layer or FusionLayer(self.config)
        self.trace_store = trace_store

    def cache_key(self, normalized_query: str) -> str:
        return f"{self.config.cache_prefix}{normalized_query}"

    async def hybrid_search(self, query: str) -> SearchResultSet:
        normalized = normalize_query(query)
        if not normalized:
            raise ValidationError("Query must not be empty")
        key = self.cache_key(normalized)

        with Timer() as timer:
            cached = await self._cache_get(key)
            result = self._decode_cached(key, cached) if cached is not None else None
            cache_hit = result is not None
            if result is None:
                result = await self._compute(normalized)
                if not result.partial:
                    await self._cache_set(key, result.model_dump_json())

        logger.info(
            "hybrid search",
            cache_key=key,
            cache_hit=cache_hit,
            partial=result.partial,
            results=len(result.results),
            latency_ms=round(timer.elapsed_ms, 2),
        )
        if self.trace_store is not None:
            self.trace_store.record(
                query=normalized,
                cache_hit=cache_hit,
                partial=result.partial,
                result_count=len(result.results),
                latency_ms=timer.elapsed_ms,
            )
        return result

    async def semantic_search(self, query: str) -> list[RouteHit]:
        vector = await self.embedder.embed(query)
        return await self.vector_index.search(
            self.collection, vector, max(self.config.semantic_k, self.config.final_k)
        )

    async def keyword_search(self, query: str) -> list[RouteHit]:
        return await self.vector_index.text_search(
            self.collection, query, max(self.config.keyword_k, self.config.final_k)
        )

    async def _compute(self, normalized: str) -> SearchResultSet:
        outcomes = await asyncio.gather(
            self.semantic_search(normalized),
            self.keyword_search(normalized),
            return_exceptions=True,
        )

        route_results: dict[Route, list[RouteHit]] = {}
        failed: list[Route] = []
        errors: list[BaseException] = []
        for route, outcome in zip(("vector", "text"), outcomes, strict=True):
            if isinstance(outcome, CollectionNotFound):
                # Nothing has been indexed yet.
                route_results[route] = []
            elif isinstance(outcome, Exception):
                logger.warning("search route failed", route=route, error=repr(outcome))
                failed.append(route)
                errors.append(outcome)
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                route_results[route] = outcome

        if len(failed) == 2:
            raise ProviderUnavailable(
                f"All search routes failed: {'; '.join(str(e) for e in errors)}"
            ) from errors[0]

        return SearchResultSet(
            query=normalized,
            results=self.fusion_layer.fuse(route_results, top_k=self.config.final_k),
            partial=bool(failed),
            failed_routes=failed,
        )

    async def _cache_get(self, key: str) -> str | None:
        try:
            return await self.cache.get(key)
        except CacheUnavailable as exc:
            logger.warning("cache read failed, recomputing", cache_key=key, error=str(exc))
            return None

    def _decode_cached(self, key: str, cached: str) -> SearchResultSet | None:
        try:
            return SearchResultSet.model_validate_json(cached)
        except pydantic.ValidationError as exc:
            logger.warning(
                "discarding unreadable cache entry", cache_key=key, error=str(exc)
            )
            return None

    async def _cache_set(self, key: str, value: str) -> None:
        try:
            await self.cache.set(key, value, self.config.cache_ttl_seconds)
        except CacheUnavailable as exc:
            logger.warning("cache write failed", cache_key=key, error=str(exc))
