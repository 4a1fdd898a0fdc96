"""Composition root: builds every service once and hands them to the API."""

from __future__ import annotations

from dataclasses import dataclass, field

import structlog

from knowledge_search.config import ChunkingConfig, IngestConfig, RetrievalConfig, Settings
from knowledge_search.ingest.chunker import BoundaryChunker
from knowledge_search.ingest.embedder import Embedder, HashingEmbedder, OpenAIEmbedder
from knowledge_search.ingest.jobs import InMemoryJobStore
from knowledge_search.ingest.normalizer import Normalizer
from knowledge_search.ingest.pipeline import IngestionPipeline
from knowledge_search.ingest.storage import LocalFileStorage
from knowledge_search.obs.tracing import SearchTraceStore
from knowledge_search.retrieval.cache import Cache, InMemoryCache, RedisCache
from knowledge_search.retrieval.hybrid import HybridSearchCoordinator
from knowledge_search.retrieval.vector_store import (
    InMemoryVectorIndex,
    QdrantVectorIndex,
    VectorIndex,
)

logger = structlog.get_logger(__name__)


@dataclass(slots=True)
class Container:
    settings: Settings
    embedder: Embedder
    vector_index: VectorIndex
    cache: Cache
    pipeline: IngestionPipeline
    search: HybridSearchCoordinator
    trace_store: SearchTraceStore = field(default_factory=SearchTraceStore)

    async def start(self) -> None:
        if isinstance(self.vector_index, QdrantVectorIndex):
            await self.vector_index.boot()
        logger.info(
            "services started",
            vector_backend=self.settings.vector_backend,
            cache_backend=self.settings.cache_backend,
            embedding_backend=self.settings.embedding_backend,
        )

    async def stop(self) -> None:
        if isinstance(self.vector_index, QdrantVectorIndex):
            await self.vector_index.close()
        if isinstance(self.cache, RedisCache):
            await self.cache.close()


def build_container(
    settings: Settings | None = None,
    *,
    embedder: Embedder | None = None,
    vector_index: VectorIndex | None = None,
    cache: Cache | None = None,
    chunking: ChunkingConfig | None = None,
    retrieval: RetrievalConfig | None = None,
    ingest: IngestConfig | None = None,
) -> Container:
    """Build services from settings; explicit arguments override the backends."""

    settings = settings or Settings()
    embedder = embedder or _build_embedder(settings)
    vector_index = vector_index or _build_vector_index(settings, embedder.dimension)
    cache = cache or _build_cache(settings)
    trace_store = SearchTraceStore()

    pipeline = IngestionPipeline(
        LocalFileStorage(settings.storage_path),
        Normalizer(),
        BoundaryChunker(chunking),
        embedder,
        vector_index,
        InMemoryJobStore(),
        collection=settings.collection,
        config=ingest,
    )
    search = HybridSearchCoordinator(
        vector_index,
        embedder,
        cache,
        collection=settings.collection,
        config=retrieval,
        trace_store=trace_store,
    )
    return Container(
        settings=settings,
        embedder=embedder,
        vector_index=vector_index,
        cache=cache,
        pipeline=pipeline,
        search=search,
        trace_store=trace_store,
    )


def _build_embedder(settings: Settings) -> Embedder:
    if settings.embedding_backend == "openai":
        return OpenAIEmbedder(
            model=settings.openai_embedding_model, dimension=settings.embedding_dimension
        )
    return HashingEmbedder(dimension=settings.embedding_dimension)


def _build_vector_index(settings: Settings, dimension: int) -> VectorIndex:
    if settings.vector_backend == "qdrant":
        return QdrantVectorIndex(
            settings.qdrant_url,
            dimension=dimension,
            api_key=settings.qdrant_api_key,
            timeout=settings.qdrant_timeout_seconds,
            text_scan_limit=settings.qdrant_text_scan_limit,
        )
    return InMemoryVectorIndex(dimension=dimension)


def _build_cache(settings: Settings) -> Cache:
    if settings.cache_backend == "redis":
        return RedisCache(settings.redis_url)
    return InMemoryCache()
