"""End-to-end ingest pipeline: store -> normalize -> chunk -> embed -> upsert."""

from __future__ import annotations

import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from pathlib import PurePath
from typing import Any, TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from knowledge_search.config import IngestConfig
from knowledge_search.errors import PartialIngestionFailure, ProviderUnavailable
from knowledge_search.ingest.chunker import BoundaryChunker
from knowledge_search.ingest.embedder import Embedder
from knowledge_search.ingest.jobs import InMemoryJobStore
from knowledge_search.ingest.normalizer import Normalizer
from knowledge_search.ingest.storage import LocalFileStorage
from knowledge_search.retrieval.vector_store import VectorIndex
from knowledge_search.types import (
    DocumentChunk,
    IndexedPoint,
    IngestionReport,
    IngestionState,
    StoredDocument,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class IngestionPipeline:
    """Coordinates storage/normalizer/chunker/embedder/vector index stages.

    Every stage transition is written to the job store, so callers that
    scheduled `run` in the background can poll the document's status. Errors
    never escape `run`: they end up in the returned `IngestionReport`.

    Chunks are embedded and upserted in ordinal order, `batch_size` chunks at
    a time. `ProviderUnavailable` (including `RateLimited`) is retried with
    exponential backoff; any error that survives retrying aborts the remaining
    chunks and the report lists which ordinals were indexed, which failed and
    which were never attempted.
    """

    def __init__(
        self,
        storage: LocalFileStorage,
        normalizer: Normalizer,
        chunker: BoundaryChunker,
        embedder: Embedder,
        vector_index: VectorIndex,
        jobs: InMemoryJobStore,
        *,
        collection: str,
        config: IngestConfig | None = None,
    ) -> None:
        self._storage = storage
        self._normalizer = normalizer
        self._chunker = chunker
        self._embedder = embedder
        self._vector_index = vector_index
        self._jobs = jobs
        self.collection = collection
        self.config = config or IngestConfig()

    async def ingest(
        self, content: bytes, filename: str, *, content_type: str | None = None
    ) -> IngestionReport:
        """Register and ingest a single upload, returning its final report."""

        document = await self.register(content, filename, content_type=content_type)
        return await self.run(document)

    async def register(
        self, content: bytes, filename: str, *, content_type: str | None = None
    ) -> StoredDocument:
        self._storage.path_for(filename)
        document = StoredDocument(
            document_id=str(uuid.uuid4()),
            filename=PurePath(filename.replace("\\", "/")).name,
            content=content,
            content_type=content_type,
            uploaded_at=datetime.now(timezone.utc),
        )
        await self._jobs.create(document.document_id, document.filename)
        logger.info(
            "document registered",
            document_id=document.document_id,
            filename=document.filename,
            size=len(content),
        )
        return document

    async def run(self, document: StoredDocument) -> IngestionReport:
        log = logger.bind(document_id=document.document_id, filename=document.filename)
        stage = "storing"
        try:
            path = await self._storage.save(document.content, document.filename)
            document.storage_path = str(path)
            await self._jobs.update(document.document_id, IngestionState.STORED)

            stage = "normalizing"
            parsed = self._normalizer.normalize(document)
            await self._jobs.update(document.document_id, IngestionState.NORMALIZED)

            stage = "chunking"
            chunks = self._chunker.chunk_document(parsed)
            await self._jobs.update(
                document.document_id, IngestionState.CHUNKED, chunk_count=len(chunks)
            )

            stage = "indexing"
            point_ids = await self._index_chunks(document, chunks)
        except PartialIngestionFailure as exc:
            log.error(
                "ingestion aborted",
                indexed=exc.indexed,
                failed=exc.failed,
                not_attempted=exc.not_attempted,
                error=str(exc.cause),
            )
            await self._jobs.update(
                document.document_id,
                IngestionState.FAILED,
                failed_stage=stage,
                error=str(exc.cause),
                indexed_chunks=exc.indexed,
                failed_chunks=exc.failed,
                not_attempted_chunks=exc.not_attempted,
            )
        except Exception as exc:
            log.exception("ingestion failed", stage=stage)
            await self._jobs.update(
                document.document_id,
                IngestionState.FAILED,
                failed_stage=stage,
                error=str(exc),
            )
        else:
            await self._jobs.update(
                document.document_id,
                IngestionState.FULLY_INDEXED,
                indexed_chunks=[chunk.chunk_index for chunk in chunks],
                point_ids=point_ids,
            )
            log.info("document fully indexed", chunks=len(chunks))

        await self._resolve_supersession(document)
        return await self._jobs.get(document.document_id)

    async def delete(self, document_id: str) -> IngestionReport:
        """Remove a document's indexed points, its stored upload and its job record.

        The stored file is shared by every upload of the same name, so it is only
        removed when no newer upload of that name has been registered.
        """

        report = await self._jobs.get(document_id)
        await self._vector_index.delete_document(self.collection, document_id)
        siblings = await self._jobs.documents_for(report.filename)
        if siblings[-1] == document_id:
            await self._storage.delete(report.filename)
        deleted = await self._jobs.delete(document_id)
        logger.info("document deleted", document_id=document_id, filename=report.filename)
        return deleted

    async def status(self, document_id: str) -> IngestionReport:
        return await self._jobs.get(document_id)

    async def _index_chunks(
        self, document: StoredDocument, chunks: list[DocumentChunk]
    ) -> list[str]:
        batch_size = self.config.batch_size
        indexed: list[int] = []
        point_ids: list[str] = []

        for start in range(0, len(chunks), batch_size):
            batch = chunks[start : start + batch_size]
            try:
                vectors = await self._with_retry(
                    "embed", self._embedder.embed_many, [chunk.text for chunk in batch]
                )
                if len(vectors) != len(batch):
                    raise ValueError(
                        f"Embedder returned {len(vectors)} vectors for {len(batch)} chunks"
                    )
                points = [
                    self._build_point(document, chunk, vector)
                    for chunk, vector in zip(batch, vectors, strict=True)
                ]
                await self._with_retry(
                    "upsert", self._vector_index.upsert, self.collection, points
                )
            except Exception as exc:
                raise PartialIngestionFailure(
                    indexed=list(indexed),
                    failed=[chunk.chunk_index for chunk in batch],
                    not_attempted=[chunk.chunk_index for chunk in chunks[start + len(batch) :]],
                    cause=exc,
                ) from exc

            indexed.extend(chunk.chunk_index for chunk in batch)
            point_ids.extend(point.id for point in points)
            if len(indexed) < len(chunks):
                await self._jobs.update(
                    document.document_id,
                    IngestionState.PARTIALLY_INDEXED,
                    indexed_chunks=list(indexed),
                    point_ids=list(point_ids),
                )

        return point_ids

    async def _with_retry(
        self, operation: str, func: Callable[..., Awaitable[T]], *args: Any
    ) -> T:
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(ProviderUnavailable),
            stop=stop_after_attempt(self.config.max_attempts),
            wait=wait_exponential(
                multiplier=self.config.backoff_initial_seconds,
                max=self.config.backoff_max_seconds,
            ),
            before_sleep=_log_retry(operation),
            reraise=True,
        )
        return await retrying(func, *args)

    async def _resolve_supersession(self, document: StoredDocument) -> None:
        """Keep only the newest fully indexed upload of a filename searchable.

        Earlier uploads of the same name, whether they finished or failed, lose
        their points once a later one is fully indexed. An upload that ends
        after a later one was already fully indexed removes its own points.
        """

        siblings = await self._jobs.documents_for(document.filename)
        position = siblings.index(document.document_id)
        for newer_id in siblings[position + 1 :]:
            newer = await self._jobs.get(newer_id)
            if newer.state == IngestionState.FULLY_INDEXED:
                await self._retire(document.document_id, replaced_by=newer_id)
                return

        report = await self._jobs.get(document.document_id)
        if report.state != IngestionState.FULLY_INDEXED:
            return
        for older_id in siblings[:position]:
            older = await self._jobs.get(older_id)
            if older.superseded_by is None:
                await self._retire(older_id, replaced_by=document.document_id)

    async def _retire(self, document_id: str, *, replaced_by: str) -> None:
        await self._vector_index.delete_document(self.collection, document_id)
        report = await self._jobs.get(document_id)
        await self._jobs.update(document_id, report.state, superseded_by=replaced_by)
        logger.info(
            "superseded document removed from index",
            document_id=document_id,
            replaced_by=replaced_by,
        )

    @staticmethod
    def _build_point(
        document: StoredDocument, chunk: DocumentChunk, vector: list[float]
    ) -> IndexedPoint:
        return IndexedPoint(
            id=str(uuid.uuid4()),
            vector=vector,
            payload={
                "document_id": document.document_id,
                "filename": document.filename,
                "content": chunk.text,
                "chunk_index": chunk.chunk_index,
                "indexed_at": datetime.now(timezone.utc).isoformat(),
                "metadata": chunk.metadata,
            },
        )


def _log_retry(operation: str) -> Callable[[RetryCallState], None]:
    def _before_sleep(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "retrying after provider error",
            operation=operation,
            attempt=retry_state.attempt_number,
            error=str(error),
        )

    return _before_sleep
