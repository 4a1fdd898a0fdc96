import pytest

from knowledge_search.config import ChunkingConfig, IngestConfig
from knowledge_search.errors import DimensionMismatch, ProviderUnavailable, RateLimited
from knowledge_search.ingest.chunker import BoundaryChunker
from knowledge_search.ingest.embedder import HashingEmbedder
from knowledge_search.ingest.jobs import InMemoryJobStore
from knowledge_search.ingest.normalizer import Normalizer
from knowledge_search.ingest.pipeline import IngestionPipeline
from knowledge_search.ingest.storage import LocalFileStorage
from knowledge_search.retrieval.vector_store import InMemoryVectorIndex
from knowledge_search.types import IndexedPoint, IngestionState

COLLECTION = "docs"


class RecordingEmbedder(HashingEmbedder):
    def __init__(self, dimension: int = 32, fail_on: dict[str, list[Exception]] | None = None) -> None:
        super().__init__(dimension)
        self.calls: list[list[str]] = []
        self.fail_on = fail_on or {}

    async def embed_many(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        for text in texts:
            errors = self.fail_on.get(text)
            if errors:
                raise errors.pop(0)
        return await super().embed_many(texts)


class RecordingIndex(InMemoryVectorIndex):
    def __init__(self, dimension: int) -> None:
        super().__init__(dimension)
        self.upserts: list[list[IndexedPoint]] = []

    async def upsert(self, collection: str, points: list[IndexedPoint]) -> None:
        self.upserts.append(list(points))
        await super().upsert(collection, points)


def _pipeline(
    tmp_path,
    embedder: HashingEmbedder,
    index: InMemoryVectorIndex,
    *,
    max_chars: int = 1000,
    batch_size: int = 1,
    max_attempts: int = 3,
) -> IngestionPipeline:
    return IngestionPipeline(
        LocalFileStorage(tmp_path / "files"),
        Normalizer(),
        BoundaryChunker(ChunkingConfig(max_chars=max_chars, min_chars=0)),
        embedder,
        index,
        InMemoryJobStore(),
        collection=COLLECTION,
        config=IngestConfig(
            batch_size=batch_size,
            max_attempts=max_attempts,
            backoff_initial_seconds=0.0,
            backoff_max_seconds=0.0,
        ),
    )


FOUR_PARAGRAPHS = "Alpha part one.\n\nBravo part two.\n\nCharlie part three.\n\nDelta part four."


@pytest.mark.asyncio
async def test_hello_world_scenario(tmp_path) -> None:
    embedder = RecordingEmbedder()
    index = RecordingIndex(dimension=embedder.dimension)
    pipeline = _pipeline(tmp_path, embedder, index)

    report = await pipeline.ingest(b"Hello world", "hello.txt", content_type="text/plain")

    assert report.state == IngestionState.FULLY_INDEXED
    assert report.chunk_count == 1
    assert embedder.calls == [["Hello world"]]
    assert len(index.upserts) == 1
    [point] = index.upserts[0]
    assert point.payload["filename"] == "hello.txt"
    assert point.payload["content"] == "Hello world"
    assert point.payload["chunk_index"] == 0
    assert point.payload["document_id"] == report.document_id
    assert "indexed_at" in point.payload
    assert report.point_ids == [point.id]
    assert (tmp_path / "files" / "hello.txt").read_bytes() == b"Hello world"


@pytest.mark.asyncio
async def test_chunks_indexed_in_ordinal_order(tmp_path) -> None:
    embedder = RecordingEmbedder()
    index = RecordingIndex(dimension=embedder.dimension)
    pipeline = _pipeline(tmp_path, embedder, index, max_chars=25)

    report = await pipeline.ingest(FOUR_PARAGRAPHS.encode(), "notes.txt")

    assert report.state == IngestionState.FULLY_INDEXED
    ordinals = [batch[0].payload["chunk_index"] for batch in index.upserts]
    assert ordinals == [0, 1, 2, 3]
    assert report.indexed_chunks == [0, 1, 2, 3]
    assert len(set(report.point_ids)) == 4


@pytest.mark.asyncio
async def test_failure_aborts_remaining_chunks(tmp_path) -> None:
    embedder = RecordingEmbedder(
        fail_on={"Charlie part three.\n\n": [DimensionMismatch(COLLECTION, 32, 3)]}
    )
    index = RecordingIndex(dimension=embedder.dimension)
    pipeline = _pipeline(tmp_path, embedder, index, max_chars=25)

    report = await pipeline.ingest(FOUR_PARAGRAPHS.encode(), "notes.txt")

    assert report.state == IngestionState.FAILED
    assert report.failed_stage == "indexing"
    assert report.indexed_chunks == [0, 1]
    assert report.failed_chunks == [2]
    assert report.not_attempted_chunks == [3]
    assert len(index.upserts) == 2
    assert len(embedder.calls) == 3
    assert report.error


@pytest.mark.asyncio
async def test_provider_errors_are_retried(tmp_path) -> None:
    embedder = RecordingEmbedder(
        fail_on={"Hello world": [RateLimited("slow down"), ProviderUnavailable("blip")]}
    )
    index = RecordingIndex(dimension=embedder.dimension)
    pipeline = _pipeline(tmp_path, embedder, index, max_attempts=3)

    report = await pipeline.ingest(b"Hello world", "hello.txt")

    assert report.state == IngestionState.FULLY_INDEXED
    assert len(embedder.calls) == 3


@pytest.mark.asyncio
async def test_retries_exhausted_reports_failure(tmp_path) -> None:
    embedder = RecordingEmbedder(
        fail_on={"Hello world": [ProviderUnavailable("down"), ProviderUnavailable("down")]}
    )
    index = RecordingIndex(dimension=embedder.dimension)
    pipeline = _pipeline(tmp_path, embedder, index, max_attempts=2)

    report = await pipeline.ingest(b"Hello world", "hello.txt")

    assert report.state == IngestionState.FAILED
    assert report.failed_chunks == [0]
    assert report.indexed_chunks == []
    assert index.upserts == []


@pytest.mark.asyncio
async def test_batched_indexing(tmp_path) -> None:
    embedder = RecordingEmbedder()
    index = RecordingIndex(dimension=embedder.dimension)
    pipeline = _pipeline(tmp_path, embedder, index, max_chars=25, batch_size=3)

    report = await pipeline.ingest(FOUR_PARAGRAPHS.encode(), "notes.txt")

    assert report.state == IngestionState.FULLY_INDEXED
    assert [len(batch) for batch in index.upserts] == [3, 1]
    assert [len(call) for call in embedder.calls] == [3, 1]


@pytest.mark.asyncio
async def test_empty_document_is_fully_indexed_with_no_chunks(tmp_path) -> None:
    embedder = RecordingEmbedder()
    index = RecordingIndex(dimension=embedder.dimension)
    pipeline = _pipeline(tmp_path, embedder, index)

    report = await pipeline.ingest(b"   \n", "blank.txt")

    assert report.state == IngestionState.FULLY_INDEXED
    assert report.chunk_count == 0
    assert embedder.calls == []


@pytest.mark.asyncio
async def test_normalization_failure_reports_stage(tmp_path) -> None:
    embedder = RecordingEmbedder()
    index = RecordingIndex(dimension=embedder.dimension)
    pipeline = _pipeline(tmp_path, embedder, index)

    report = await pipeline.ingest(b"{broken", "data.json")

    assert report.state == IngestionState.FAILED
    assert report.failed_stage == "normalizing"
    assert index.upserts == []


@pytest.mark.asyncio
async def test_reupload_supersedes_previous_document(tmp_path) -> None:
    embedder = RecordingEmbedder()
    index = RecordingIndex(dimension=embedder.dimension)
    pipeline = _pipeline(tmp_path, embedder, index)

    first = await pipeline.ingest(b"Old quarterly numbers", "report.txt")
    second = await pipeline.ingest(b"New quarterly numbers", "report.txt")

    assert second.state == IngestionState.FULLY_INDEXED
    assert await index.count(COLLECTION) == 1
    assert await index.get(COLLECTION, first.point_ids[0]) is None
    assert await index.get(COLLECTION, second.point_ids[0]) is not None
    assert (await pipeline.status(first.document_id)).superseded_by == second.document_id
    assert (tmp_path / "files" / "report.txt").read_bytes() == b"New quarterly numbers"
    # Re-ingestion never reuses point ids.
    assert first.point_ids[0] != second.point_ids[0]


@pytest.mark.asyncio
async def test_delete_removes_points_and_status(tmp_path) -> None:
    embedder = RecordingEmbedder()
    index = RecordingIndex(dimension=embedder.dimension)
    pipeline = _pipeline(tmp_path, embedder, index)

    report = await pipeline.ingest(b"Hello world", "hello.txt")
    await pipeline.delete(report.document_id)

    assert await index.count(COLLECTION) == 0
    assert not (tmp_path / "files" / "hello.txt").exists()
    with pytest.raises(KeyError):
        await pipeline.status(report.document_id)


@pytest.mark.asyncio
async def test_successful_reupload_clears_points_left_by_failed_upload(tmp_path) -> None:
    embedder = RecordingEmbedder()
    index = RecordingIndex(dimension=embedder.dimension)
    pipeline = _pipeline(tmp_path, embedder, index, max_chars=25)

    first = await pipeline.ingest(FOUR_PARAGRAPHS.encode(), "notes.txt")
    embedder.fail_on["Charlie part three.\n\n"] = [DimensionMismatch(COLLECTION, 32, 3)]
    failed = await pipeline.ingest(FOUR_PARAGRAPHS.encode(), "notes.txt")
    assert failed.state == IngestionState.FAILED
    assert failed.indexed_chunks == [0, 1]
    assert await index.count(COLLECTION) == 6

    third = await pipeline.ingest(FOUR_PARAGRAPHS.encode(), "notes.txt")

    assert third.state == IngestionState.FULLY_INDEXED
    assert await index.count(COLLECTION) == 4
    assert set(third.point_ids) == {point.id for batch in index.upserts[-4:] for point in batch}
    assert (await pipeline.status(first.document_id)).superseded_by == third.document_id
    assert (await pipeline.status(failed.document_id)).superseded_by == third.document_id


@pytest.mark.asyncio
async def test_upload_finishing_after_newer_one_removes_its_own_points(tmp_path) -> None:
    embedder = RecordingEmbedder()
    index = RecordingIndex(dimension=embedder.dimension)
    pipeline = _pipeline(tmp_path, embedder, index)

    older = await pipeline.register(b"Old quarterly numbers", "report.txt")
    newer = await pipeline.register(b"New quarterly numbers", "report.txt")
    newer_report = await pipeline.run(newer)
    older_report = await pipeline.run(older)

    assert older_report.superseded_by == newer.document_id
    assert await index.count(COLLECTION) == 1
    assert await index.get(COLLECTION, newer_report.point_ids[0]) is not None


@pytest.mark.asyncio
async def test_delete_keeps_stored_file_of_newer_upload(tmp_path) -> None:
    embedder = RecordingEmbedder(fail_on={"Second draft": [DimensionMismatch(COLLECTION, 32, 3)]})
    index = RecordingIndex(dimension=embedder.dimension)
    pipeline = _pipeline(tmp_path, embedder, index)

    first = await pipeline.ingest(b"First draft", "draft.txt")
    second = await pipeline.ingest(b"Second draft", "draft.txt")
    assert second.state == IngestionState.FAILED

    await pipeline.delete(first.document_id)

    assert (tmp_path / "files" / "draft.txt").read_bytes() == b"Second draft"
    await pipeline.delete(second.document_id)
    assert not (tmp_path / "files" / "draft.txt").exists()
