import pytest

from knowledge_search.config import ChunkingConfig
from knowledge_search.ingest.chunker import BoundaryChunker
from knowledge_search.types import ParsedDocument


def _make_long_text(paragraphs: int = 6) -> str:
    sentence = "Data governance requires strict access control and encryption."
    paragraph = " ".join([sentence] * 8)
    return "\n\n".join(f"Section {i}. {paragraph}" for i in range(paragraphs))


def test_empty_and_whitespace_text_yield_no_chunks() -> None:
    chunker = BoundaryChunker()

    assert chunker.split("") == []
    assert chunker.split("  \n\t \r\n ") == []


def test_short_text_is_single_normalized_chunk() -> None:
    chunker = BoundaryChunker()

    assert chunker.split("Hello world") == ["Hello world"]
    assert chunker.split("  Hello\r\nworld \n") == ["Hello\nworld"]


def test_chunks_are_bounded_and_lossless() -> None:
    config = ChunkingConfig(max_chars=300, min_chars=50)
    chunker = BoundaryChunker(config)
    text = "  " + _make_long_text().replace("\n\n", "\r\n\r\n") + "\n"

    chunks = chunker.split(text)

    assert len(chunks) > 1
    assert all(len(chunk) <= 300 for chunk in chunks)
    assert "".join(chunks) == chunker.normalize(text)


def test_split_is_deterministic() -> None:
    chunker = BoundaryChunker(ChunkingConfig(max_chars=120, min_chars=10))
    text = _make_long_text(3)

    assert chunker.split(text) == chunker.split(text)


def test_prefers_paragraph_boundaries() -> None:
    chunker = BoundaryChunker(ChunkingConfig(max_chars=60, min_chars=5))
    text = "First paragraph is here.\n\nSecond paragraph. It is longer than the first."

    chunks = chunker.split(text)

    assert chunks[0] == "First paragraph is here.\n\n"
    assert chunks[1] == "Second paragraph. It is longer than the first."


def test_falls_back_to_sentence_then_whitespace() -> None:
    chunker = BoundaryChunker(ChunkingConfig(max_chars=40, min_chars=5))
    text = "One short sentence. Another sentence that runs past the limit"

    chunks = chunker.split(text)

    assert chunks[0] == "One short sentence. "
    assert all(len(chunk) <= 40 for chunk in chunks)
    # Remaining text has no sentence end, so it is cut on whitespace.
    assert chunks[1].endswith(" ")
    assert "".join(chunks) == text


def test_hard_cut_only_when_no_boundary_exists() -> None:
    chunker = BoundaryChunker(ChunkingConfig(max_chars=20, min_chars=0))
    text = "x" * 45

    chunks = chunker.split(text)

    assert chunks == ["x" * 20, "x" * 20, "x" * 5]


def test_min_chars_skips_early_boundaries() -> None:
    chunker = BoundaryChunker(ChunkingConfig(max_chars=40, min_chars=20))
    text = "Tiny.\n\nThis second paragraph keeps going on and on"

    chunks = chunker.split(text)

    assert len(chunks[0]) >= 20
    assert "".join(chunks) == text


def test_chunk_document_ordinals_are_contiguous() -> None:
    chunker = BoundaryChunker(ChunkingConfig(max_chars=200, min_chars=20))
    doc = ParsedDocument(
        document_id="doc-1",
        filename="policy.md",
        text=_make_long_text(),
        metadata={"format": "markdown"},
    )

    chunks = chunker.chunk_document(doc)

    assert [chunk.chunk_index for chunk in chunks] == list(range(len(chunks)))
    assert all(chunk.document_id == "doc-1" for chunk in chunks)
    assert chunks[0].metadata["char_start"] == 0
    for previous, current in zip(chunks, chunks[1:]):
        assert previous.metadata["char_end"] == current.metadata["char_start"]


def test_min_chars_must_be_below_max_chars() -> None:
    with pytest.raises(ValueError):
        ChunkingConfig(max_chars=100, min_chars=100)


def test_min_chars_never_forces_a_cut_inside_a_word() -> None:
    chunker = BoundaryChunker(ChunkingConfig(max_chars=1000, min_chars=200))
    text = "a" * 150 + " " + "b" * 900 + " " + "c" * 50

    chunks = chunker.split(text)

    assert [len(chunk) for chunk in chunks] == [151, 951]
    assert chunks[0] == "a" * 150 + " "
    assert chunks[1].startswith("b" * 900)
    assert "".join(chunks) == text
