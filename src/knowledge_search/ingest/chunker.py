"""Boundary-aware character chunking implementation."""

from __future__ import annotations

import re

from knowledge_search.config import ChunkingConfig
from knowledge_search.types import DocumentChunk, ParsedDocument

_NEWLINES = re.compile(r"\r\n?")

# Ordered from most to least preferred cut point. A cut is placed at the end
# of a match so separators stay attached to the preceding chunk.
_BOUNDARY_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\n[ \t]*\n\s*"),
    re.compile(r"\n"),
    re.compile(r"[.!?。！？][\"')\]]*\s+"),
    re.compile(r"\s+"),
)


class BoundaryChunker:
    """Splits normalized text into bounded chunks on natural boundaries.

    Design notes:
    1. Normalization is the only lossy step.
       Line endings are converted to `\\n` and surrounding whitespace of the
       whole text is stripped. Everything after that is lossless: chunks are
       contiguous slices, so `"".join(chunker.split(text))` equals
       `chunker.normalize(text)` character for character.

    2. Greedy packing with boundary preference.
       Each chunk takes as much text as fits in `max_chars`. The cut is placed
       at the last paragraph break inside that window; if there is none (or it
       would leave a chunk shorter than `min_chars`) the last line break is
       tried, then the last sentence end, then the last whitespace run.

    3. `min_chars` yields to whole units.
       If no boundary past `min_chars` exists in the window, the last boundary
       anywhere in it is used instead, so a short chunk is preferred over
       splitting a word.

    4. Hard truncation only as a last resort.
       When a single unit (e.g. one very long token) has no boundary inside the
       window, the chunk is cut at exactly `max_chars`.
    """

    def __init__(self, config: ChunkingConfig | None = None) -> None:
        self.config = config or ChunkingConfig()

    @staticmethod
    def normalize(text: str) -> str:
        return _NEWLINES.sub("\n", text).strip()

    def split(self, text: str) -> list[str]:
        return [text[start:end] for start, end in self._spans(self.normalize(text))]

    def chunk_document(self, document: ParsedDocument) -> list[DocumentChunk]:
        """Chunk a parsed document into ordered, contiguous chunks.

        Ordinals start at 0 and follow text order; character offsets into the
        normalized text are kept in each chunk's metadata.
        """

        text = self.normalize(document.text)
        return [
            DocumentChunk(
                document_id=document.document_id,
                chunk_index=index,
                text=text[start:end],
                metadata={**document.metadata, "char_start": start, "char_end": end},
            )
            for index, (start, end) in enumerate(self._spans(text))
        ]

    def _spans(self, text: str) -> list[tuple[int, int]]:
        if not text:
            return []

        spans: list[tuple[int, int]] = []
        start = 0
        while len(text) - start > self.config.max_chars:
            cut = self._find_cut(text, start)
            spans.append((start, cut))
            start = cut
        spans.append((start, len(text)))
        return spans

    def _find_cut(self, text: str, start: int) -> int:
        window = text[start : start + self.config.max_chars]
        for floor in (max(1, self.config.min_chars), 1):
            for pattern in _BOUNDARY_PATTERNS:
                cut = 0
                for match in pattern.finditer(window):
                    if match.end() >= floor:
                        cut = match.end()
                if cut:
                    return start + cut
        return start + len(window)
