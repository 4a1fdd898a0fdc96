"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field

Route = Literal["vector", "text"]


@dataclass(slots=True)
class StoredDocument:
    """A raw upload after it has been registered for ingestion."""

    document_id: str
    filename: str
    content: bytes
    content_type: str | None
    uploaded_at: datetime
    storage_path: str | None = None


@dataclass(slots=True)
class ParsedDocument:
    """Normalized text of a document before chunking."""

    document_id: str
    filename: str
    text: str
    metadata: dict[str, Any]


@dataclass(slots=True)
class DocumentChunk:
    """A bounded slice of a document's normalized text."""

    document_id: str
    chunk_index: int
    text: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class IndexedPoint:
    """The unit stored in the vector index."""

    id: str
    vector: list[float]
    payload: dict[str, Any]


@dataclass(slots=True)
class RouteHit:
    """A single result from one retrieval route, before fusion."""

    id: str
    score: float
    payload: dict[str, Any]
    source: Route


class SearchResult(BaseModel):
    """A fused hybrid-search result entry."""

    id: str
    score: float
    sources: list[Route]
    payload: dict[str, Any]


class SearchResultSet(BaseModel):
    """Ranked hybrid-search output, cached by normalized query text."""

    query: str
    results: list[SearchResult] = Field(default_factory=list)
    partial: bool = False
    failed_routes: list[Route] = Field(default_factory=list)


class IngestionState(str, Enum):
    UPLOADED = "uploaded"
    STORED = "stored"
    NORMALIZED = "normalized"
    CHUNKED = "chunked"
    PARTIALLY_INDEXED = "partially_indexed"
    FULLY_INDEXED = "fully_indexed"
    FAILED = "failed"


class IngestionReport(BaseModel):
    """Queryable status of one document's ingestion."""

    document_id: str
    filename: str
    state: IngestionState = IngestionState.UPLOADED
    failed_stage: str | None = None
    error: str | None = None
    chunk_count: int = 0
    indexed_chunks: list[int] = Field(default_factory=list)
    failed_chunks: list[int] = Field(default_factory=list)
    not_attempted_chunks: list[int] = Field(default_factory=list)
    point_ids: list[str] = Field(default_factory=list)
    superseded_by: str | None = None
    created_at: datetime
    updated_at: datetime
