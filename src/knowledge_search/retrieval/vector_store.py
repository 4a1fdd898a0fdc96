"""Vector index interfaces and concrete adapters."""

from __future__ import annotations

import re
from dataclasses import replace
from math import sqrt
from typing import Any, Protocol

import httpx
import structlog

from knowledge_search.errors import (
    CollectionNotFound,
    DimensionMismatch,
    ProviderUnavailable,
    RateLimited,
)
from knowledge_search.types import IndexedPoint, RouteHit

logger = structlog.get_logger(__name__)

_TERM_PATTERN = re.compile(r"\w+", flags=re.UNICODE)


class VectorIndex(Protocol):
    """Minimal vector index contract for ingestion and retrieval."""

    dimension: int

    async def upsert(self, collection: str, points: list[IndexedPoint]) -> None:
        """Insert or overwrite points by id. Creates the collection if missing."""

    async def search(
        self, collection: str, vector: list[float], top_k: int
    ) -> list[RouteHit]:
        """Nearest neighbours by cosine similarity, best first."""

    async def text_search(self, collection: str, query: str, top_k: int) -> list[RouteHit]:
        """Lexical search over stored chunk content, best first."""

    async def delete_document(self, collection: str, document_id: str) -> None:
        """Remove every point whose payload belongs to `document_id`."""


class InMemoryVectorIndex:
    """Deterministic vector index used for tests and local prototyping."""

    def __init__(self, dimension: int) -> None:
        self.dimension = dimension
        self._collections: dict[str, dict[str, IndexedPoint]] = {}

    async def upsert(self, collection: str, points: list[IndexedPoint]) -> None:
        for point in points:
            _check_dimension(collection, self.dimension, point.vector)
        store = self._collections.setdefault(collection, {})
        for point in points:
            store[point.id] = replace(point, vector=list(point.vector), payload=dict(point.payload))

    async def search(
        self, collection: str, vector: list[float], top_k: int
    ) -> list[RouteHit]:
        store = self._require(collection)
        _check_dimension(collection, self.dimension, vector)
        ranked = sorted(
            (
                RouteHit(
                    id=point.id,
                    score=_cosine_similarity(vector, point.vector),
                    payload=dict(point.payload),
                    source="vector",
                )
                for point in store.values()
            ),
            key=lambda hit: (-hit.score, hit.id),
        )
        return ranked[:top_k]

    async def text_search(self, collection: str, query: str, top_k: int) -> list[RouteHit]:
        store = self._require(collection)
        terms = query_terms(query)
        hits = []
        for point in store.values():
            score = lexical_score(terms, str(point.payload.get("content", "")))
            if score > 0:
                hits.append(
                    RouteHit(id=point.id, score=score, payload=dict(point.payload), source="text")
                )
        hits.sort(key=lambda hit: (-hit.score, hit.id))
        return hits[:top_k]

    async def delete_document(self, collection: str, document_id: str) -> None:
        store = self._collections.get(collection)
        if not store:
            return
        for point_id in [
            pid for pid, point in store.items() if point.payload.get("document_id") == document_id
        ]:
            del store[point_id]

    async def get(self, collection: str, point_id: str) -> IndexedPoint | None:
        return self._collections.get(collection, {}).get(point_id)

    async def count(self, collection: str) -> int:
        return len(self._collections.get(collection, {}))

    def _require(self, collection: str) -> dict[str, IndexedPoint]:
        store = self._collections.get(collection)
        if store is None:
            raise CollectionNotFound(collection)
        return store


class QdrantVectorIndex:
    """Qdrant adapter over its REST API via `httpx.AsyncClient`.

    Collections are created with cosine distance plus payload indexes on
    `content` (full-text, used by `text_search`) and `document_id`.
    """

    def __init__(
        self,
        base_url: str,
        *,
        dimension: int,
        api_key: str | None = None,
        timeout: float = 30.0,
        text_page_size: int = 256,
        text_scan_limit: int = 4096,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.dimension = dimension
        self.base_url = base_url
        self._api_key = api_key
        self._timeout = timeout
        self._text_page_size = text_page_size
        self._text_scan_limit = text_scan_limit
        self._client = client

    async def boot(self) -> None:
        if self._client is not None:
            return
        headers = {"api-key": self._api_key} if self._api_key else {}
        self._client = httpx.AsyncClient(
            base_url=self.base_url, headers=headers, timeout=self._timeout
        )
        logger.info("qdrant client initialised", base_url=self.base_url)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def create_collection(self, collection: str) -> None:
        body = {"vectors": {"size": self.dimension, "distance": "Cosine"}}
        response = await self._request("PUT", f"/collections/{collection}", json=body)
        if response.status_code == 409:
            logger.info("qdrant collection already exists", collection=collection)
        else:
            _raise_for_status(response, f"create collection {collection!r}")
        for field_name, schema in (
            ("content", {"type": "text", "tokenizer": "word", "lowercase": True}),
            ("document_id", "keyword"),
        ):
            response = await self._request(
                "PUT",
                f"/collections/{collection}/index",
                params={"wait": "true"},
                json={"field_name": field_name, "field_schema": schema},
            )
            _raise_for_status(response, f"create payload index {field_name!r}")
        logger.info("qdrant collection created", collection=collection, dimension=self.dimension)

    async def upsert(self, collection: str, points: list[IndexedPoint]) -> None:
        for point in points:
            _check_dimension(collection, self.dimension, point.vector)
        body = {
            "points": [
                {"id": point.id, "vector": point.vector, "payload": point.payload}
                for point in points
            ]
        }
        path = f"/collections/{collection}/points"
        response = await self._request("PUT", path, params={"wait": "true"}, json=body)
        if response.status_code == 404:
            await self.create_collection(collection)
            response = await self._request("PUT", path, params={"wait": "true"}, json=body)
        _raise_for_status(response, f"upsert into {collection!r}")

    async def search(
        self, collection: str, vector: list[float], top_k: int
    ) -> list[RouteHit]:
        _check_dimension(collection, self.dimension, vector)
        body = {"vector": vector, "limit": top_k, "with_payload": True}
        response = await self._request(
            "POST", f"/collections/{collection}/points/search", json=body
        )
        if response.status_code == 404:
            raise CollectionNotFound(collection)
        _raise_for_status(response, f"search in {collection!r}")
        return [
            RouteHit(
                id=str(item["id"]),
                score=float(item["score"]),
                payload=item.get("payload") or {},
                source="vector",
            )
            for item in response.json().get("result", [])
        ]

    async def text_search(self, collection: str, query: str, top_k: int) -> list[RouteHit]:
        """Score points matching any query term, paging through the scroll API.

        Qdrant scrolls in id order, not by relevance, so every matching point
        is scored client-side. At most `text_scan_limit` matching points are
        scanned per query; past that the remaining matches are ignored and a
        warning is logged.
        """

        terms = query_terms(query)
        if not terms:
            return []
        match_filter = {
            "should": [{"key": "content", "match": {"text": term}} for term in sorted(terms)]
        }

        hits = []
        scanned = 0
        offset: Any = None
        while scanned < self._text_scan_limit:
            body: dict[str, Any] = {
                "filter": match_filter,
                "limit": min(self._text_page_size, self._text_scan_limit - scanned),
                "with_payload": True,
                "with_vector": False,
            }
            if offset is not None:
                body["offset"] = offset
            response = await self._request(
                "POST", f"/collections/{collection}/points/scroll", json=body
            )
            if response.status_code == 404:
                raise CollectionNotFound(collection)
            _raise_for_status(response, f"text search in {collection!r}")

            page = response.json().get("result", {})
            points = page.get("points", [])
            scanned += len(points)
            for item in points:
                payload = item.get("payload") or {}
                score = lexical_score(terms, str(payload.get("content", "")))
                if score > 0:
                    hits.append(
                        RouteHit(id=str(item["id"]), score=score, payload=payload, source="text")
                    )
            offset = page.get("next_page_offset")
            if offset is None or not points:
                break
        else:
            logger.warning(
                "text search scan limit reached",
                collection=collection,
                scan_limit=self._text_scan_limit,
            )

        hits.sort(key=lambda hit: (-hit.score, hit.id))
        return hits[:top_k]

    async def delete_document(self, collection: str, document_id: str) -> None:
        body = {"filter": {"must": [{"key": "document_id", "match": {"value": document_id}}]}}
        response = await self._request(
            "POST",
            f"/collections/{collection}/points/delete",
            params={"wait": "true"},
            json=body,
        )
        if response.status_code == 404:
            return
        _raise_for_status(response, f"delete document {document_id!r}")

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        if self._client is None:
            raise RuntimeError("HTTP client not initialised. Call boot() before making requests.")
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TransportError as exc:
            raise ProviderUnavailable(f"Qdrant unreachable: {exc}") from exc
        if response.status_code == 429:
            raise RateLimited(f"Qdrant rate limited {method} {url}")
        if response.status_code >= 500:
            raise ProviderUnavailable(
                f"Qdrant {method} {url} failed with status {response.status_code}"
            )
        return response


def query_terms(text: str) -> set[str]:
    return {term.casefold() for term in _TERM_PATTERN.findall(text)}


def lexical_score(terms: set[str], text: str) -> float:
    """Fraction of query terms present in `text`."""
    if not terms:
        return 0.0
    return len(terms & query_terms(text)) / len(terms)


def _raise_for_status(response: httpx.Response, action: str) -> None:
    if response.status_code in (200, 201, 202):
        return
    raise RuntimeError(f"Qdrant {action} failed with status {response.status_code}: {response.text}")


def _check_dimension(collection: str, expected: int, vector: list[float]) -> None:
    if len(vector) != expected:
        raise DimensionMismatch(collection, expected, len(vector))


def _cosine_similarity(a: list[float], b: list[float]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    numerator = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = sqrt(sum(x * x for x in a))
    norm_b = sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return numerator / (norm_a * norm_b)
