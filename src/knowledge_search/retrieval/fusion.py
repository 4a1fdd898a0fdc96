"""Score fusion for vector + keyword retrieval results."""

from __future__ import annotations

from knowledge_search.config import RetrievalConfig
from knowledge_search.types import Route, RouteHit, SearchResult

_ROUTE_ORDER: tuple[Route, ...] = ("vector", "text")


class FusionLayer:
    """Merges route outputs into one ranked, de-duplicated list."""

    def __init__(self, config: RetrievalConfig | None = None) -> None:
        self.config = config or RetrievalConfig()

    def fuse(
        self,
        route_results: dict[Route, list[RouteHit]],
        *,
        top_k: int | None = None,
    ) -> list[SearchResult]:
        """Fuse results from the vector and text routes.

        Fusion process:
        1. Min-max normalize scores per route to [0, 1]; a route whose hits all
           share one score maps them to 1.0.
           Raw scores from different routes are never compared directly.
        2. Combined score = vector_weight * vector_norm + keyword_weight * text_norm,
           where a route that did not surface the point contributes 0.
        3. Points surfaced by both routes appear once, carrying both sources.
        4. Ties break by number of contributing routes (more first), then by
           vector before text, then by id ascending.
        """

        weights: dict[Route, float] = {
            "vector": self.config.vector_weight,
            "text": self.config.keyword_weight,
        }
        combined: dict[str, float] = {}
        sources: dict[str, list[Route]] = {}
        payloads: dict[str, dict] = {}

        for route in _ROUTE_ORDER:
            for hit_id, score, payload in self._normalize(route_results.get(route, [])):
                combined[hit_id] = combined.get(hit_id, 0.0) + weights[route] * score
                sources.setdefault(hit_id, []).append(route)
                payloads.setdefault(hit_id, payload)

        ranked = sorted(
            combined,
            key=lambda hit_id: (
                -combined[hit_id],
                -len(sources[hit_id]),
                _ROUTE_ORDER.index(sources[hit_id][0]),
                hit_id,
            ),
        )
        limit = top_k or self.config.final_k
        return [
            SearchResult(
                id=hit_id,
                score=combined[hit_id],
                sources=sources[hit_id],
                payload=payloads[hit_id],
            )
            for hit_id in ranked[:limit]
        ]

    @staticmethod
    def _normalize(hits: list[RouteHit]) -> list[tuple[str, float, dict]]:
        # Keep each id's best hit if a route repeats it.
        best: dict[str, RouteHit] = {}
        for hit in hits:
            if hit.id not in best or hit.score > best[hit.id].score:
                best[hit.id] = hit
        if not best:
            return []

        high = max(hit.score for hit in best.values())
        low = min(hit.score for hit in best.values())
        if high == low:
            return [(hit.id, 1.0, hit.payload) for hit in best.values()]
        return [
            (hit.id, (hit.score - low) / (high - low), hit.payload) for hit in best.values()
        ]
