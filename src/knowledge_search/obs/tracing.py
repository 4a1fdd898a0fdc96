"""Request tracing and latency accounting for hybrid search."""

from __future__ import annotations

import time
import uuid
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone


@dataclass(slots=True)
class SearchTrace:
    trace_id: str
    timestamp_utc: str
    query: str
    cache_hit: bool
    partial: bool
    result_count: int
    latency_ms: float


class SearchTraceStore:
    """In-memory ring of recent search traces for API-level observability."""

    def __init__(self, max_records: int = 1000) -> None:
        self._records: deque[SearchTrace] = deque(maxlen=max_records)

    def record(
        self,
        *,
        query: str,
        cache_hit: bool,
        partial: bool,
        result_count: int,
        latency_ms: float,
    ) -> SearchTrace:
        trace = SearchTrace(
            trace_id=str(uuid.uuid4()),
            timestamp_utc=datetime.now(timezone.utc).isoformat(),
            query=query,
            cache_hit=cache_hit,
            partial=partial,
            result_count=result_count,
            latency_ms=latency_ms,
        )
        self._records.append(trace)
        return trace

    def list_recent(self, limit: int = 20) -> list[SearchTrace]:
        if limit <= 0:
            return []
        return list(self._records)[-limit:]

    def summary(self) -> dict[str, float | int]:
        """Aggregate core search metrics for dashboard display."""
        records = list(self._records)
        total = len(records)
        if total == 0:
            return {
                "total_requests": 0,
                "avg_latency_ms": 0.0,
                "p95_latency_ms": 0.0,
                "cache_hit_rate": 0.0,
                "partial_results": 0,
            }

        latencies = sorted(record.latency_ms for record in records)
        p95_index = max(0, int((len(latencies) * 0.95) - 1))
        hits = sum(1 for record in records if record.cache_hit)

        return {
            "total_requests": total,
            "avg_latency_ms": sum(latencies) / total,
            "p95_latency_ms": latencies[p95_index],
            "cache_hit_rate": hits / total,
            "partial_results": sum(1 for record in records if record.partial),
        }


class Timer:
    """Simple context timer."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0
