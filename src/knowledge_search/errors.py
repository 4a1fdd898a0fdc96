"""Error taxonomy shared by ingestion, retrieval and the HTTP layer."""

from __future__ import annotations


class KnowledgeSearchError(Exception):
    """Base class for all service errors."""


class ValidationError(KnowledgeSearchError):
    """Bad or missing caller input. Surfaced as 4xx and never retried."""


class ProviderUnavailable(KnowledgeSearchError):
    """An embedding or vector-index backend could not serve the request."""


class RateLimited(ProviderUnavailable):
    """The backend rejected the request because of rate limiting."""


class CollectionNotFound(KnowledgeSearchError):
    def __init__(self, collection: str) -> None:
        super().__init__(f"Collection not found: {collection}")
        self.collection = collection


class DimensionMismatch(KnowledgeSearchError):
    def __init__(self, collection: str, expected: int, actual: int) -> None:
        super().__init__(
            f"Vector dimension {actual} does not match collection "
            f"{collection!r} dimension {expected}"
        )
        self.collection = collection
        self.expected = expected
        self.actual = actual


class CacheUnavailable(KnowledgeSearchError):
    """The cache backend failed. Callers recompute instead of failing."""


class PartialIngestionFailure(KnowledgeSearchError):
    """Some chunks of a document were indexed before a chunk failed.

    Carries the ordinals needed to retry only the remainder.
    """

    def __init__(
        self,
        *,
        indexed: list[int],
        failed: list[int],
        not_attempted: list[int],
        cause: BaseException,
    ) -> None:
        super().__init__(
            f"Indexed {len(indexed)} chunk(s); chunk(s) {failed} failed: {cause}"
        )
        self.indexed = indexed
        self.failed = failed
        self.not_attempted = not_attempted
        self.cause = cause
