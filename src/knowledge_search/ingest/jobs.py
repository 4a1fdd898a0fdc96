"""Ingestion status records, queryable while background ingestion runs."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from knowledge_search.types import IngestionReport, IngestionState


class InMemoryJobStore:
    """Keeps one `IngestionReport` per document id.

    Reads return copies.
    """

    def __init__(self) -> None:
        self._reports: dict[str, IngestionReport] = {}
        self._by_filename: dict[str, list[str]] = {}

    async def create(self, document_id: str, filename: str) -> IngestionReport:
        if document_id in self._reports:
            raise ValueError(f"Job already registered: {document_id}")
        now = datetime.now(timezone.utc)
        report = IngestionReport(
            document_id=document_id,
            filename=filename,
            created_at=now,
            updated_at=now,
        )
        self._reports[document_id] = report
        self._by_filename.setdefault(filename, []).append(document_id)
        return report.model_copy(deep=True)

    async def update(
        self, document_id: str, state: IngestionState, **changes: Any
    ) -> IngestionReport:
        updated = self._require(document_id).model_copy(
            update={**changes, "state": state, "updated_at": datetime.now(timezone.utc)},
            deep=True,
        )
        self._reports[document_id] = updated
        return updated.model_copy(deep=True)

    async def get(self, document_id: str) -> IngestionReport:
        return self._require(document_id).model_copy(deep=True)

    async def documents_for(self, filename: str) -> list[str]:
        """Ids of every document registered under `filename`, oldest first."""
        return list(self._by_filename.get(filename, []))

    async def delete(self, document_id: str) -> IngestionReport:
        report = self._reports.pop(document_id, None)
        if report is None:
            raise KeyError(f"Document not found: {document_id}")
        siblings = self._by_filename[report.filename]
        siblings.remove(document_id)
        if not siblings:
            del self._by_filename[report.filename]
        return report

    def _require(self, document_id: str) -> IngestionReport:
        report = self._reports.get(document_id)
        if report is None:
            raise KeyError(f"Document not found: {document_id}")
        return report
