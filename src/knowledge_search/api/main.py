"""FastAPI entrypoint for upload/search/status endpoints."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any

from fastapi import BackgroundTasks, FastAPI, File, HTTPException, Query, Request, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from knowledge_search.api.container import Container, build_container
from knowledge_search.errors import ProviderUnavailable, ValidationError
from knowledge_search.obs.logging import configure_logging


class SearchRequest(BaseModel):
    query: str


def create_app(container: Container | None = None) -> FastAPI:
    container = container or build_container()
    configure_logging(container.settings.log_level, container.settings.log_format)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        await container.start()
        try:
            yield
        finally:
            await container.stop()

    app = FastAPI(title="Knowledge Search", version="0.1.0", lifespan=lifespan)
    app.state.container = container

    @app.exception_handler(ValidationError)
    async def _validation_error(_: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": str(exc)})

    @app.exception_handler(ProviderUnavailable)
    async def _provider_unavailable(_: Request, exc: ProviderUnavailable) -> JSONResponse:
        return JSONResponse(status_code=503, content={"error": str(exc)})

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "vector_backend": container.settings.vector_backend,
            "cache_backend": container.settings.cache_backend,
            "embedding_backend": container.settings.embedding_backend,
            "collection": container.settings.collection,
        }

    @app.post("/api/search")
    async def search(request: SearchRequest) -> dict[str, Any]:
        result = await container.search.hybrid_search(request.query)
        return result.model_dump(mode="json")

    @app.post("/api/files/upload")
    async def upload(
        background_tasks: BackgroundTasks,
        file: UploadFile | None = File(default=None),
    ) -> Any:
        if file is None or not file.filename:
            return JSONResponse(status_code=400, content={"error": "No file uploaded"})

        content = await file.read()
        document = await container.pipeline.register(
            content, file.filename, content_type=file.content_type
        )
        background_tasks.add_task(container.pipeline.run, document)
        return {
            "message": "File uploaded and processing started",
            "document_id": document.document_id,
            "status_url": f"/api/files/{document.document_id}",
        }

    @app.get("/api/files/{document_id}")
    async def file_status(document_id: str) -> dict[str, Any]:
        try:
            report = await container.pipeline.status(document_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return report.model_dump(mode="json")

    @app.delete("/api/files/{document_id}")
    async def delete_file(document_id: str) -> dict[str, Any]:
        try:
            report = await container.pipeline.delete(document_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return {"deleted": report.document_id, "filename": report.filename}

    @app.get("/metrics")
    async def metrics() -> dict[str, Any]:
        return container.trace_store.summary()

    @app.get("/traces")
    async def traces(limit: int = Query(default=20, ge=1, le=1000)) -> dict[str, Any]:
        return {"items": [asdict(record) for record in container.trace_store.list_recent(limit)]}

    return app


app = create_app()
