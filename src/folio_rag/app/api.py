# folio_rag/app/api.py
from __future__ import annotations

import logging
import os

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from folio_rag.app.container import build_container
from folio_rag.common.errors import (
    EmbeddingError,
    FolioError,
    GenerationError,
    InputValidationError,
    StoreUnavailableError,
)
from folio_rag.common.schemas import SourceDocument
from folio_rag.config import GlobalConfig

app = FastAPI(title="Folio RAG API", version="0.1.0")
logger = logging.getLogger("folio_rag.api")


class QueryRequest(BaseModel):
    question: str


class SourceCitation(BaseModel):
    title: str
    chunk_index: int
    similarity_percent: int
    preview: str


class QueryResponse(BaseModel):
    answer: str
    sources: list[SourceCitation] = Field(default_factory=list)
    confidence: int = 0
    chunks_found: int = 0


class IngestSource(BaseModel):
    title: str = Field(min_length=1)
    text: str


class IngestRequest(BaseModel):
    sources: list[IngestSource]
    replace_existing: bool = True


def _error_status(exc: FolioError) -> int:
    if isinstance(exc, InputValidationError):
        return 400
    if isinstance(exc, (EmbeddingError, StoreUnavailableError, GenerationError)):
        return 503
    return 500


def _raise_http(exc: FolioError, route: str):
    status = _error_status(exc)
    if status >= 500:
        logger.error("%s failed: %s: %s", route, type(exc).__name__, exc)
    raise HTTPException(
        status_code=status,
        detail={"error": type(exc).__name__, "message": str(exc)},
    ) from exc


@app.on_event("startup")
def startup():
    # Use env var so deployments can pass the config location
    cfg_path = os.environ.get("FOLIO_CONFIG", "config/config.yaml")
    cfg = GlobalConfig.load(cfg_path)
    container = build_container(cfg)
    container.warm_up()
    app.state.container = container
    logger.info("Container ready (config=%s)", cfg_path)


@app.get("/health")
def health():
    try:
        chunks = app.state.container.vector_store.count()
    except StoreUnavailableError as e:
        logger.warning("Health check: vector store unavailable: %s", e)
        raise HTTPException(status_code=503, detail={"status": "unavailable", "message": str(e)}) from e
    return {"status": "ok", "chunks_loaded": chunks}


@app.get("/v1/stats")
def stats():
    try:
        return app.state.container.vector_store.stats().to_dict()
    except FolioError as e:
        _raise_http(e, "/v1/stats")


@app.post("/v1/query", response_model=QueryResponse)
def query(req: QueryRequest):
    try:
        result = app.state.container.pipeline.run(req.question)
    except FolioError as e:
        _raise_http(e, "/v1/query")
    except Exception as e:
        logger.exception("Error while handling /v1/query")
        raise HTTPException(
            status_code=500,
            detail={"error": type(e).__name__, "message": str(e)},
        ) from e
    return QueryResponse(**result.to_dict())


@app.post("/v1/ingest")
def ingest(req: IngestRequest):
    sources = [SourceDocument(title=s.title, raw_text=s.text) for s in req.sources]
    try:
        report = app.state.container.ingestion_pipeline.ingest(
            sources, replace_existing=req.replace_existing
        )
    except FolioError as e:
        _raise_http(e, "/v1/ingest")
    return report.to_dict()
