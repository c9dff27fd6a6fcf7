"""HTTP invocation of the ingestion pipeline."""

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, BaseModel, Field

from . import __version__
from .config import Config
from .errors import IngestionError
from .ingest import IngestionOrchestrator

logger = logging.getLogger(__name__)


class IngestRequest(BaseModel):
    document_id: str = Field(..., min_length=1, validation_alias=AliasChoices("documentId", "pdfId"))
    force: bool = False


class IngestResponse(BaseModel):
    cardsCreated: int
    message: str


def create_app(orchestrator: Optional[IngestionOrchestrator] = None, config: Optional[Config] = None) -> FastAPI:
    """Create the API around an orchestrator (built from ``config`` if not given)."""
    app = FastAPI(
        title="pdfcards",
        description="Turns uploaded PDFs into ordered reading cards",
        version=__version__,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["POST", "GET", "OPTIONS"],
        allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
    )
    app.state.orchestrator = orchestrator or IngestionOrchestrator.from_config(config or Config())

    @app.exception_handler(IngestionError)
    async def ingestion_error_handler(request: Request, exc: IngestionError):
        return JSONResponse(status_code=exc.http_status, content=exc.to_payload())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"error": "PDF ID is required"})

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.url.path}: {exc}")
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    @app.get("/health")
    def health():
        return {"status": "ok", "version": __version__}

    @app.post("/ingest", response_model=IngestResponse)
    def ingest(body: IngestRequest):
        # Sync handler: FastAPI runs it in a worker thread
        result = app.state.orchestrator.ingest(body.document_id, force=body.force)
        return result.to_payload()

    return app
