"""Tests for the HTTP ingestion endpoint."""

from unittest.mock import Mock, patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from pdfcards.api import create_app
from pdfcards.config import Config
from pdfcards.errors import CompletionError, DocumentBusyError, NotFoundError, PersistenceError
from pdfcards.ingest import SUCCESS_MESSAGE, IngestionOrchestrator, IngestionResult


@pytest.fixture
def orchestrator():
    orchestrator = Mock()
    orchestrator.ingest.return_value = IngestionResult(
        document_id="doc-1", cards_created=4, processed=True, message=SUCCESS_MESSAGE
    )
    return orchestrator


@pytest.fixture
def client(orchestrator):
    return TestClient(create_app(orchestrator=orchestrator))


def test_ingest_success(client, orchestrator):
    response = client.post("/ingest", json={"documentId": "doc-1"})

    assert response.status_code == 200
    assert response.json() == {"cardsCreated": 4, "message": SUCCESS_MESSAGE}
    orchestrator.ingest.assert_called_once_with("doc-1", force=False)


def test_ingest_accepts_pdf_id(client, orchestrator):
    response = client.post("/ingest", json={"pdfId": "doc-1", "force": True})

    assert response.status_code == 200
    orchestrator.ingest.assert_called_once_with("doc-1", force=True)


@pytest.mark.parametrize("body", [{}, {"documentId": ""}])
def test_ingest_requires_id(client, orchestrator, body):
    response = client.post("/ingest", json=body)

    assert response.status_code == 400
    assert response.json() == {"error": "PDF ID is required"}
    orchestrator.ingest.assert_not_called()


@pytest.mark.parametrize("error, status", [
    (NotFoundError("PDF not found"), 404),
    (DocumentBusyError("PDF is already being processed"), 409),
    (CompletionError("AI processing failed (HTTP 500)", status=500), 502),
    (PersistenceError("Failed to save cards"), 500),
])
def test_ingest_errors(client, orchestrator, error, status):
    orchestrator.ingest.side_effect = error

    response = client.post("/ingest", json={"documentId": "doc-1"})

    assert response.status_code == status
    assert response.json() == {"error": error.message}


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_cors_preflight(client):
    response = client.options(
        "/ingest",
        headers={"Origin": "https://app.example.com", "Access-Control-Request-Method": "POST"},
    )

    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "*"


def test_unexpected_error_returns_json(orchestrator):
    orchestrator.ingest.side_effect = RuntimeError("boom")
    client = TestClient(create_app(orchestrator=orchestrator), raise_server_exceptions=False)

    response = client.post("/ingest", json={"documentId": "doc-1"})

    assert response.status_code == 500
    assert response.json() == {"error": "Internal server error"}


def test_database_error_returns_json(store, blobs):
    """A broken database still answers with an error object."""
    orchestrator = IngestionOrchestrator(Config(), store, blobs, completion_client=Mock())
    client = TestClient(create_app(orchestrator=orchestrator), raise_server_exceptions=False)
    error = OperationalError("UPDATE documents", {}, Exception("database is locked"))

    with patch.object(store, "acquire_lease", side_effect=error):
        response = client.post("/ingest", json={"documentId": "doc-1"})

    assert response.status_code == 500
    assert response.headers["content-type"].startswith("application/json")
    assert response.json() == {"error": "Failed to load PDF"}
