"""Tests for the ingestion orchestrator."""

from unittest.mock import Mock, patch

import pytest
from sqlalchemy.exc import OperationalError

from pdfcards.config import Config, EmptyResultPolicy, ImageProvider
from pdfcards.errors import (
    AlreadyProcessedError,
    CompletionError,
    DocumentBusyError,
    ExtractionError,
    IngestionError,
    NotFoundError,
    PersistenceError,
    StorageError,
)
from pdfcards.images import ImageEnricher
from pdfcards.ingest import EMPTY_MESSAGE, SUCCESS_MESSAGE, IngestionOrchestrator
from pdfcards.llm import Completion
from pdfcards.pdf import NO_EXTRACTABLE_TEXT
from pdfcards.store import IngestionStatus
from pdfcards.uploads import upload_pdf

COMPLETION_TEXT = (
    "=== KART 1 ===\nAlice was beginning to get very tired of sitting by her sister.\n"
    "=== KART 2 ===\nSo she was considering in her own mind what to do next.\n"
    "=== KART 3 ===\nThere was nothing so very remarkable in that."
)


@pytest.fixture
def config():
    config = Config()
    config.images.access_key = None
    return config


@pytest.fixture
def completion_client():
    client = Mock()
    client.complete.return_value = Completion(content=COMPLETION_TEXT, model="gpt-4o-mini")
    return client


@pytest.fixture
def orchestrator(config, store, blobs, completion_client):
    return IngestionOrchestrator(config, store, blobs, completion_client=completion_client)


@pytest.fixture
def document(store, blobs, make_pdf):
    data = make_pdf(["Alice was beginning to get very tired.", "Down the rabbit hole."])
    return upload_pdf(store, blobs, "user-1", "Alice.pdf", data, timestamp_ms=1700000000000)


def test_ingest_creates_ordered_cards(orchestrator, store, document):
    result = orchestrator.ingest(document.id)

    assert result.cards_created == 3
    assert result.processed is True
    assert result.to_payload() == {"cardsCreated": 3, "message": SUCCESS_MESSAGE}

    cards = store.list_cards(document_id=document.id)
    assert [c.post_order for c in cards] == [1, 2, 3]
    assert cards[0].content.startswith("Alice was beginning")
    assert cards[2].title == "Alice - Card 3"
    assert all(c.user_id == "user-1" for c in cards)
    assert all(c.image_url for c in cards)

    loaded = store.get_document(document.id)
    assert loaded.processed is True
    assert loaded.ingestion_status == IngestionStatus.DONE


def test_card_metadata(orchestrator, store, document):
    orchestrator.ingest(document.id)

    metadata = store.list_cards(document_id=document.id)[1].metadata

    assert metadata["source_pdf"] == "Alice"
    assert metadata["generated_at"]
    assert metadata["image_seed"] == f"{document.id}-2"
    assert metadata["delimiter_protocol"] == "kart"
    assert metadata["rule_set"] == "verbatim"
    assert metadata["model"] == "gpt-4o-mini"
    assert metadata["heading"].startswith("So she was")


def test_prompt_carries_title_and_text(orchestrator, completion_client, document):
    orchestrator.ingest(document.id)

    prompt = completion_client.complete.call_args[0][0]
    assert '"Alice"' in prompt.user
    assert "Alice was beginning to get very tired." in prompt.user
    assert "Down the rabbit hole." in prompt.user


def test_image_only_pdf_sends_sentinel(orchestrator, completion_client, store, blobs, make_pdf):
    document = upload_pdf(store, blobs, "user-1", "Scan.pdf", make_pdf([None]))

    orchestrator.ingest(document.id)

    prompt = completion_client.complete.call_args[0][0]
    assert NO_EXTRACTABLE_TEXT in prompt.user


def test_missing_document(orchestrator):
    with pytest.raises(NotFoundError):
        orchestrator.ingest("does-not-exist")


def test_missing_blob(orchestrator, store, completion_client):
    document = store.create_document("user-1", "Ghost", "Ghost.pdf", "user-1/404.pdf", 0)

    with pytest.raises(StorageError) as exc_info:
        orchestrator.ingest(document.id)

    assert exc_info.value.step == "fetched"
    assert exc_info.value.document_id == document.id
    completion_client.complete.assert_not_called()
    assert store.get_document(document.id).ingestion_status == IngestionStatus.FAILED


def test_unparseable_pdf(orchestrator, store, blobs, completion_client):
    blobs.upload("user-1/broken.pdf", b"%PDF-1.4 broken")
    document = store.create_document("user-1", "Broken", "Broken.pdf", "user-1/broken.pdf", 15)

    with pytest.raises(ExtractionError) as exc_info:
        orchestrator.ingest(document.id)

    assert exc_info.value.step == "extracted"
    assert exc_info.value.http_status == 422
    completion_client.complete.assert_not_called()


def test_completion_failure_leaves_document_unprocessed(orchestrator, store, completion_client, document):
    completion_client.complete.side_effect = CompletionError("AI processing failed (HTTP 500)", status=500)

    with pytest.raises(CompletionError) as exc_info:
        orchestrator.ingest(document.id)

    assert exc_info.value.step == "completed"
    loaded = store.get_document(document.id)
    assert loaded.processed is False
    assert loaded.ingestion_status == IngestionStatus.FAILED
    assert loaded.last_error == "AI processing failed (HTTP 500)"
    assert store.count_cards(document.id) == 0


def test_persistence_failure_writes_nothing(orchestrator, store, document):
    """A failed insert keeps processed=false and zero cards."""
    with patch.object(store, "replace_cards", side_effect=PersistenceError("Failed to save cards")):
        with pytest.raises(PersistenceError) as exc_info:
            orchestrator.ingest(document.id)

    assert exc_info.value.step == "persisted"
    assert store.count_cards(document.id) == 0
    loaded = store.get_document(document.id)
    assert loaded.processed is False
    assert loaded.last_error == "Failed to save cards"


def test_unexpected_exception_is_wrapped(config, store, blobs, completion_client, document):
    parser = Mock()
    parser.parse.side_effect = RuntimeError("boom")
    orchestrator = IngestionOrchestrator(
        config, store, blobs, completion_client=completion_client, parser=parser
    )

    with pytest.raises(IngestionError) as exc_info:
        orchestrator.ingest(document.id)

    assert exc_info.value.step == "parsed"
    assert "boom" in exc_info.value.message
    assert store.get_document(document.id).processed is False


def test_empty_result_leaves_unprocessed_by_default(orchestrator, store, completion_client, document):
    completion_client.complete.return_value = Completion(
        content="=== KART 1 ===\nshort\n=== KART 2 ===\ntiny", model="gpt-4o-mini"
    )

    result = orchestrator.ingest(document.id)

    assert result.cards_created == 0
    assert result.processed is False
    assert result.message == EMPTY_MESSAGE
    loaded = store.get_document(document.id)
    assert loaded.processed is False
    assert loaded.ingestion_status == IngestionStatus.FAILED


def test_empty_result_can_mark_processed(config, orchestrator, store, completion_client, document):
    config.ingestion.empty_result_policy = EmptyResultPolicy.MARK_PROCESSED
    completion_client.complete.return_value = Completion(content="short", model="gpt-4o-mini")

    result = orchestrator.ingest(document.id)

    assert result.cards_created == 0
    assert result.processed is True
    assert store.get_document(document.id).processed is True
    assert store.count_cards(document.id) == 0


def test_processed_document_is_not_reingested(orchestrator, store, completion_client, document):
    orchestrator.ingest(document.id)

    with pytest.raises(AlreadyProcessedError):
        orchestrator.ingest(document.id)

    assert completion_client.complete.call_count == 1
    assert store.get_document(document.id).ingestion_status == IngestionStatus.DONE


def test_force_replaces_cards(orchestrator, store, completion_client, document):
    orchestrator.ingest(document.id)
    completion_client.complete.return_value = Completion(
        content="=== KART 1 ===\nA single replacement card body.", model="gpt-4o-mini"
    )

    result = orchestrator.ingest(document.id, force=True)

    assert result.cards_created == 1
    assert store.count_cards(document.id) == 1


def test_concurrent_run_is_rejected(orchestrator, store, completion_client, document):
    store.acquire_lease(document.id, ttl_seconds=900)

    with pytest.raises(DocumentBusyError):
        orchestrator.ingest(document.id)

    completion_client.complete.assert_not_called()


def test_retry_after_failure(orchestrator, store, completion_client, document):
    completion_client.complete.side_effect = [
        CompletionError("AI processing failed"),
        Completion(content=COMPLETION_TEXT, model="gpt-4o-mini"),
    ]

    with pytest.raises(CompletionError):
        orchestrator.ingest(document.id)
    result = orchestrator.ingest(document.id)

    assert result.cards_created == 3
    assert store.get_document(document.id).processed is True


def test_card_ids_are_deterministic(orchestrator, store, completion_client, document):
    orchestrator.ingest(document.id)
    first = [c.id for c in store.list_cards(document_id=document.id)]

    orchestrator.ingest(document.id, force=True)
    second = [c.id for c in store.list_cards(document_id=document.id)]

    assert first == second


def test_database_error_while_leasing(orchestrator, store, completion_client):
    """A failing lease query surfaces as a tagged PersistenceError."""
    error = OperationalError("UPDATE documents", {}, Exception("database is locked"))

    with patch.object(store, "acquire_lease", side_effect=error):
        with pytest.raises(PersistenceError) as exc_info:
            orchestrator.ingest("doc-1")

    assert exc_info.value.step == "leased"
    assert exc_info.value.document_id == "doc-1"
    assert exc_info.value.to_payload() == {"error": "Failed to load PDF"}
    completion_client.complete.assert_not_called()


def test_image_failures_never_fail_the_run(config, store, blobs, completion_client, document):
    config.images.provider = ImageProvider.RELAY
    config.images.service_url = "https://images.example.com/lookup"
    session = Mock()
    session.post.side_effect = RuntimeError("socket closed")
    enricher = ImageEnricher(config.images, session=session)
    orchestrator = IngestionOrchestrator(
        config, store, blobs, completion_client=completion_client, enricher=enricher
    )

    result = orchestrator.ingest(document.id)

    assert result.cards_created == 3
    cards = store.list_cards(document_id=document.id)
    assert [c.image_url for c in cards] == [
        enricher.fallback_url(f"{document.id}-{n}") for n in (1, 2, 3)
    ]


def test_forced_empty_rerun_reports_existing_state(orchestrator, store, completion_client, document):
    """An empty forced re-run keeps the earlier cards and says so."""
    orchestrator.ingest(document.id)
    completion_client.complete.return_value = Completion(content="tiny", model="gpt-4o-mini")

    result = orchestrator.ingest(document.id, force=True)

    assert result.cards_created == 0
    assert result.processed is True
    assert result.message == EMPTY_MESSAGE
    assert store.count_cards(document.id) == 3
    loaded = store.get_document(document.id)
    assert loaded.processed is True
    assert loaded.ingestion_status == IngestionStatus.FAILED
