"""PDF-to-cards ingestion orchestration."""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from .blobs import BlobStore, LocalBlobStore
from .config import Config, EmptyResultPolicy
from .errors import (
    CompletionError,
    ExtractionError,
    IngestionError,
    PersistenceError,
    StorageError,
)
from .ids import card_id, image_seed
from .images import ImageEnricher
from .llm import CompletionClient
from .parser import CardParser, ParsedCard
from .pdf import TextExtractor, content_hash
from .prompts import PromptBuilder
from .store import CardStore, Document, IngestionStatus, NewCard, create_store

logger = logging.getLogger(__name__)

SUCCESS_MESSAGE = "PDF successfully processed into reading cards"
EMPTY_MESSAGE = "AI response contained no valid cards"


class IngestionStep(str, Enum):
    """States of an ingestion run, in order."""
    LEASED = "leased"
    FETCHED = "fetched"
    EXTRACTED = "extracted"
    PROMPTED = "prompted"
    COMPLETED = "completed"
    PARSED = "parsed"
    ENRICHED = "enriched"
    PERSISTED = "persisted"
    MARKED_PROCESSED = "marked-processed"


# Error raised when an unexpected exception escapes a step
STEP_ERRORS = {
    IngestionStep.LEASED: PersistenceError,
    IngestionStep.FETCHED: StorageError,
    IngestionStep.EXTRACTED: ExtractionError,
    IngestionStep.PROMPTED: IngestionError,
    IngestionStep.COMPLETED: CompletionError,
    IngestionStep.PARSED: IngestionError,
    IngestionStep.ENRICHED: IngestionError,
    IngestionStep.PERSISTED: PersistenceError,
    IngestionStep.MARKED_PROCESSED: PersistenceError,
}


class IngestionResult(BaseModel):
    """Outcome of a successful ingestion run."""
    document_id: str
    cards_created: int
    processed: bool
    message: str
    status: IngestionStatus = IngestionStatus.DONE

    def to_payload(self) -> Dict[str, Any]:
        """Caller-facing success object."""
        return {"cardsCreated": self.cards_created, "message": self.message}


class IngestionOrchestrator:
    """Runs one document through fetch, extract, prompt, complete, parse,
    enrich and persist.

    A run holds the document's ingestion lease from start to finish. Any
    failure releases the lease as ``failed`` and re-raises a single
    :class:`IngestionError`; the document keeps ``processed=false`` and no
    card rows are written, so the run can simply be retried.
    """

    def __init__(
        self,
        config: Config,
        store: CardStore,
        blobs: BlobStore,
        extractor: Optional[TextExtractor] = None,
        prompt_builder: Optional[PromptBuilder] = None,
        completion_client: Optional[CompletionClient] = None,
        parser: Optional[CardParser] = None,
        enricher: Optional[ImageEnricher] = None,
    ):
        self.config = config
        self.store = store
        self.blobs = blobs
        self.extractor = extractor or TextExtractor()
        self.prompt_builder = prompt_builder or PromptBuilder(config.prompts, config.parser.protocol)
        self.completion_client = completion_client or CompletionClient(config.llm)
        self.parser = parser or CardParser(config.parser)
        self.enricher = enricher or ImageEnricher(config.images)

    @classmethod
    def from_config(cls, config: Config) -> "IngestionOrchestrator":
        """Build an orchestrator wired to the configured database and blob root."""
        config.create_workspace()
        store = create_store(config.storage.database_url, echo=config.storage.echo_sql)
        blobs = LocalBlobStore(config.storage.blob_root)
        return cls(config, store, blobs)

    def ingest(self, document_id: str, force: bool = False) -> IngestionResult:
        """Turn the stored PDF of ``document_id`` into persisted cards.

        Raises:
            NotFoundError: the document does not exist.
            DocumentBusyError: another run holds a fresh lease.
            AlreadyProcessedError: the document is processed and ``force`` is false.
            IngestionError: any step failed; see :mod:`pdfcards.errors`.
        """
        try:
            document = self.store.acquire_lease(
                document_id, self.config.ingestion.lease_ttl_seconds, force=force
            )
        except SQLAlchemyError as e:
            logger.error(f"Ingestion failed for document {document_id} at step '{IngestionStep.LEASED.value}': {e}")
            raise PersistenceError(
                "Failed to load PDF", document_id=document_id, step=IngestionStep.LEASED.value
            ) from e
        logger.info(f"Ingestion started for document {document_id} ('{document.title}')")

        try:
            result = self._run(document)
        except IngestionError as e:
            logger.error(f"Ingestion failed for document {document_id} at step '{e.step}': {e.message}")
            self._release(document_id, IngestionStatus.FAILED, e.message)
            raise

        if result.status == IngestionStatus.DONE:
            self._release(document_id, IngestionStatus.DONE)
        else:
            self._release(document_id, result.status, result.message)
        logger.info(f"Ingestion finished for document {document_id}: {result.cards_created} cards")
        return result

    def _release(self, document_id: str, status: IngestionStatus, error: Optional[str] = None) -> None:
        try:
            self.store.release_lease(document_id, status, error)
        except SQLAlchemyError as e:
            # The lease goes stale after lease_ttl_seconds and can be taken over then
            logger.error(f"Could not release ingestion lease for document {document_id}: {e}")

    @contextmanager
    def _step(self, step: IngestionStep, document: Document):
        """Tag failures with the step name and map stray exceptions to the step's error type."""
        try:
            yield
        except IngestionError as e:
            e.document_id = e.document_id or document.id
            e.step = e.step or step.value
            raise
        except Exception as e:
            error_cls = STEP_ERRORS[step]
            raise error_cls(
                f"Step '{step.value}' failed: {e}", document_id=document.id, step=step.value
            ) from e
        logger.debug(f"Document {document.id}: {step.value}")

    def _run(self, document: Document) -> IngestionResult:
        with self._step(IngestionStep.FETCHED, document):
            data = self.blobs.download(document.file_path)
            logger.debug(f"Downloaded {len(data)} bytes (sha256 {content_hash(data)})")

        with self._step(IngestionStep.EXTRACTED, document):
            text = self.extractor.extract_text(data)

        with self._step(IngestionStep.PROMPTED, document):
            prompt = self.prompt_builder.build(document.title, text)

        with self._step(IngestionStep.COMPLETED, document):
            completion = self.completion_client.complete(prompt)

        with self._step(IngestionStep.PARSED, document):
            parsed = self.parser.parse(completion.content)

        if not parsed:
            return self._handle_empty(document)

        with self._step(IngestionStep.ENRICHED, document):
            image_urls = self.enricher.enrich(document.id, len(parsed))

        with self._step(IngestionStep.PERSISTED, document):
            cards = self.build_cards(document, parsed, image_urls, completion.model, prompt.fingerprint())
            # Insert and processed flag share one transaction
            created = self.store.replace_cards(document.id, cards, mark_processed=True)
        logger.debug(f"Document {document.id}: {IngestionStep.MARKED_PROCESSED.value}")

        return IngestionResult(
            document_id=document.id,
            cards_created=created,
            processed=True,
            message=SUCCESS_MESSAGE,
        )

    def _handle_empty(self, document: Document) -> IngestionResult:
        policy = self.config.ingestion.empty_result_policy
        logger.warning(f"No valid cards parsed for document {document.id} (policy: {policy.value})")

        if policy == EmptyResultPolicy.MARK_PROCESSED:
            with self._step(IngestionStep.PERSISTED, document):
                self.store.replace_cards(document.id, [], mark_processed=True)
            return IngestionResult(
                document_id=document.id, cards_created=0, processed=True, message=EMPTY_MESSAGE
            )

        # A forced re-run keeps the previous card set and processed flag
        return IngestionResult(
            document_id=document.id,
            cards_created=0,
            processed=document.processed,
            message=EMPTY_MESSAGE,
            status=IngestionStatus.FAILED,
        )

    def build_cards(
        self,
        document: Document,
        parsed: List[ParsedCard],
        image_urls: List[str],
        model: str,
        prompt_fingerprint: str,
    ) -> List[NewCard]:
        """Card rows for the parsed bodies, tagged with the document's owner and id."""
        generated_at = datetime.now(timezone.utc).isoformat()
        cards = []
        for card, image_url in zip(parsed, image_urls):
            cards.append(NewCard(
                id=card_id(document.id, card.order),
                user_id=document.user_id,
                document_id=document.id,
                title=f"{document.title} - Card {card.order}",
                content=card.content,
                post_order=card.order,
                image_url=image_url,
                metadata={
                    "source_pdf": document.title,
                    "generated_at": generated_at,
                    "card_type": self.config.ingestion.card_type,
                    "image_seed": image_seed(document.id, card.order),
                    "heading": card.heading,
                    "delimiter_protocol": self.config.parser.protocol.value,
                    "rule_set": self.prompt_builder.config.rule_set.value,
                    "model": model,
                    "prompt_fingerprint": prompt_fingerprint,
                },
            ))
        return cards


def ingest_document(document_id: str, config: Optional[Config] = None, force: bool = False) -> IngestionResult:
    """Run one ingestion with an orchestrator built from ``config``."""
    orchestrator = IngestionOrchestrator.from_config(config or Config())
    return orchestrator.ingest(document_id, force=force)
