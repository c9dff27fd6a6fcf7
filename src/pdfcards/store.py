"""Relational persistence for documents, cards, saved cards and flashcards."""

import logging
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Generator, List, Optional

from pydantic import BaseModel, Field
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    delete,
    func,
    or_,
    select,
    update,
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .errors import (
    AlreadyProcessedError,
    DocumentBusyError,
    NotFoundError,
    PersistenceError,
)
from .ids import new_id

logger = logging.getLogger(__name__)

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IngestionStatus(str, Enum):
    """Lease state of a document's ingestion."""
    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"


# SQLAlchemy ORM Models
class DocumentRecord(Base):
    __tablename__ = 'documents'

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), nullable=False)
    title = Column(String, nullable=False)
    file_name = Column(String, nullable=False)
    file_path = Column(String, nullable=False)
    file_size = Column(Integer, nullable=False, default=0)
    processed = Column(Boolean, nullable=False, default=False)
    is_public = Column(Boolean, nullable=False, default=False)
    view_count = Column(Integer, nullable=False, default=0)
    upload_date = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    ingestion_status = Column(String(16), nullable=False, default=IngestionStatus.PENDING.value)
    last_attempt_at = Column(DateTime(timezone=True))
    last_error = Column(Text)

    __table_args__ = (
        Index('idx_document_user_id', 'user_id'),
    )


class CardRecord(Base):
    __tablename__ = 'cards'

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), nullable=False)
    document_id = Column(String(36), ForeignKey('documents.id', ondelete='CASCADE'), nullable=False)
    title = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    post_order = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    image_url = Column(String)
    # "metadata" is reserved on declarative classes
    card_metadata = Column('metadata', JSON, nullable=False, default=dict)

    __table_args__ = (
        UniqueConstraint('document_id', 'post_order', name='uq_card_document_order'),
        Index('idx_card_user_id', 'user_id'),
    )


class SavedCardRecord(Base):
    __tablename__ = 'saved_cards'

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), nullable=False)
    card_id = Column(String(36), ForeignKey('cards.id', ondelete='CASCADE'), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint('user_id', 'card_id', name='uq_saved_card_user_card'),
    )


class FlashcardRecord(Base):
    __tablename__ = 'flashcards'

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), nullable=False)
    question = Column(Text, nullable=False)
    answer = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index('idx_flashcard_user_id', 'user_id'),
    )


# Pydantic models handed to the rest of the package
class Document(BaseModel):
    id: str
    user_id: str
    title: str
    file_name: str
    file_path: str
    file_size: int = 0
    processed: bool = False
    is_public: bool = False
    view_count: int = 0
    upload_date: Optional[datetime] = None
    ingestion_status: IngestionStatus = IngestionStatus.PENDING
    last_attempt_at: Optional[datetime] = None
    last_error: Optional[str] = None

    class Config:
        from_attributes = True


class NewCard(BaseModel):
    """A card ready for insertion."""
    id: str
    user_id: str
    document_id: str
    title: str
    content: str
    post_order: int = Field(..., ge=1)
    image_url: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class Card(NewCard):
    created_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: CardRecord) -> "Card":
        return cls(
            id=record.id,
            user_id=record.user_id,
            document_id=record.document_id,
            title=record.title,
            content=record.content,
            post_order=record.post_order,
            image_url=record.image_url,
            metadata=record.card_metadata or {},
            created_at=record.created_at,
        )


class Flashcard(BaseModel):
    id: str
    user_id: str
    question: str
    answer: str
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class Database:
    """Engine and session factory."""

    def __init__(self, url: str, echo: bool = False):
        kwargs: Dict[str, Any] = {"echo": echo, "future": True}
        if url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            if url in ("sqlite://", "sqlite:///:memory:"):
                kwargs["poolclass"] = StaticPool

        self.engine = create_engine(url, **kwargs)
        self.SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            bind=self.engine,
            future=True,
            expire_on_commit=False,
        )
        logger.debug(f"Database engine created for {self.engine.url.render_as_string(hide_password=True)}")

    def create_all(self) -> None:
        Base.metadata.create_all(self.engine)

    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        """Session that commits on success and rolls back on any exception."""
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception as e:
            session.rollback()
            logger.debug(f"Session rolled back: {e}")
            raise
        finally:
            session.close()


class CardStore:
    """Data access for the ingestion pipeline and the card/flashcard features."""

    def __init__(self, database: Database):
        self.database = database

    # ============= Document Operations =============

    def create_document(
        self,
        user_id: str,
        title: str,
        file_name: str,
        file_path: str,
        file_size: int,
        document_id: Optional[str] = None,
    ) -> Document:
        record = DocumentRecord(
            id=document_id or new_id(),
            user_id=user_id,
            title=title,
            file_name=file_name,
            file_path=file_path,
            file_size=file_size,
            processed=False,
            upload_date=utcnow(),
            ingestion_status=IngestionStatus.PENDING.value,
        )
        try:
            with self.database.get_session() as session:
                session.add(record)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to create document: {e}") from e
        logger.info(f"Created document {record.id} ({file_name}, {file_size} bytes)")
        return Document.model_validate(record)

    def get_document(self, document_id: str) -> Document:
        with self.database.get_session() as session:
            record = session.get(DocumentRecord, document_id)
            if record is None:
                raise NotFoundError("PDF not found", document_id=document_id)
            return Document.model_validate(record)

    def list_documents(self, user_id: Optional[str] = None) -> List[Document]:
        with self.database.get_session() as session:
            query = select(DocumentRecord).order_by(DocumentRecord.upload_date.desc())
            if user_id:
                query = query.where(DocumentRecord.user_id == user_id)
            return [Document.model_validate(r) for r in session.execute(query).scalars().all()]

    def list_public_documents(self) -> List[Document]:
        """Public documents, most viewed first."""
        with self.database.get_session() as session:
            query = (
                select(DocumentRecord)
                .where(DocumentRecord.is_public.is_(True))
                .order_by(DocumentRecord.view_count.desc())
            )
            return [Document.model_validate(r) for r in session.execute(query).scalars().all()]

    def set_public(self, document_id: str, is_public: bool) -> Document:
        with self.database.get_session() as session:
            record = session.get(DocumentRecord, document_id)
            if record is None:
                raise NotFoundError("PDF not found", document_id=document_id)
            record.is_public = is_public
            return Document.model_validate(record)

    def record_view(self, document_id: str, viewer_id: Optional[str] = None) -> int:
        """Count a view of a public document by anyone but its owner."""
        with self.database.get_session() as session:
            record = session.get(DocumentRecord, document_id)
            if record is None:
                raise NotFoundError("PDF not found", document_id=document_id)
            if record.is_public and record.user_id != viewer_id:
                record.view_count = (record.view_count or 0) + 1
            return record.view_count

    # ============= Ingestion Lease =============

    def acquire_lease(self, document_id: str, ttl_seconds: int, force: bool = False) -> Document:
        """Mark the document as running if no fresh run holds it.

        The conditional UPDATE is the lock: zero affected rows means the row
        is missing, already processed, or leased by a run that is not stale.
        """
        now = utcnow()
        stale_before = now - timedelta(seconds=ttl_seconds)

        with self.database.get_session() as session:
            conditions = [
                DocumentRecord.id == document_id,
                or_(
                    DocumentRecord.ingestion_status != IngestionStatus.RUNNING.value,
                    DocumentRecord.last_attempt_at.is_(None),
                    DocumentRecord.last_attempt_at < stale_before,
                ),
            ]
            if not force:
                conditions.append(DocumentRecord.processed.is_(False))

            result = session.execute(
                update(DocumentRecord)
                .where(*conditions)
                .values(
                    ingestion_status=IngestionStatus.RUNNING.value,
                    last_attempt_at=now,
                    last_error=None,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                record = session.get(DocumentRecord, document_id)
                session.refresh(record)
                return Document.model_validate(record)

            record = session.get(DocumentRecord, document_id)

        if record is None:
            raise NotFoundError("PDF not found", document_id=document_id)
        if record.processed and not force:
            raise AlreadyProcessedError("PDF has already been processed", document_id=document_id)
        raise DocumentBusyError("PDF is already being processed", document_id=document_id)

    def release_lease(self, document_id: str, status: IngestionStatus, error: Optional[str] = None) -> None:
        with self.database.get_session() as session:
            session.execute(
                update(DocumentRecord)
                .where(DocumentRecord.id == document_id)
                .values(ingestion_status=status.value, last_error=error)
                .execution_options(synchronize_session=False)
            )

    # ============= Card Operations =============

    def replace_cards(self, document_id: str, cards: List[NewCard], mark_processed: bool = True) -> int:
        """Insert all cards and set ``processed`` in one transaction.

        Existing cards of the document are removed first, so a forced re-run
        never leaves two card sets behind. Either every row is committed
        together with the flag, or nothing is.
        """
        orders = sorted(card.post_order for card in cards)
        if orders != list(range(1, len(cards) + 1)):
            raise PersistenceError(
                f"Card orders must be exactly 1..{len(cards)}, got {orders}",
                document_id=document_id,
            )

        try:
            with self.database.get_session() as session:
                if session.get(DocumentRecord, document_id) is None:
                    raise NotFoundError("PDF not found", document_id=document_id)

                session.execute(delete(CardRecord).where(CardRecord.document_id == document_id))
                now = utcnow()
                session.add_all([
                    CardRecord(
                        id=card.id,
                        user_id=card.user_id,
                        document_id=card.document_id,
                        title=card.title,
                        content=card.content,
                        post_order=card.post_order,
                        created_at=now,
                        image_url=card.image_url,
                        card_metadata=card.metadata,
                    )
                    for card in cards
                ])
                session.flush()

                if mark_processed:
                    session.execute(
                        update(DocumentRecord)
                        .where(DocumentRecord.id == document_id)
                        .values(processed=True)
                        .execution_options(synchronize_session=False)
                    )
        except (IntegrityError, SQLAlchemyError) as e:
            logger.error(f"Database insert error for document {document_id}: {e}")
            raise PersistenceError("Failed to save cards", document_id=document_id) from e

        logger.info(f"Saved {len(cards)} cards for document {document_id} (processed={mark_processed})")
        return len(cards)

    def list_cards(self, document_id: Optional[str] = None, user_id: Optional[str] = None) -> List[Card]:
        with self.database.get_session() as session:
            query = select(CardRecord)
            if document_id:
                query = query.where(CardRecord.document_id == document_id)
            if user_id:
                query = query.where(CardRecord.user_id == user_id)
            query = query.order_by(CardRecord.document_id, CardRecord.post_order)
            return [Card.from_record(r) for r in session.execute(query).scalars().all()]

    def get_card(self, card_id: str) -> Card:
        with self.database.get_session() as session:
            record = session.get(CardRecord, card_id)
            if record is None:
                raise NotFoundError("Card not found")
            return Card.from_record(record)

    def count_cards(self, document_id: str) -> int:
        with self.database.get_session() as session:
            return session.execute(
                select(func.count()).select_from(CardRecord).where(CardRecord.document_id == document_id)
            ).scalar_one()

    # ============= Saved Cards & Flashcards =============

    def save_card(self, user_id: str, card_id: str) -> str:
        """Bookmark a card for a user; saving twice returns the existing bookmark."""
        with self.database.get_session() as session:
            if session.get(CardRecord, card_id) is None:
                raise NotFoundError("Card not found")
            existing = session.execute(
                select(SavedCardRecord).where(
                    SavedCardRecord.user_id == user_id,
                    SavedCardRecord.card_id == card_id,
                )
            ).scalar_one_or_none()
            if existing is not None:
                return existing.id

            record = SavedCardRecord(id=new_id(), user_id=user_id, card_id=card_id, created_at=utcnow())
            session.add(record)
            return record.id

    def unsave_card(self, user_id: str, card_id: str) -> bool:
        with self.database.get_session() as session:
            result = session.execute(
                delete(SavedCardRecord).where(
                    SavedCardRecord.user_id == user_id,
                    SavedCardRecord.card_id == card_id,
                )
            )
            return result.rowcount > 0

    def list_saved_cards(self, user_id: str) -> List[Card]:
        with self.database.get_session() as session:
            query = (
                select(CardRecord)
                .join(SavedCardRecord, SavedCardRecord.card_id == CardRecord.id)
                .where(SavedCardRecord.user_id == user_id)
                .order_by(SavedCardRecord.created_at.desc())
            )
            return [Card.from_record(r) for r in session.execute(query).scalars().all()]

    def add_flashcard(self, user_id: str, question: str, answer: str) -> Flashcard:
        record = FlashcardRecord(
            id=new_id(), user_id=user_id, question=question, answer=answer, created_at=utcnow()
        )
        with self.database.get_session() as session:
            session.add(record)
        return Flashcard.model_validate(record)

    def list_flashcards(self, user_id: str) -> List[Flashcard]:
        with self.database.get_session() as session:
            query = (
                select(FlashcardRecord)
                .where(FlashcardRecord.user_id == user_id)
                .order_by(FlashcardRecord.created_at)
            )
            return [Flashcard.model_validate(r) for r in session.execute(query).scalars().all()]

    def delete_flashcard(self, flashcard_id: str) -> bool:
        with self.database.get_session() as session:
            result = session.execute(delete(FlashcardRecord).where(FlashcardRecord.id == flashcard_id))
            return result.rowcount > 0


def create_store(url: str, echo: bool = False) -> CardStore:
    """Factory function creating a store with its tables in place."""
    database = Database(url, echo=echo)
    database.create_all()
    return CardStore(database)
