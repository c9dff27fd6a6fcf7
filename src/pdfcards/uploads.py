"""Uploading PDF files into blob storage and the documents table."""

import logging
from pathlib import Path
from typing import Optional

from .blobs import BlobStore, upload_key
from .errors import InvalidUploadError, StorageError
from .store import CardStore, Document

logger = logging.getLogger(__name__)

PDF_MAGIC = b"%PDF"


def title_from_filename(file_name: str) -> str:
    """Document title: the file name without its .pdf extension."""
    name = Path(file_name).name
    if name.lower().endswith(".pdf"):
        name = name[:-4]
    return name


def upload_pdf(
    store: CardStore,
    blobs: BlobStore,
    user_id: str,
    file_name: str,
    data: bytes,
    timestamp_ms: Optional[int] = None,
) -> Document:
    """Store a PDF and register it as an unprocessed document.

    The blob is removed again if the document row cannot be created.
    """
    if not data.startswith(PDF_MAGIC):
        raise InvalidUploadError(f"{file_name} is not a PDF file")

    key = upload_key(user_id, timestamp_ms)
    blobs.upload(key, data)

    try:
        document = store.create_document(
            user_id=user_id,
            title=title_from_filename(file_name),
            file_name=Path(file_name).name,
            file_path=key,
            file_size=len(data),
        )
    except Exception:
        blobs.remove(key)
        raise

    logger.info(f"Uploaded {file_name} as document {document.id} ({key})")
    return document


def upload_file(store: CardStore, blobs: BlobStore, user_id: str, pdf_path: Path) -> Document:
    """Upload a PDF from the local filesystem."""
    try:
        data = pdf_path.read_bytes()
    except OSError as e:
        raise StorageError(f"Could not read {pdf_path}: {e}") from e
    return upload_pdf(store, blobs, user_id, pdf_path.name, data)
