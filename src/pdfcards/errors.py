"""Error taxonomy for uploads and the ingestion pipeline."""

from typing import Any, Dict, Optional


class IngestionError(Exception):
    """Base class for every failure surfaced by an ingestion run."""

    http_status = 500

    def __init__(self, message: str, document_id: Optional[str] = None, step: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.document_id = document_id
        self.step = step

    def to_payload(self) -> Dict[str, Any]:
        """Caller-facing error object."""
        return {"error": self.message}


class NotFoundError(IngestionError):
    """Document row or stored file does not exist."""
    http_status = 404


class InvalidUploadError(IngestionError):
    """Uploaded file was rejected before it was stored."""
    http_status = 400


class StorageError(IngestionError):
    """Blob download or upload failed."""


class ExtractionError(IngestionError):
    """Byte buffer could not be parsed as a PDF."""
    http_status = 422


class CompletionError(IngestionError):
    """Completion endpoint returned an error or an unusable response."""
    http_status = 502

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        detail: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.status = status
        self.detail = detail


class UnexpectedShapeError(CompletionError):
    """Completion envelope did not match the expected schema."""


class PersistenceError(IngestionError):
    """Bulk card insert or processed-flag update failed."""


class DocumentBusyError(IngestionError):
    """Another run holds the ingestion lease for this document."""
    http_status = 409


class AlreadyProcessedError(IngestionError):
    """Document was already ingested and force was not requested."""
    http_status = 409
