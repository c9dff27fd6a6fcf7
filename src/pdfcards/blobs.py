"""Object storage for uploaded PDF files."""

import logging
import time
from abc import ABC, abstractmethod
from pathlib import Path, PurePosixPath
from typing import Optional

from .errors import StorageError

logger = logging.getLogger(__name__)


class BlobStore(ABC):
    """Key/value byte storage addressed by slash-separated paths."""

    @abstractmethod
    def download(self, path: str) -> bytes:
        """Return the stored bytes.

        Raises:
            StorageError: if nothing is stored under ``path`` or it cannot be read.
        """

    @abstractmethod
    def upload(self, path: str, data: bytes) -> None:
        """Store ``data`` under ``path``."""

    @abstractmethod
    def remove(self, path: str) -> bool:
        """Delete the blob, returning whether it existed."""


class LocalBlobStore(BlobStore):
    """Blob store backed by a directory on the local filesystem."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def _resolve(self, path: str) -> Path:
        key = PurePosixPath(path)
        if key.is_absolute() or ".." in key.parts or not key.parts:
            raise StorageError(f"Invalid storage path: {path!r}")
        return self.root.joinpath(*key.parts)

    def download(self, path: str) -> bytes:
        file_path = self._resolve(path)
        if not file_path.is_file():
            raise StorageError(f"Could not download PDF file: {path} does not exist")
        try:
            return file_path.read_bytes()
        except OSError as e:
            raise StorageError(f"Could not download PDF file: {e}") from e

    def upload(self, path: str, data: bytes) -> None:
        file_path = self._resolve(path)
        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            file_path.write_bytes(data)
        except OSError as e:
            raise StorageError(f"Could not store PDF file: {e}") from e
        logger.debug(f"Stored {len(data)} bytes at {file_path}")

    def remove(self, path: str) -> bool:
        file_path = self._resolve(path)
        if not file_path.exists():
            return False
        file_path.unlink()
        return True


def upload_key(user_id: str, timestamp_ms: Optional[int] = None) -> str:
    """Storage key for a new upload: ``<user_id>/<epoch millis>.pdf``."""
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    return f"{user_id}/{timestamp_ms}.pdf"
