"""PDF text extraction."""

import hashlib
import logging
from typing import Dict, List

import fitz  # PyMuPDF

from .errors import ExtractionError

logger = logging.getLogger(__name__)

NO_EXTRACTABLE_TEXT = (
    "This PDF contains no extractable text. "
    "It may consist only of scanned images."
)


class PDFDocument:
    """A PDF opened from an in-memory byte buffer."""

    def __init__(self, data: bytes):
        if not data:
            raise ExtractionError("PDF buffer is empty")
        try:
            self.doc = fitz.open(stream=data, filetype="pdf")
        except Exception as e:
            raise ExtractionError(f"Could not parse PDF: {e}") from e
        self.page_count = len(self.doc)
        if self.page_count == 0:
            self.doc.close()
            raise ExtractionError("PDF has no pages")
        self.metadata = self._extract_metadata()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if hasattr(self, 'doc'):
            self.doc.close()

    def _extract_metadata(self) -> Dict[str, str]:
        """Extract PDF metadata."""
        meta = self.doc.metadata or {}
        return {
            "title": meta.get("title", "") or "",
            "author": meta.get("author", "") or "",
            "creation_date": meta.get("creationDate", "") or "",
        }

    def extract_pages(self) -> List[str]:
        """Extract raw text for every page, in page order."""
        pages = []
        for page_num in range(self.page_count):
            page = self.doc[page_num]
            raw_text = page.get_text()
            pages.append(raw_text)
            logger.debug(f"Extracted text from page {page_num + 1}: {len(raw_text)} chars")
        return pages


class TextExtractor:
    """Turns a raw PDF byte buffer into plain text."""

    def __init__(self, sentinel: str = NO_EXTRACTABLE_TEXT):
        self.sentinel = sentinel

    def extract_text(self, data: bytes) -> str:
        """Return the document text, or the sentinel for image-only PDFs.

        Raises:
            ExtractionError: if the buffer cannot be opened as a PDF.
        """
        with PDFDocument(data) as pdf_doc:
            try:
                pages = pdf_doc.extract_pages()
            except Exception as e:
                raise ExtractionError(f"Could not read PDF pages: {e}") from e
            page_count = pdf_doc.page_count

        texts = [page.strip() for page in pages if page.strip()]
        if not texts:
            logger.warning(f"No extractable text in {page_count}-page PDF")
            return self.sentinel

        text = "\n\n".join(texts)
        logger.info(f"Extracted {len(text)} chars from {page_count} pages")
        return text

    def read_title(self, data: bytes) -> str:
        """Title from the PDF metadata, empty if unset."""
        with PDFDocument(data) as pdf_doc:
            return pdf_doc.metadata["title"].strip()


def content_hash(data: bytes) -> str:
    """Short hash of a PDF buffer for log correlation."""
    return hashlib.sha256(data).hexdigest()[:16]
