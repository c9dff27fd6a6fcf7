"""Shared fixtures for pdfcards tests."""

from typing import List, Optional

import fitz  # PyMuPDF
import pytest

from pdfcards.blobs import LocalBlobStore
from pdfcards.store import create_store


def build_pdf(pages: List[Optional[str]], title: str = "") -> bytes:
    """Create an in-memory PDF; ``None`` entries become blank pages."""
    doc = fitz.open()
    for text in pages:
        page = doc.new_page()
        if text:
            page.insert_text((72, 72), text, fontsize=11)
    if title:
        doc.set_metadata({"title": title})
    data = doc.tobytes()
    doc.close()
    return data


@pytest.fixture
def make_pdf():
    return build_pdf


@pytest.fixture
def store():
    """Card store on a private in-memory SQLite database."""
    return create_store("sqlite://")


@pytest.fixture
def blobs(tmp_path):
    return LocalBlobStore(tmp_path / "blobs")
