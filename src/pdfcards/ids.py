"""Identifier and seed generation for cards."""

import hashlib
import uuid


def image_seed(document_id: str, order: int) -> str:
    """Seed for the image lookup of the card at ``order`` (1-based).

    Derived from position, never from content, so repeated runs over the
    same document ask for the same images.
    """
    if order < 1:
        raise ValueError(f"Card order must be 1-based, got {order}")
    return f"{document_id}-{order}"


def card_id(document_id: str, order: int, salt: str = "pdfcards") -> str:
    """Deterministic UUID for the card at ``order`` within a document."""
    content_string = f"{salt}|{document_id}|{order}"
    # BLAKE2 with 16 bytes gives exactly one UUID worth of digest
    hash_obj = hashlib.blake2b(content_string.encode('utf-8'), digest_size=16)
    return str(uuid.UUID(bytes=hash_obj.digest()))


def new_id() -> str:
    """Random identifier for user-created rows."""
    return str(uuid.uuid4())
