"""Tests for ID and seed generation."""

import uuid

import pytest

from pdfcards.ids import card_id, image_seed, new_id


def test_card_id_is_deterministic():
    """Same document and order always give the same id."""
    id1 = card_id("doc-1", 1)
    id2 = card_id("doc-1", 1)

    assert id1 == id2
    assert str(uuid.UUID(id1)) == id1


def test_card_id_changes_with_position():
    assert card_id("doc-1", 1) != card_id("doc-1", 2)
    assert card_id("doc-1", 1) != card_id("doc-2", 1)
    assert card_id("doc-1", 1) != card_id("doc-1", 1, salt="other")


def test_image_seed():
    assert image_seed("doc-1", 3) == "doc-1-3"


def test_image_seed_rejects_zero_order():
    with pytest.raises(ValueError):
        image_seed("doc-1", 0)


def test_new_id_is_random_uuid():
    first, second = new_id(), new_id()

    assert first != second
    assert uuid.UUID(first).version == 4
