"""I/O utilities for card export and terminal previews."""

import logging
from pathlib import Path
from typing import List

import pandas as pd
from rich.console import Console
from rich.table import Table

from .store import Card, Document

logger = logging.getLogger(__name__)

CSV_COLUMNS = [
    "id", "document_id", "user_id", "post_order", "title", "content",
    "image_url", "created_at", "source_pdf", "generated_at",
]


def cards_to_frame(cards: List[Card]) -> pd.DataFrame:
    """Flatten cards into a DataFrame with one row per card."""
    rows = []
    for card in cards:
        rows.append({
            "id": card.id,
            "document_id": card.document_id,
            "user_id": card.user_id,
            "post_order": card.post_order,
            "title": card.title,
            "content": card.content,
            "image_url": card.image_url or "",
            "created_at": card.created_at.isoformat() if card.created_at else "",
            "source_pdf": card.metadata.get("source_pdf", ""),
            "generated_at": card.metadata.get("generated_at", ""),
        })
    return pd.DataFrame(rows, columns=CSV_COLUMNS)


def save_csv(cards: List[Card], csv_path: Path) -> int:
    """Save cards to a CSV file, returning the number of rows written."""
    if not cards:
        logger.warning("No cards to save")
        return 0

    df = cards_to_frame(cards).fillna("")
    csv_path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(csv_path, index=False, encoding='utf-8')
    logger.info(f"Saved {len(df)} cards to {csv_path}")
    return len(df)


def load_csv(csv_path: Path) -> pd.DataFrame:
    """Load exported cards from a CSV file."""
    if not csv_path.exists():
        raise FileNotFoundError(f"CSV file not found: {csv_path}")
    df = pd.read_csv(csv_path, encoding='utf-8', keep_default_na=False)
    logger.info(f"Loaded {len(df)} cards from {csv_path}")
    return df


def _shorten(text: str, limit: int = 80) -> str:
    text = " ".join(text.split())
    return text[:limit] + "..." if len(text) > limit else text


def preview_cards(cards: List[Card], console: Console, max_cards: int = 10) -> None:
    """Preview cards in a formatted table."""
    if not cards:
        console.print("No cards to preview", style="yellow")
        return

    shown = cards[:max_cards]
    table = Table(title=f"Card Preview ({len(shown)} of {len(cards)} cards)")
    table.add_column("#", style="cyan", justify="right")
    table.add_column("Heading", style="green", max_width=40)
    table.add_column("Content", style="blue", max_width=60)
    table.add_column("Image", style="magenta", max_width=30)

    for card in shown:
        heading = card.metadata.get("heading") or card.title
        table.add_row(
            str(card.post_order),
            _shorten(heading, 40),
            _shorten(card.content),
            card.image_url or "",
        )

    console.print(table)


def preview_documents(documents: List[Document], console: Console) -> None:
    """List documents with their processing state."""
    table = Table(title=f"Documents ({len(documents)})")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Title", style="green")
    table.add_column("Size", justify="right")
    table.add_column("Processed", justify="center")
    table.add_column("Status", style="yellow")
    table.add_column("Public", justify="center")
    table.add_column("Views", justify="right")

    for document in documents:
        table.add_row(
            document.id,
            document.title,
            format_file_size(document.file_size),
            "✓" if document.processed else "✗",
            document.ingestion_status.value,
            "✓" if document.is_public else "✗",
            str(document.view_count),
        )

    console.print(table)


def format_file_size(size: int) -> str:
    if size == 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    value = float(size)
    index = 0
    while value >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1
    return f"{value:.0f} {units[index]}" if index == 0 else f"{value:.2f} {units[index]}"
