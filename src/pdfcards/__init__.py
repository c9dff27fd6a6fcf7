"""
pdfcards: Turn PDF documents into ordered reading cards using LLMs.
"""

__version__ = "0.1.0"

from .config import Config
from .ingest import IngestionOrchestrator, IngestionResult, ingest_document
from .parser import CardParser, parse_cards

__all__ = [
    "Config",
    "IngestionOrchestrator",
    "IngestionResult",
    "ingest_document",
    "CardParser",
    "parse_cards",
]
