"""Flashcards derived from reading cards, and Anki deck export using genanki."""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import genanki

from .config import FlashcardConfig
from .store import Card, CardStore, Flashcard

logger = logging.getLogger(__name__)

CARD_CSS = '''
    .card {
        font-family: Arial, sans-serif;
        font-size: 16px;
        text-align: left;
        color: #333;
        background-color: #fff;
        padding: 20px;
    }

    .question {
        font-size: 18px;
        font-weight: bold;
        margin-bottom: 15px;
        color: #2c3e50;
    }

    .answer {
        font-size: 16px;
        line-height: 1.5;
        white-space: pre-wrap;
    }
'''


def default_question_answer(content: str, question_words: int = 2) -> Tuple[str, str]:
    """Prefill for a new flashcard: the first words as question, the whole card as answer."""
    words = content.strip().split()
    return " ".join(words[:question_words]), content.strip()


class FlashcardService:
    """Creates flashcards from cards and lists them per user."""

    def __init__(self, store: CardStore, config: Optional[FlashcardConfig] = None):
        self.store = store
        self.config = config or FlashcardConfig()

    def create(self, user_id: str, question: str, answer: str) -> Flashcard:
        question = question.strip()
        answer = answer.strip()
        if not question or not answer:
            raise ValueError("Question and answer must both be filled in")
        flashcard = self.store.add_flashcard(user_id, question, answer)
        logger.info(f"Created flashcard {flashcard.id} for user {user_id}")
        return flashcard

    def create_from_card(
        self,
        user_id: str,
        card: Card,
        question: Optional[str] = None,
        answer: Optional[str] = None,
    ) -> Flashcard:
        """Create a flashcard from a card, filling blanks with the default prefill."""
        default_question, default_answer = default_question_answer(card.content, self.config.question_words)
        return self.create(user_id, question or default_question, answer or default_answer)


class AnkiDeckBuilder:
    """Builds an Anki package from a user's flashcards."""

    def __init__(self, config: FlashcardConfig):
        self.config = config
        # Fixed ids so re-exports update the same note type and deck in Anki
        self.note_type = genanki.Model(
            model_id=config.model_id,
            name='PDF Cards Basic',
            fields=[
                {'name': 'Front'},
                {'name': 'Back'},
            ],
            templates=[
                {
                    'name': 'Card 1',
                    'qfmt': '<div class="question">{{Front}}</div>',
                    'afmt': '''
                        <div class="question">{{Front}}</div>
                        <hr id="answer">
                        <div class="answer">{{Back}}</div>
                    ''',
                },
            ],
            css=CARD_CSS,
        )

    def _create_note(self, flashcard: Flashcard) -> genanki.Note:
        return genanki.Note(
            model=self.note_type,
            fields=[flashcard.question, flashcard.answer],
            guid=genanki.guid_for(flashcard.id),
        )

    def build_deck(self, flashcards: List[Flashcard], output_path: Path) -> Dict[str, Any]:
        """Write ``flashcards`` to an .apkg file."""
        if not flashcards:
            raise ValueError("No flashcards to export")

        deck = genanki.Deck(self.config.deck_id, self.config.deck_name)
        for flashcard in flashcards:
            deck.add_note(self._create_note(flashcard))

        output_path.parent.mkdir(parents=True, exist_ok=True)
        genanki.Package(deck).write_to_file(str(output_path))
        logger.info(f"Built Anki deck with {len(flashcards)} cards at {output_path}")

        return {
            "apkg_path": output_path,
            "total_cards": len(flashcards),
            "deck_name": self.config.deck_name,
        }


def export_flashcards(store: CardStore, user_id: str, config: FlashcardConfig, output_path: Optional[Path] = None) -> Dict[str, Any]:
    """Export every flashcard of ``user_id`` to an Anki package."""
    flashcards = store.list_flashcards(user_id)
    builder = AnkiDeckBuilder(config)
    return builder.build_deck(flashcards, output_path or config.apkg_path)
