"""Parsing of delimited completion text into ordered card bodies."""

import logging
import re
from typing import List, Optional, Pattern

from pydantic import BaseModel

from .config import DelimiterProtocol, ParserConfig
from .prompts import MARKERS

logger = logging.getLogger(__name__)

_EDGE_EQUALS = re.compile(r"^=+|=+$")


def delimiter_pattern(protocol: DelimiterProtocol) -> Pattern[str]:
    """Regex matching one delimiter line, capturing its (advisory) number.

    Tolerates surrounding spaces, longer ``=`` runs and a bracketed number,
    e.g. ``=== KART 3 ===`` or ``==== KART [3] ====``.
    """
    marker = re.escape(MARKERS[protocol])
    return re.compile(
        rf"={{3,}}[ \t]*{marker}[ \t]*\[?[ \t]*(\d+)[ \t]*\]?[ \t]*={{3,}}",
        re.IGNORECASE,
    )


class ParsedCard(BaseModel):
    """One card body with its position in the document."""
    order: int
    content: str
    heading: str


class CardParser:
    """Splits raw completion text into ordered card bodies."""

    def __init__(self, config: Optional[ParserConfig] = None):
        self.config = config or ParserConfig()
        self.pattern = delimiter_pattern(self.config.protocol)

    def split(self, raw: str) -> List[str]:
        """Split on every delimiter and return the cleaned fragments, unfiltered."""
        # With one capture group re.split alternates fragment, number, fragment...
        pieces = self.pattern.split(raw)
        fragments = pieces[0::2]
        numbers = [int(n) for n in pieces[1::2]]

        if numbers != list(range(1, len(numbers) + 1)):
            logger.debug(f"Ignoring non-sequential delimiter numbering {numbers}")

        return [self._clean(fragment) for fragment in fragments]

    def _clean(self, fragment: str) -> str:
        fragment = fragment.strip()
        return _EDGE_EQUALS.sub("", fragment).strip()

    def parse(self, raw: str) -> List[ParsedCard]:
        """Return the valid card bodies in split order with 1-based orders.

        Text without any delimiter becomes a single card; text whose
        fragments are all below ``min_length`` yields an empty list.
        """
        fragments = self.split(raw)
        bodies = [f for f in fragments if len(f) >= self.config.min_length]

        dropped = len(fragments) - len(bodies)
        if dropped:
            logger.debug(f"Dropped {dropped} fragments shorter than {self.config.min_length} chars")

        cards = [
            ParsedCard(order=index, content=body, heading=self.heading(body))
            for index, body in enumerate(bodies, start=1)
        ]
        logger.info(f"Parsed {len(cards)} cards from {len(raw)} chars of completion text")
        return cards

    def heading(self, body: str) -> str:
        """First non-empty line of a card body, truncated for display."""
        for line in body.splitlines():
            line = line.strip()
            if line:
                limit = self.config.heading_max_chars
                return line if len(line) <= limit else line[:limit - 3].rstrip() + "..."
        return ""


def parse_cards(raw: str, config: Optional[ParserConfig] = None) -> List[ParsedCard]:
    """Convenience wrapper around :class:`CardParser`."""
    return CardParser(config).parse(raw)
