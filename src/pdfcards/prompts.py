"""Prompt construction using Jinja2 templates."""

import hashlib
import logging
from pathlib import Path
from typing import List, Optional, Tuple

from jinja2 import Environment, FileSystemLoader, StrictUndefined, Template
from pydantic import BaseModel

from .config import DelimiterProtocol, PromptConfig, RuleSet

logger = logging.getLogger(__name__)

DEFAULT_TEMPLATES_DIR = Path(__file__).parent / "templates"

MARKERS = {
    DelimiterProtocol.KART: "KART",
    DelimiterProtocol.POST: "POST",
}

USER_TEMPLATE = "user.j2"


class Prompt(BaseModel):
    """A system + user message pair."""
    system: str
    user: str

    def to_messages(self) -> List[Tuple[str, str]]:
        """Messages in the (role, content) form accepted by chat models."""
        return [("system", self.system), ("human", self.user)]

    def fingerprint(self) -> str:
        """Stable hash of both messages."""
        digest = hashlib.sha256()
        digest.update(self.system.encode("utf-8"))
        digest.update(b"\x00")
        digest.update(self.user.encode("utf-8"))
        return digest.hexdigest()[:16]


class PromptManager:
    """Manages prompt templates and rendering."""

    def __init__(self, templates_dir: Optional[Path] = None):
        """Initialize prompt manager with template directory."""
        self.templates_dir = Path(templates_dir or DEFAULT_TEMPLATES_DIR)

        self.env = Environment(
            loader=FileSystemLoader(str(self.templates_dir)),
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
            undefined=StrictUndefined,
            autoescape=False,
        )

    def get_template(self, template_name: str) -> Template:
        """Get a template by name."""
        try:
            return self.env.get_template(template_name)
        except Exception as e:
            logger.error(f"Failed to load template {template_name}: {e}")
            raise

    def render_template(self, template_name: str, **kwargs) -> str:
        """Render a template with the given variables."""
        template = self.get_template(template_name)
        return template.render(**kwargs)

    def list_templates(self) -> list[str]:
        """List all available templates."""
        if not self.templates_dir.exists():
            return []
        return sorted(file.name for file in self.templates_dir.glob("*.j2"))


class PromptBuilder:
    """Builds the deterministic two-message segmentation prompt.

    Identical (title, text, rule-set, protocol) inputs always render
    byte-identical prompts: the templates see no clock, no randomness and
    no unordered containers.
    """

    def __init__(
        self,
        config: Optional[PromptConfig] = None,
        protocol: DelimiterProtocol = DelimiterProtocol.KART,
        prompt_manager: Optional[PromptManager] = None,
    ):
        self.config = config or PromptConfig()
        self.protocol = protocol
        self.prompt_manager = prompt_manager or PromptManager(self.config.templates_dir)

    @property
    def marker(self) -> str:
        return MARKERS[self.protocol]

    def system_template_name(self, rule_set: RuleSet) -> str:
        return f"system_{rule_set.value}.j2"

    def build(self, title: str, text: str, rule_set: Optional[RuleSet] = None) -> Prompt:
        """Render the system and user messages for one document."""
        rule_set = rule_set or self.config.rule_set
        variables = {
            "title": title,
            "text": text,
            "char_count": len(text),
            "marker": self.marker,
            "rule_set": rule_set.value,
        }

        system = self.prompt_manager.render_template(
            self.system_template_name(rule_set), **variables
        ).strip()
        user = self.prompt_manager.render_template(USER_TEMPLATE, **variables).strip()

        prompt = Prompt(system=system, user=user)
        logger.debug(
            f"Built {rule_set.value} prompt for '{title}' "
            f"({len(text)} chars, fingerprint {prompt.fingerprint()})"
        )
        return prompt
