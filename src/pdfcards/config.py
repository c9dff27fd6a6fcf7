"""Configuration management using Pydantic."""

import os
from enum import Enum
from pathlib import Path
from typing import Optional, Union

import yaml
from pydantic import BaseModel, Field, validator
from pydantic_settings import BaseSettings


class DelimiterProtocol(str, Enum):
    """Card delimiter protocols the LLM is told to emit."""
    KART = "kart"
    POST = "post"  # legacy protocol, opt-in only


class RuleSet(str, Enum):
    """Segmentation rule-sets for the system prompt."""
    VERBATIM = "verbatim"
    READER = "reader"  # short intro sentence + closing comment allowed


class ImageProvider(str, Enum):
    """Where card images are looked up."""
    UNSPLASH = "unsplash"  # random photo from a collection
    RELAY = "relay"  # POST {collectionId, seed} to service_url


class EmptyResultPolicy(str, Enum):
    """What to do with a document when the parser yields zero cards."""
    LEAVE_UNPROCESSED = "leave_unprocessed"
    MARK_PROCESSED = "mark_processed"


def _resolve_env_reference(v):
    if v and isinstance(v, str) and v.startswith("${") and v.endswith("}"):
        return os.getenv(v[2:-1])
    return v


class ProjectConfig(BaseModel):
    """Project-level configuration."""
    name: str = "pdfcards"
    version: str = "1.0"
    description: Optional[str] = None


class LLMConfig(BaseModel):
    """Completion endpoint configuration."""
    model: str = "gpt-4o-mini"
    temperature: float = 0.7
    max_tokens: int = 2000
    api_key: Optional[str] = "${OPENAI_API_KEY}"
    base_url: Optional[str] = None
    timeout: int = 120
    cache_path: Optional[str] = None

    @validator("api_key", pre=True, always=True)
    def resolve_api_key(cls, v):
        return _resolve_env_reference(v)

    @validator("max_tokens")
    def validate_max_tokens(cls, v):
        if v <= 0:
            raise ValueError("max_tokens must be positive")
        return v


class PromptConfig(BaseModel):
    """Prompt builder configuration."""
    rule_set: RuleSet = RuleSet.VERBATIM
    templates_dir: Optional[Path] = None


class ParserConfig(BaseModel):
    """Card parser configuration."""
    protocol: DelimiterProtocol = DelimiterProtocol.KART
    min_length: int = 20
    heading_max_chars: int = 120

    @validator("min_length")
    def validate_min_length(cls, v):
        if v < 0:
            raise ValueError("min_length cannot be negative")
        return v


class ImageConfig(BaseModel):
    """Image lookup configuration."""
    enabled: bool = True
    provider: ImageProvider = ImageProvider.UNSPLASH
    api_url: str = "https://api.unsplash.com/photos/random"
    service_url: Optional[str] = None
    collection_id: str = "317099"
    access_key: Optional[str] = "${UNSPLASH_ACCESS_KEY}"
    timeout: float = 10.0
    max_concurrency: int = 4
    fallback_url_template: str = "https://picsum.photos/seed/{seed}/800/600"

    @validator("access_key", pre=True, always=True)
    def resolve_access_key(cls, v):
        return _resolve_env_reference(v)

    @validator("max_concurrency")
    def validate_max_concurrency(cls, v):
        if v < 1:
            raise ValueError("max_concurrency must be at least 1")
        return v

    @validator("fallback_url_template")
    def validate_fallback_template(cls, v):
        if "{seed}" not in v:
            raise ValueError("fallback_url_template must contain a {seed} placeholder")
        return v


class StorageConfig(BaseModel):
    """Database and blob storage configuration."""
    database_url: str = "sqlite:///workspace/pdfcards.db"
    blob_root: Path = Path("workspace/blobs")
    echo_sql: bool = False


class IngestionConfig(BaseModel):
    """Ingestion run configuration."""
    empty_result_policy: EmptyResultPolicy = EmptyResultPolicy.LEAVE_UNPROCESSED
    lease_ttl_seconds: int = 900
    card_type: str = "reading"


class FlashcardConfig(BaseModel):
    """Flashcard creation and export configuration."""
    question_words: int = 2
    deck_name: str = "PDF Cards"
    deck_id: int = 1607392319
    model_id: int = 1091735104
    apkg_path: Path = Path("workspace/flashcards.apkg")


SECRET_FIELDS = {"llm": {"api_key"}, "images": {"access_key"}}


class Config(BaseSettings):
    """Complete pdfcards configuration."""

    project: ProjectConfig = Field(default_factory=ProjectConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    prompts: PromptConfig = Field(default_factory=PromptConfig)
    parser: ParserConfig = Field(default_factory=ParserConfig)
    images: ImageConfig = Field(default_factory=ImageConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    ingestion: IngestionConfig = Field(default_factory=IngestionConfig)
    flashcards: FlashcardConfig = Field(default_factory=FlashcardConfig)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        env_prefix = "PDFCARDS_"
        env_nested_delimiter = "__"

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "Config":
        """Load configuration from YAML file."""
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return cls(**data)

    def to_yaml(self, path: Union[str, Path]) -> None:
        """Save configuration to YAML file; resolved secrets are left out."""
        data = self.model_dump(mode="json", exclude=SECRET_FIELDS)
        with open(path, "w", encoding="utf-8") as f:
            yaml.safe_dump(data, f, default_flow_style=False, indent=2)

    def create_workspace(self) -> None:
        """Create local storage directories."""
        self.storage.blob_root.mkdir(parents=True, exist_ok=True)
        if self.storage.database_url.startswith("sqlite:///"):
            db_path = Path(self.storage.database_url[len("sqlite:///"):])
            if str(db_path) != ":memory:":
                db_path.parent.mkdir(parents=True, exist_ok=True)
