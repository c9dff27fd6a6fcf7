"""Tests for configuration management."""

import os
import tempfile
from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from pdfcards.config import (
    Config,
    DelimiterProtocol,
    EmptyResultPolicy,
    ImageConfig,
    LLMConfig,
    ParserConfig,
    RuleSet,
)


def test_default_config():
    """Test that default configuration loads successfully."""
    config = Config()

    assert config.project.name == "pdfcards"
    assert config.llm.model == "gpt-4o-mini"
    assert config.llm.temperature == 0.7
    assert config.llm.max_tokens == 2000
    assert config.parser.protocol == DelimiterProtocol.KART
    assert config.parser.min_length == 20
    assert config.prompts.rule_set == RuleSet.VERBATIM
    assert config.ingestion.empty_result_policy == EmptyResultPolicy.LEAVE_UNPROCESSED


def test_config_from_yaml():
    """Test loading configuration from YAML file."""
    config_data = {
        "llm": {
            "model": "gpt-4o",
            "temperature": 0.2
        },
        "parser": {
            "protocol": "post",
            "min_length": 10
        },
        "ingestion": {
            "empty_result_policy": "mark_processed"
        }
    }

    with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
        yaml.dump(config_data, f)
        yaml_path = f.name

    try:
        config = Config.from_yaml(yaml_path)

        assert config.llm.model == "gpt-4o"
        assert config.llm.temperature == 0.2
        assert config.parser.protocol == DelimiterProtocol.POST
        assert config.parser.min_length == 10
        assert config.ingestion.empty_result_policy == EmptyResultPolicy.MARK_PROCESSED

    finally:
        os.unlink(yaml_path)


def test_config_to_yaml_round_trip(tmp_path):
    """Test saving configuration to YAML and loading it back."""
    config = Config()
    config.project.name = "Test Export"
    config.parser.min_length = 30

    yaml_path = tmp_path / "pdfcards.yaml"
    config.to_yaml(yaml_path)

    with open(yaml_path, 'r') as f:
        data = yaml.safe_load(f)
    assert data['project']['name'] == "Test Export"
    assert data['storage']['blob_root'] == "workspace/blobs"

    loaded = Config.from_yaml(yaml_path)
    assert loaded.parser.min_length == 30
    assert loaded.storage.blob_root == Path("workspace/blobs")


def test_secrets_are_not_written(tmp_path, monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-secret")
    config = Config()
    assert config.llm.api_key == "sk-secret"

    yaml_path = tmp_path / "pdfcards.yaml"
    config.to_yaml(yaml_path)

    assert "sk-secret" not in yaml_path.read_text()
    assert "api_key" not in yaml.safe_load(yaml_path.read_text())["llm"]


def test_api_key_env_reference(monkeypatch):
    monkeypatch.setenv("MY_KEY", "from-env")

    assert LLMConfig(api_key="${MY_KEY}").api_key == "from-env"
    assert LLMConfig(api_key="literal").api_key == "literal"


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("PDFCARDS_LLM__MODEL", "gpt-4o")
    monkeypatch.setenv("PDFCARDS_PARSER__MIN_LENGTH", "5")

    config = Config()

    assert config.llm.model == "gpt-4o"
    assert config.parser.min_length == 5


def test_invalid_values():
    with pytest.raises(ValidationError):
        LLMConfig(max_tokens=0)
    with pytest.raises(ValidationError):
        ParserConfig(min_length=-1)
    with pytest.raises(ValidationError):
        ImageConfig(max_concurrency=0)
    with pytest.raises(ValidationError):
        ImageConfig(fallback_url_template="https://example.com/static.jpg")


def test_create_workspace(tmp_path):
    config = Config()
    config.storage.blob_root = tmp_path / "store" / "blobs"
    config.storage.database_url = f"sqlite:///{tmp_path / 'db' / 'cards.db'}"

    config.create_workspace()

    assert (tmp_path / "store" / "blobs").is_dir()
    assert (tmp_path / "db").is_dir()
