"""Unit tests for config: RunConfig validation, credential resolution, persisted document."""

import json
import os
from unittest.mock import patch

import pytest

from config import (
    DEFAULT_CACHE_PATH,
    MAX_CONTENT_LENGTH,
    MAX_FILES_TO_PROCESS,
    MIN_ABSTRACTIONS,
    RunConfig,
    build_config,
    default_config_document,
    load_config,
)
from errors import ConfigError


def test_defaults():
    """Defaults match the documented run configuration."""
    config = build_config()
    assert config.llm_provider == "gemini"
    assert config.output_format == "html"
    assert config.use_cache is True
    assert config.cache_path == DEFAULT_CACHE_PATH
    assert config.retry.attempts == 3
    assert config.retry.delay == 1.0
    assert config.model_name == "gemini-2.0-flash"
    assert (MAX_FILES_TO_PROCESS, MAX_CONTENT_LENGTH, MIN_ABSTRACTIONS) == (10, 2000, 5)


def test_invalid_values_raise_config_error():
    """Out-of-range numbers and unknown providers are ConfigError, not pydantic errors."""
    with pytest.raises(ConfigError) as exc_info:
        build_config(max_tokens=0)
    assert "max_tokens" in str(exc_info.value)
    with pytest.raises(ConfigError):
        build_config(llm_provider="anthropic")
    with pytest.raises(ConfigError):
        build_config(retry={"attempts": 0})
    with pytest.raises(ConfigError):
        build_config(retry={"attempts": 2, "delay": -1})


def test_openai_provider_has_its_own_default_model():
    """Selecting openai without a model uses the openai default."""
    config = build_config(llm_provider="openai")
    assert config.model_name == "gpt-4o-mini"
    assert build_config(llm_provider="openai", model="gpt-4o").model_name == "gpt-4o"


def test_config_is_frozen():
    """RunConfig cannot be mutated after it is built."""
    config = build_config()
    with pytest.raises(Exception):
        config.max_tokens = 5


def test_credential_resolves_env_var_name():
    """api_key naming a set environment variable resolves to its value; otherwise used literally."""
    with patch.dict(os.environ, {"MY_KEY_VAR": "secret"}, clear=False):
        assert RunConfig(api_key="MY_KEY_VAR").credential == "secret"
    assert RunConfig(api_key="literal-key-123").credential == "literal-key-123"


def test_load_config_creates_missing_document(tmp_path):
    """A missing config document is created with defaults."""
    path = tmp_path / ".code2tutorial" / "config.json"
    document = load_config(str(path))
    assert path.exists()
    assert json.loads(path.read_text(encoding="utf-8")) == document
    assert document == default_config_document()


def test_load_config_merges_over_defaults(tmp_path):
    """Stored values override defaults; unspecified keys keep defaults."""
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"llm_provider": "cursor", "max_abstractions": 7}), encoding="utf-8")
    document = load_config(str(path))
    assert document["llm_provider"] == "cursor"
    assert document["max_abstractions"] == 7
    assert document["output_format"] == "html"


def test_load_config_rejects_bad_json(tmp_path):
    """A document that is not valid JSON is a ConfigError."""
    path = tmp_path / "config.json"
    path.write_text("{broken", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(str(path))


def test_load_config_rejects_invalid_values(tmp_path):
    """Stored values are validated too."""
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"output_format": "docx"}), encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(str(path))
