"""
Run configuration for code2tutorial.

Defaults live here; a persisted JSON document (.code2tutorial/config.json) can
override them, and CLI flags override both. The resulting RunConfig is frozen
and handed to the pipeline once at start.
"""

import json
import logging
import os
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from errors import ConfigError

logger = logging.getLogger("code2tutorial.config")

CONFIG_DIR_NAME = ".code2tutorial"
CONFIG_FILE_NAME = "config.json"
CACHE_FILE_NAME = "llm_cache.json"
DEFAULT_CONFIG_PATH = os.path.join(CONFIG_DIR_NAME, CONFIG_FILE_NAME)
DEFAULT_CACHE_PATH = os.path.join(CONFIG_DIR_NAME, CACHE_FILE_NAME)

# Prompt budget for IdentifyAbstractions: only the first N files, each truncated.
MAX_FILES_TO_PROCESS = 10
MAX_CONTENT_LENGTH = 2000
MIN_ABSTRACTIONS = 5

DEFAULT_MAX_FILE_SIZE = 100_000
DEFAULT_MAX_ABSTRACTIONS = 25
DEFAULT_MAX_TOKENS = 8000

DEFAULT_MODELS = {
    "gemini": "gemini-2.0-flash",
    "openai": "gpt-4o-mini",
    "gemini_aiplatform": "gemini-2.0-flash",
    "cursor": "",
}

DEFAULT_INCLUDE_PATTERNS = [
    "*.py", "*.pyi", "*.js", "*.jsx", "*.ts", "*.tsx", "*.java", "*.c", "*.cc", "*.cpp",
    "*.h", "*.hpp", "*.cs", "*.go", "*.rs", "*.swift", "*.kt", "*.php", "*.rb", "*.dart",
    "*.scala", "*.hs", "*.ex", "*.exs", "*.erl", "*.ml", "*.m", "*.jl", "*.lua", "*.pl",
    "*.r", "*.nim", "*.zig", "*.v", "*.asm", "*.ahk",
]

DEFAULT_EXCLUDE_PATTERNS = [
    ".git", ".svn", ".hg", ".bzr", "node_modules", "vendor", "packages", "bower_components",
    "dist", "build", "target", "bin", "obj", ".next", ".nuxt", ".output", ".vscode", ".idea",
    "*.swp", "*.swo", "*~", ".DS_Store", "*.log", "logs", ".cache", "__pycache__",
    ".pytest_cache", ".mypy_cache", ".tox", "coverage", "tmp", "temp", "*.zip", "*.tar.gz",
    "*.tar", "*.rar", "*.7z", "*.bak", ".env", ".env.*", "tests", "test", "__tests__",
    "*.test.*", "*.spec.*", "e2e", CONFIG_DIR_NAME,
]

LLMProvider = Literal["gemini", "openai", "gemini_aiplatform", "cursor"]
OutputFormat = Literal["markdown", "html", "pdf"]


class RetrySettings(BaseModel):
    """Retry budget for a single provider call: attempts and initial delay in seconds."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    attempts: int = Field(default=3, gt=0)
    delay: float = Field(default=1.0, ge=0)
    factor: float = Field(default=2.0, ge=1)


class RunConfig(BaseModel):
    """Everything the pipeline needs to know about a run. Never mutated once built."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    local_dir: str = "."
    project_name: str = "project"
    output_dir: str = "output"
    output_format: OutputFormat = "html"
    include_patterns: list[str] = Field(default_factory=lambda: list(DEFAULT_INCLUDE_PATTERNS))
    exclude_patterns: list[str] = Field(default_factory=lambda: list(DEFAULT_EXCLUDE_PATTERNS))
    max_file_size: int = Field(default=DEFAULT_MAX_FILE_SIZE, gt=0)
    llm_provider: LLMProvider = "gemini"
    api_key: str = "GEMINI_API_KEY"
    model: str = ""
    max_tokens: int = Field(default=DEFAULT_MAX_TOKENS, gt=0)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    use_cache: bool = True
    cache_path: str = DEFAULT_CACHE_PATH
    max_abstractions: int = Field(default=DEFAULT_MAX_ABSTRACTIONS, gt=0)
    verbose: bool = False

    @property
    def model_name(self) -> str:
        return self.model or DEFAULT_MODELS.get(self.llm_provider, "")

    @property
    def credential(self) -> str:
        """Resolve api_key: if it names a set environment variable, use that value."""
        key = (self.api_key or "").strip()
        if key and os.environ.get(key):
            return os.environ[key].strip()
        return key


def build_config(**values: Any) -> RunConfig:
    """Validate values into a RunConfig, turning pydantic errors into ConfigError."""
    try:
        return RunConfig(**values)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ConfigError(f"Invalid configuration: {problems}", details={"errors": e.errors()}) from e


def default_config_document() -> dict:
    """Fields written to a fresh persisted config document."""
    defaults = RunConfig()
    return defaults.model_dump(
        include={
            "max_file_size",
            "llm_provider",
            "api_key",
            "model",
            "max_tokens",
            "retry",
            "output_format",
            "use_cache",
            "max_abstractions",
            "include_patterns",
            "exclude_patterns",
        }
    )


def save_config(document: dict, path: str = DEFAULT_CONFIG_PATH) -> None:
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(document, f, indent=2)


def load_config(path: str = DEFAULT_CONFIG_PATH) -> dict:
    """
    Load the persisted config document merged over defaults.

    A missing document is created with defaults. A document that is not valid
    JSON (or not a JSON object) raises ConfigError; so do invalid values.

    Returns:
        A plain dict suitable for build_config(**doc, **cli_overrides).
    """
    document = default_config_document()
    if not os.path.exists(path):
        save_config(document, path)
        logger.info("Created default config at %s; edit it to set your provider and API key.", path)
        return document
    try:
        with open(path, "r", encoding="utf-8") as f:
            stored = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Config file {path} is not valid JSON: {e}") from e
    except OSError as e:
        raise ConfigError(f"Could not read config file {path}: {e}") from e
    if not isinstance(stored, dict):
        raise ConfigError(f"Config file {path} must contain a JSON object")
    document.update(stored)
    build_config(**document)
    return document
