"""Application configuration with sensible defaults."""
import json
import os
from dataclasses import dataclass, fields, asdict, replace
from pathlib import Path
from typing import Any, Dict, Optional

import structlog

from ragtutor.errors import InvalidConfiguration

logger = structlog.get_logger()

# Paths
BASE_DIR = Path(__file__).parent.parent
DATA_DIR = BASE_DIR / "data"

# Ollama configuration
OLLAMA_BASE_URL = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
LLM_MODEL = os.getenv("LLM_MODEL", "llama3.1")
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "qwen3-embedding")
BASE_PROMPT = os.getenv(
    "BASE_PROMPT",
    "You are an AI tutor. Based on the following material, generate a bunch of "
    "concise learning questions formatted in Markdown. Add the right solutions "
    "to an extra chapter at the bottom. All Questions should be answered only "
    "with the given material, don't ask, what may be in mentioned sources.",
)

# Chroma configuration
CHROMA_BASE_URL = os.getenv("CHROMA_BASE_URL", "http://localhost:9000")
CHROMA_TENANT = os.getenv("CHROMA_TENANT", "obsidian_ragllmbot")
CHROMA_DATABASE = os.getenv("CHROMA_DATABASE", "obsidian_db")
CHROMA_COLLECTION = os.getenv("CHROMA_COLLECTION", "obsidian_collection")

# RAG parameters (character-based)
CHUNK_SIZE = int(os.getenv("CHUNK_SIZE", "500"))
CHUNK_OVERLAP = int(os.getenv("CHUNK_OVERLAP", "50"))
RETRIEVAL_TOP_K = int(os.getenv("RETRIEVAL_TOP_K", "5"))
EMBED_CONCURRENCY = int(os.getenv("EMBED_CONCURRENCY", "1"))  # 1 = sequential

# Timeouts (seconds)
REQUEST_TIMEOUT = float(os.getenv("REQUEST_TIMEOUT", "60.0"))
GENERATION_TIMEOUT = float(os.getenv("GENERATION_TIMEOUT", "600.0"))

# Output artifact
OUTPUT_PREFIX = os.getenv("OUTPUT_PREFIX", "RagLlmLearning")

# Persisted settings (holds the resolved collection id between runs)
SETTINGS_PATH = Path(os.getenv("SETTINGS_PATH", str(DATA_DIR / "settings.json")))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


@dataclass(frozen=True)
class RagSettings:
    """Immutable configuration value for one pipeline invocation."""

    ollama_base_url: str = OLLAMA_BASE_URL
    llm_model: str = LLM_MODEL
    embedding_model: str = EMBEDDING_MODEL
    base_prompt: str = BASE_PROMPT
    chroma_base_url: str = CHROMA_BASE_URL
    chroma_tenant: str = CHROMA_TENANT
    chroma_database: str = CHROMA_DATABASE
    chroma_collection: str = CHROMA_COLLECTION
    chroma_collection_id: str = ""
    chunk_size: int = CHUNK_SIZE
    chunk_overlap: int = CHUNK_OVERLAP
    top_k: int = RETRIEVAL_TOP_K
    embed_concurrency: int = EMBED_CONCURRENCY
    request_timeout: float = REQUEST_TIMEOUT
    generation_timeout: float = GENERATION_TIMEOUT
    output_prefix: str = OUTPUT_PREFIX

    def with_collection_id(self, collection_id: str) -> "RagSettings":
        """Return a copy carrying a resolved collection id."""
        return replace(self, chroma_collection_id=collection_id)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RagSettings":
        """Overlay known keys from ``data`` on the defaults.

        Unknown keys are ignored; values whose type does not match the
        default's type are skipped with a warning.
        """
        defaults = cls()
        overrides = {}

        for field in fields(cls):
            if field.name not in data:
                continue
            value = data[field.name]
            expected = type(getattr(defaults, field.name))

            # ints are acceptable where floats are expected
            if expected is float and isinstance(value, int) and not isinstance(value, bool):
                value = float(value)

            if not isinstance(value, expected) or isinstance(value, bool):
                logger.warning(
                    "settings_value_ignored",
                    key=field.name,
                    expected=expected.__name__,
                    got=type(value).__name__,
                )
                continue

            overrides[field.name] = value

        return replace(defaults, **overrides)


class SettingsStore:
    """JSON file persistence for RagSettings."""

    def __init__(self, path: Optional[Path] = None):
        """Initialize the settings store.

        Args:
            path: Settings file location (default from config.SETTINGS_PATH)
        """
        self.path = Path(path) if path else SETTINGS_PATH

    def load(self) -> RagSettings:
        """Load settings, falling back to defaults when no file exists.

        Raises:
            InvalidConfiguration: If the file exists but is not valid JSON or
                not a JSON object
        """
        if not self.path.exists():
            logger.info("settings_file_missing_using_defaults", path=str(self.path))
            return RagSettings()

        with open(self.path, "r", encoding="utf-8") as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise InvalidConfiguration(
                    f"Settings file is not valid JSON: {self.path}: {e}"
                ) from e

        if not isinstance(data, dict):
            raise InvalidConfiguration(f"Settings file must contain a JSON object: {self.path}")

        settings = RagSettings.from_dict(data)
        logger.info(
            "settings_loaded",
            path=str(self.path),
            has_collection_id=bool(settings.chroma_collection_id),
        )
        return settings

    def save(self, settings: RagSettings) -> None:
        """Write settings to disk, creating the parent directory if needed."""
        self.path.parent.mkdir(parents=True, exist_ok=True)

        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(settings.to_dict(), f, indent=2)

        logger.info("settings_saved", path=str(self.path))
