"""Engine configuration: paths, timing constants and provider defaults."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = Path.home() / ".history-engine"

DB_FILENAME = "browsing-history.db"
VECTOR_DIRNAME = "history-vectors"
SETTINGS_FILENAME = "history-settings.json"

# text-embedding-3-small
DEFAULT_EMBEDDING_DIMENSION = 1536


@dataclass
class EngineConfig:
    """Tunables for the capture pipeline, stores and model providers.

    Intervals and delays are in seconds (they drive asyncio timers); throttle
    windows are in milliseconds (they are compared against row timestamps).
    """

    data_dir: Path = DEFAULT_DATA_DIR

    # Interaction batching
    batch_interval: float = 2.0
    batch_max_size: int = 100

    # Periodic database save
    save_interval: float = 5.0

    # Staggered one-shot captures after a navigation
    screenshot_delay: float = 1.0
    snapshot_delay: float = 1.5
    embedding_delay: float = 2.0

    # Throttle windows
    screenshot_throttle_ms: int = 30_000
    snapshot_throttle_ms: int = 60_000
    scroll_throttle_ms: int = 500

    # Size caps
    snapshot_max_chars: int = 50_000
    embedding_text_max_chars: int = 8_000

    # Vector index
    vector_dimension: int = DEFAULT_EMBEDDING_DIMENSION
    vector_capacity: int = 10_000

    # Providers
    embedding_provider: str = "openai"  # "openai" | "ollama"
    embedding_model: str = "text-embedding-3-small"
    ollama_base_url: str = "http://localhost:11434"
    llm_model: str | None = None
    analysis_timeout: float = 120.0

    @property
    def db_path(self) -> Path:
        return self.data_dir / DB_FILENAME

    @property
    def vector_dir(self) -> Path:
        return self.data_dir / VECTOR_DIRNAME

    @property
    def settings_path(self) -> Path:
        return self.data_dir / SETTINGS_FILENAME

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """Build a config, letting environment variables override defaults."""
        config = cls()
        data_dir = os.environ.get("HISTORY_ENGINE_DATA_DIR")
        if data_dir:
            config.data_dir = Path(data_dir).expanduser()
        provider = os.environ.get("HISTORY_EMBEDDING_PROVIDER")
        if provider:
            config.embedding_provider = provider.strip().lower()
        model = os.environ.get("HISTORY_EMBEDDING_MODEL")
        if model:
            config.embedding_model = model
        dimension = os.environ.get("HISTORY_EMBEDDING_DIMENSION")
        if dimension:
            try:
                config.vector_dimension = int(dimension)
            except ValueError:
                logger.warning(f"Ignoring non-integer HISTORY_EMBEDDING_DIMENSION={dimension!r}")
        ollama_url = os.environ.get("OLLAMA_BASE_URL")
        if ollama_url:
            config.ollama_base_url = ollama_url
        config.llm_model = os.environ.get("DEFAULT_LLM_MODEL") or None
        return config
