"""
Runtime configuration for the Statute RAG system.

Settings are immutable snapshots. A process-wide SettingsStore hands out
the current snapshot under a lock; components receive that snapshot
explicitly and never read shared state mid-call.
"""

import os
import logging
import threading
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

# Hard cap used when max_agent_loops is configured as zero or negative
FALLBACK_LOOP_CAP = 20

VECTOR_DB_DIRNAME = "law_db.lancedb"
CONTENT_DB_FILENAME = "content.db"


def resolve_loop_cap(max_agent_loops: int) -> int:
    """Iteration cap for the agent loop; non-positive values fall back to 20."""
    if max_agent_loops <= 0:
        return FALLBACK_LOOP_CAP
    return max_agent_loops


@dataclass(frozen=True)
class Settings:
    """Configuration snapshot consumed by every component call."""
    # Corpus location
    data_dir: str = "data"
    vector_table: str = "laws_vectors"
    metadata_dsn: Optional[str] = None  # PostgreSQL DSN; None -> <data_dir>/content.db

    # Retrieval
    search_top_k: int = 50
    chat_top_k: int = 5

    # Embedding endpoint (OpenAI-compatible)
    embedding_base_url: str = "http://localhost:11434/v1"
    embedding_api_key: str = "ollama"
    embedding_model: str = "embeddinggemma:300m"

    # Chat-completion endpoint (OpenAI-compatible)
    chat_base_url: str = "http://localhost:11434/v1"
    chat_api_key: str = "ollama"
    chat_model: str = "qwen3"

    # Agent loop
    max_agent_loops: int = 5
    max_pending_tasks: int = 5  # <= 0 disables the queue clamp

    request_timeout: float = 120.0

    @property
    def loop_cap(self) -> int:
        return resolve_loop_cap(self.max_agent_loops)

    @property
    def vector_db_path(self) -> Path:
        return Path(self.data_dir) / VECTOR_DB_DIRNAME

    @property
    def content_db_path(self) -> Path:
        return Path(self.data_dir) / CONTENT_DB_FILENAME

    def to_dict(self, redact_keys: bool = True) -> dict:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        if redact_keys:
            for key in ("embedding_api_key", "chat_api_key"):
                if data[key]:
                    data[key] = "***"
        return data

    @classmethod
    def from_env(cls) -> "Settings":
        """
        Build settings from environment variables, falling back to defaults.

        Reads LAW_DATA_DIR, METADATA_DSN, SEARCH_TOP_K, CHAT_TOP_K,
        EMBEDDING_BASE_URL/API_KEY/MODEL, CHAT_BASE_URL/API_KEY/MODEL,
        MAX_AGENT_LOOPS, MAX_PENDING_TASKS and REQUEST_TIMEOUT.
        """
        defaults = cls()
        return cls(
            data_dir=os.getenv("LAW_DATA_DIR", defaults.data_dir),
            vector_table=os.getenv("VECTOR_TABLE", defaults.vector_table),
            metadata_dsn=os.getenv("METADATA_DSN") or None,
            search_top_k=_int_env("SEARCH_TOP_K", defaults.search_top_k),
            chat_top_k=_int_env("CHAT_TOP_K", defaults.chat_top_k),
            embedding_base_url=os.getenv("EMBEDDING_BASE_URL", defaults.embedding_base_url),
            embedding_api_key=os.getenv("EMBEDDING_API_KEY", defaults.embedding_api_key),
            embedding_model=os.getenv("EMBEDDING_MODEL", defaults.embedding_model),
            chat_base_url=os.getenv("CHAT_BASE_URL", defaults.chat_base_url),
            chat_api_key=os.getenv("CHAT_API_KEY", defaults.chat_api_key),
            chat_model=os.getenv("CHAT_MODEL", defaults.chat_model),
            max_agent_loops=_int_env("MAX_AGENT_LOOPS", defaults.max_agent_loops),
            max_pending_tasks=_int_env("MAX_PENDING_TASKS", defaults.max_pending_tasks),
            request_timeout=_float_env("REQUEST_TIMEOUT", defaults.request_timeout),
        )


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Ignoring non-integer {name}={raw!r}, using {default}")
        return default


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Ignoring non-numeric {name}={raw!r}, using {default}")
        return default


class SettingsStore:
    """Process-wide settings holder. Updates replace the snapshot, never mutate it."""

    def __init__(self, settings: Optional[Settings] = None):
        self._lock = threading.Lock()
        self._settings = settings or Settings()

    def snapshot(self) -> Settings:
        with self._lock:
            return self._settings

    def update(self, **changes) -> Settings:
        """Apply changes and return the new snapshot. Unknown keys raise ValueError."""
        known = {f.name for f in fields(Settings)}
        unknown = set(changes) - known
        if unknown:
            raise ValueError(f"Unknown settings: {', '.join(sorted(unknown))}")

        with self._lock:
            self._settings = replace(self._settings, **changes)
            updated = self._settings

        logger.info(f"Settings updated: {', '.join(sorted(changes))}")
        return updated


_settings_store: Optional[SettingsStore] = None


def get_settings_store() -> SettingsStore:
    """Return the process-wide store, initialised from the environment on first use."""
    global _settings_store
    if _settings_store is None:
        _settings_store = SettingsStore(Settings.from_env())
    return _settings_store
