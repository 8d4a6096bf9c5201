"""Application settings loaded from environment variables via pydantic-settings.

# ─── HOW SETTINGS WORK ────────────────────────────────────────────────
#
# pydantic-settings reads configuration from (highest priority first):
#
#   1. Environment variables  -- e.g. OPENAI_API_KEY=sk-abc123
#   2. .env file              -- key=value lines in the working directory
#   3. config/config.yaml     -- optional static defaults (see loader.py)
#   4. Field defaults below
#
# Field ``openai_api_key`` maps to env var ``OPENAI_API_KEY``.
#
# Every recognized option is a named, typed field.  Cross-field rules that
# a single field type cannot express live in validate_for_startup(), which
# the composition root calls exactly once before building any provider.
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from chatapp.utils.errors import ConfigurationError


class Settings(BaseSettings):
    """chatapp settings.

    Environment variables override defaults. Loaded from .env file when present.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # === Document source ===
    data_dir: str = "./data/documents"
    source_id: str = "documents"
    source_patterns: list[str] = Field(default_factory=lambda: ["*.pdf", "*.txt", "*.md"])

    # === Embedding gateway ===
    embedding_provider: Literal["openai", "fastembed"] = "openai"
    # Empty string = "not configured"; validate_for_startup() rejects it
    # when the openai provider is selected.
    openai_api_key: str = ""
    openai_base_url: str = ""  # OpenAI-compatible endpoint (GitHub Models, Azure inference, ...)
    openai_embedding_model: str = "text-embedding-3-small"
    fastembed_model: str = "BAAI/bge-small-en-v1.5"
    embedding_batch_size: int = Field(default=32, ge=1)
    embedding_max_retries: int = Field(default=3, ge=0)
    embedding_retry_backoff_s: float = Field(default=1.0, ge=0.0)
    embedding_timeout_s: float = Field(default=30.0, gt=0.0)

    # === Vector index store ===
    vector_store_backend: Literal["sqlite", "chromadb"] = "sqlite"
    sqlite_db_path: str = "./data/vector-store.db"
    chromadb_persist_dir: str = "./data/chromadb"
    chromadb_collection_prefix: str = "chatapp"

    # === Chunking ===
    chunk_size: int = 200
    chunk_overlap: int = 0

    # === Ingestion ===
    ingestion_concurrency: int = Field(default=4, ge=1)
    ingest_on_startup: bool = True

    # === Search ===
    search_default_top_k: int = Field(default=5, ge=1)
    search_max_top_k: int = Field(default=50, ge=1)

    # === App Config ===
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    app_env: str = "development"
    log_level: str = "INFO"

    def validate_for_startup(self) -> None:
        """Check cross-field rules and raise :class:`ConfigurationError`.

        Called once by the composition root; a failure here means no
        ingestion run is attempted at all.
        """
        problems: list[str] = []

        if self.embedding_provider == "openai" and not self.openai_api_key:
            problems.append("OPENAI_API_KEY is required when EMBEDDING_PROVIDER=openai")
        if self.chunk_size <= 0:
            problems.append(f"CHUNK_SIZE must be positive, got {self.chunk_size}")
        if self.chunk_overlap < 0 or self.chunk_overlap >= max(self.chunk_size, 1):
            problems.append(
                f"CHUNK_OVERLAP must be in [0, CHUNK_SIZE), got {self.chunk_overlap}"
            )
        if self.search_default_top_k > self.search_max_top_k:
            problems.append("SEARCH_DEFAULT_TOP_K must not exceed SEARCH_MAX_TOP_K")
        if not self.source_patterns:
            problems.append("SOURCE_PATTERNS must list at least one glob pattern")
        if not self.source_id.strip():
            problems.append("SOURCE_ID must not be blank")

        if problems:
            raise ConfigurationError(message="; ".join(problems))
