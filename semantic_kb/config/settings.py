"""Application settings loaded from environment variables via pydantic-settings.

Sources, highest priority first:

  1. **Environment variables** — e.g. ``INGESTION_BATCH_SIZE=50``
  2. **.env file** — key=value lines in the working directory's .env file
  3. **Config file values** — passed in by :func:`semantic_kb.config.loader.load_config`
  4. Field defaults below

The mapping is automatic: field ``search_cache_ttl_seconds`` maps to env var
``SEARCH_CACHE_TTL_SECONDS``.
"""

from __future__ import annotations

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict


class Settings(BaseSettings):
    """semantic-kb settings.

    Environment variables override config-file values, which override defaults.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # === Storage ===
    chromadb_persist_dir: str = "./data/chromadb"
    registry_db_path: str = "./data/registry.db"
    schema_version: str = Field(default="1.0.0", pattern=r"^\d+\.\d+\.\d+$")

    # === Embedding ===
    # "fastembed" | "sentence-transformers" | "openai".  Empty model = provider default.
    embedding_provider: str = "fastembed"
    embedding_model: str = ""
    openai_api_key: str = ""
    openai_base_url: str = ""

    # === Ingestion ===
    ingestion_batch_size: int = Field(default=100, ge=1)
    ingestion_max_file_size: int = Field(default=1_048_576, ge=1)
    ingestion_lock_ttl_seconds: float = Field(default=3600.0, gt=0)
    # "documents" or "code" — selects the scanner's extension table.
    ingestion_profile: str = Field(default="documents", pattern=r"^(documents|code)$")

    # === Search ===
    search_default_max_results: int = Field(default=50, ge=1)
    search_cache_ttl_seconds: float = Field(default=60.0, gt=0)
    search_cache_max_entries: int = Field(default=1000, ge=1)

    # === Document processing ===
    document_conversion_timeout: float = Field(default=30.0, gt=0)
    document_max_tokens: int = Field(default=512, ge=1)
    document_chunk_size: int = Field(default=1000, ge=1)
    document_chunk_overlap: int = Field(default=200, ge=0)

    # === App ===
    app_env: str = "development"
    log_level: str = "INFO"

    @model_validator(mode="after")
    def _check_overlap(self) -> Settings:
        if self.document_chunk_overlap >= self.document_chunk_size:
            raise ValueError("document_chunk_overlap must be smaller than document_chunk_size")
        return self

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Constructor kwargs carry config-file values, so they rank below env.
        return env_settings, dotenv_settings, init_settings, file_secret_settings
