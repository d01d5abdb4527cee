"""
Application Configuration - Environment-based settings

Uses Pydantic Settings for type-safe configuration.
Every value can be overridden from the environment or a local .env file.
"""

from pydantic_settings import BaseSettings
from pydantic import Field
from typing import Optional


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Sensitive values (API keys) MUST come from .env or environment.
    """

    # ─────────────────────────────────────────────
    # Application
    # ─────────────────────────────────────────────
    environment: str = Field(default="development", alias="ENV")
    log_level: str = "WARNING"

    # ─────────────────────────────────────────────
    # LLM (Groq)
    # ─────────────────────────────────────────────
    groq_api_key: Optional[str] = Field(
        default=None,
        alias="GROQ_API_KEY",
        description="Groq API key. Required for all LLM operations.",
    )
    llm_base_url: Optional[str] = Field(
        default=None,
        alias="GROQ_BASE_URL",
        description="Override for the Groq-compatible API endpoint.",
    )
    llm_model: str = Field(
        default="llama-3.3-70b-versatile",
        alias="LLM_MODEL",
        description="Model used for structure extraction and tree search.",
    )
    llm_max_tokens: int = Field(
        default=4096,
        ge=1,
        alias="LLM_MAX_TOKENS",
        description="Maximum completion tokens per call.",
    )
    llm_temperature: float = Field(
        default=0.0,
        ge=0.0,
        le=2.0,
        alias="LLM_TEMPERATURE",
        description="Sampling temperature for every call.",
    )

    # Transport resilience
    llm_timeout_seconds: float = Field(
        default=120.0,
        gt=0,
        description="Overall deadline for one reasoning call, retries included.",
    )
    llm_max_retries: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Retries on transient failures (connection, 429, 5xx).",
    )
    llm_retry_base_delay: float = Field(default=2.0, ge=0)
    llm_retry_max_delay: float = Field(default=30.0, ge=0)

    # ─────────────────────────────────────────────
    # Indexing
    # ─────────────────────────────────────────────
    page_delimiter: str = Field(
        default="\f",
        description="Separator between pages in pre-paginated text files.",
    )
    max_chars_per_page: int = Field(
        default=4000,
        ge=100,
        description="Per-page text cap when assembling the structure prompt.",
    )
    default_index_path: str = Field(
        default="data/tree_index.json",
        description="Where `index` writes and `search`/`show`/`info` read.",
    )

    # ─────────────────────────────────────────────
    # Search
    # ─────────────────────────────────────────────
    search_top_k: int = Field(default=5, ge=1, le=100)
    outline_max_chars: int = Field(
        default=60_000,
        ge=1_000,
        description="Soft bound on the serialized tree outline sent for search.",
    )

    # ─────────────────────────────────────────────
    # Evaluation (tree search vs vector baseline)
    # ─────────────────────────────────────────────
    embedding_model: str = Field(
        default="sentence-transformers/all-MiniLM-L6-v2",
        alias="EMBEDDING_MODEL",
        description="sentence-transformers model for the vector baseline.",
    )
    eval_top_k: int = Field(default=3, ge=1, le=50)
    eval_chunk_size: int = Field(default=512, ge=32)
    eval_chunk_overlap: int = Field(default=50, ge=0)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"
        populate_by_name = True


# Global settings instance
settings = Settings()
