"""
Configuration module using Pydantic Settings.

Loads provider credentials, model names and pipeline thresholds from
environment variables. Supports .env files for local development.
"""

from functools import lru_cache

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_PERSONA_DESCRIPTION = (
    "a software engineer working on AI and machine learning projects, "
    "answering questions about their own background, skills and work"
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    # Chat completion (OpenAI-compatible endpoint, Groq by default)
    groq_api_key: str = Field(
        "", validation_alias=AliasChoices("groq_api_key", "vite_groq_api_key")
    )
    completion_base_url: str = "https://api.groq.com/openai/v1"
    completion_model: str = "llama-3.3-70b-versatile"
    completion_fallback_model: str = "llama-3.1-8b-instant"
    temperature: float = 0.5
    max_tokens: int = 500
    general_temperature: float = 0.7
    general_max_tokens: int = 1000
    top_p: float = 1.0
    frequency_penalty: float = 0.0
    presence_penalty: float = 0.0
    completion_timeout: float = 30.0

    # Embeddings (feature-extraction endpoint)
    huggingface_api_key: str = Field(
        "",
        validation_alias=AliasChoices(
            "huggingface_api_key", "vite_huggingface_api_key"
        ),
    )
    embedding_api_url: str = "https://router.huggingface.co/hf-inference/models"
    embedding_model: str = "sentence-transformers/all-MiniLM-L6-v2"
    embedding_max_length: int = 512
    embedding_timeout: float = 10.0
    embedding_cache_enabled: bool = True

    # Vector index
    pinecone_api_key: str = Field(
        "", validation_alias=AliasChoices("pinecone_api_key", "vite_pinecone_api_key")
    )
    pinecone_index: str = Field(
        "", validation_alias=AliasChoices("pinecone_index", "vite_pinecone_index")
    )
    pinecone_host: str = Field(
        "", validation_alias=AliasChoices("pinecone_host", "vite_pinecone_host")
    )
    pinecone_namespace: str = ""
    pinecone_api_version: str = "2024-07"
    vector_timeout: float = 10.0
    min_score: float = 0.65
    top_k: int = 3
    upsert_batch_size: int = 100
    strict_retrieval: bool = False

    # Pipeline
    request_deadline: float = 45.0
    history_window: int = 6
    persona_name: str = "Dhanesh"
    persona_description: str = DEFAULT_PERSONA_DESCRIPTION

    # Provider initialization
    init_max_attempts: int = 3
    init_backoff_base: float = 1.0
    init_backoff_max: float = 10.0

    # App
    environment: str = "production"
    debug: bool = False
    log_level: str = "INFO"
    allowed_origins: str = "http://localhost:3000,http://localhost:5173"
    otel_console_export: bool = False

    @property
    def cors_origins(self) -> list[str]:
        """Parse comma-separated CORS origins into a list."""
        return [origin.strip() for origin in self.allowed_origins.split(",")]

    @property
    def is_development(self) -> bool:
        return self.debug or self.environment.lower() == "development"


@lru_cache()
def get_settings() -> Settings:
    """Factory for cached settings instance."""
    return Settings()
