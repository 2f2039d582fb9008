"""
Application Configuration Module

Manages all environment variables and retrieval settings using Pydantic.
Supports multiple environments (development, staging, production).

Environment variables are loaded from .env file or system environment.
"""

from pydantic_settings import BaseSettings
from pydantic import Field
from typing import List, Optional
from functools import lru_cache
from pathlib import Path


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All sensitive values (API keys, credentials) should be set via
    environment variables, never hardcoded.
    """

    # Application Settings
    APP_NAME: str = "docqa"
    APP_ENV: str = Field(default="development", description="development|staging|production")
    APP_HOST: str = Field(default="0.0.0.0", description="Server host")
    APP_PORT: int = Field(default=8010, description="Server port")
    DEBUG: bool = Field(default=True, description="Enable debug mode")
    LOG_LEVEL: str = Field(default="INFO", description="Root log level")

    # Tenancy
    DEFAULT_TENANT: str = Field(default="demo", description="Tenant used when a request names none")

    # API Keys - NEVER commit actual values
    OPENAI_API_KEY: str = Field(default="", description="OpenAI API key for query embeddings")
    JINA_API_KEY: str = Field(default="", description="Jina API key for reranking")
    COHERE_API_KEY: str = Field(default="", description="Cohere API key for reranking")

    # Vector Store Configuration
    QDRANT_HOST: str = Field(default="localhost", description="Qdrant server host")
    QDRANT_PORT: int = Field(default=6333, description="Qdrant server port")
    QDRANT_URL: Optional[str] = Field(default=None, description="Qdrant server URL (overrides host/port)")
    QDRANT_API_KEY: Optional[str] = Field(default=None, description="Qdrant API key for cloud")
    QDRANT_TIMEOUT: int = Field(default=30, description="Qdrant client timeout in seconds")
    QDRANT_CHUNK_COLLECTION: str = Field(default="docqa_chunks", description="Collection holding passages")
    QDRANT_DOCUMENT_COLLECTION: str = Field(default="docqa_documents", description="Collection holding document names")
    LEXICAL_SCAN_LIMIT: int = Field(
        default=1000,
        description="Max term-matching passages scored by BM25 per lexical search"
    )

    # Embedding Configuration
    EMBEDDING_MODEL: str = Field(default="text-embedding-3-small", description="OpenAI embedding model")
    EMBEDDING_DIMENSION: int = Field(default=1536, description="Embedding vector dimension")
    EMBEDDING_CACHE_SIZE: int = Field(default=1024, description="Max cached query embeddings (least recently used evicted)")

    # Reranking Configuration
    RERANK_PROVIDER: str = Field(default="jina", description="jina|cohere|none")
    JINA_RERANK_MODEL: str = Field(
        default="jina-reranker-v2-base-multilingual",
        description="Jina cross-encoder model"
    )
    JINA_RERANK_URL: str = Field(default="https://api.jina.ai/v1/rerank", description="Jina rerank endpoint")
    COHERE_RERANK_MODEL: str = Field(default="rerank-multilingual-v3.0", description="Cohere rerank model")
    RERANK_TIMEOUT_SECONDS: float = Field(default=10.0, description="Reranker deadline; order is kept on timeout")

    # Retrieval Configuration
    RETRIEVAL_TOP_K: int = Field(default=6, description="Number of passages to return")
    RETRIEVAL_DENSE_LIMIT: int = Field(default=200, description="Dense candidate pool size")
    RETRIEVAL_BM25_LIMIT: int = Field(default=20, description="Lexical candidate pool size")
    RETRIEVAL_MAX_PER_DOC: int = Field(default=1, description="Hard cap of passages per document")
    RETRIEVAL_TIMEOUT_SECONDS: float = Field(
        default=30.0,
        description="Deadline for embedding and chunk-store calls"
    )

    # CORS Settings
    CORS_ORIGINS: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8000"],
        description="Allowed CORS origins"
    )

    model_config = {
        "env_file": Path(__file__).parent.parent / ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore"
    }


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.

    Returns:
        Settings instance with all configuration values
    """
    return Settings()


# Global settings instance
settings = get_settings()


def validate_api_keys() -> dict:
    """
    Report which collaborator credentials are configured.

    Returns:
        Dict with validation status for each key
    """
    return {
        "openai": bool(settings.OPENAI_API_KEY),
        "jina": bool(settings.JINA_API_KEY),
        "cohere": bool(settings.COHERE_API_KEY),
        "qdrant": bool(settings.QDRANT_API_KEY) or settings.QDRANT_HOST == "localhost",
    }
