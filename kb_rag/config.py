"""Runtime configuration for kb-rag."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """All tunables, read from ``KB_RAG_*`` environment variables or ``.env``."""

    # Metadata registry
    registry_path: str = "data/registry.db"
    seed_default_kb: bool = True
    default_kb_id: str = "default"
    default_kb_name: str = "Default knowledge base"
    default_kb_description: str = "Built-in knowledge base"

    # Collection id that means "no specific knowledge base selected"
    placeholder_collection: str = "private-knowledge-base"

    # Vector store
    vector_backend: Literal["chroma", "faiss"] = "chroma"
    chroma_host: str = "localhost"
    chroma_port: int = 8000
    faiss_dir: str = "data/vectors"

    # Model services
    ollama_base_url: str = "http://localhost:11434"
    embedding_model: str = "nomic-embed-text"
    chat_model: str = "deepseek-r1:7b"
    temperature: float = 0.7

    # Ingestion and retrieval
    chunk_size: int = Field(default=1000, gt=0)
    chunk_overlap: int = Field(default=200, ge=0)
    embed_batch_size: int = Field(default=32, gt=0)
    top_k: int = Field(default=4, gt=0)
    fallback_on_error: bool = True

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="KB_RAG_",
        env_file=".env",
        extra="ignore",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return Settings()
