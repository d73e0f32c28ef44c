"""Embedding and completion services backed by langchain model clients."""

from __future__ import annotations

import logging
from typing import List, Sequence

from langchain_community.chat_models import ChatOllama
from langchain_community.embeddings import OllamaEmbeddings
from langchain_core.embeddings import Embeddings
from langchain_core.language_models import BaseLanguageModel
from langchain_core.output_parsers import StrOutputParser

from .config import Settings
from .errors import ExternalServiceError

logger = logging.getLogger(__name__)


class EmbeddingService:
    """Maps text to fixed-dimension vectors."""

    def __init__(self, embeddings: Embeddings):
        self._embeddings = embeddings

    def embed_text(self, text: str) -> List[float]:
        try:
            return list(self._embeddings.embed_query(text))
        except Exception as exc:
            raise ExternalServiceError("embedding", f"query embedding failed: {exc}") from exc

    def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        if not texts:
            return []
        try:
            vectors = self._embeddings.embed_documents(list(texts))
        except Exception as exc:
            raise ExternalServiceError("embedding", f"batch embedding failed: {exc}") from exc
        if len(vectors) != len(texts):
            raise ExternalServiceError(
                "embedding",
                f"batch returned {len(vectors)} vector(s) for {len(texts)} text(s)",
            )
        return [list(vector) for vector in vectors]


class CompletionService:
    """Maps a prompt string to the model's answer string."""

    def __init__(self, model: BaseLanguageModel):
        self._chain = model | StrOutputParser()

    def complete(self, prompt: str) -> str:
        try:
            return self._chain.invoke(prompt)
        except Exception as exc:
            raise ExternalServiceError("completion", f"completion failed: {exc}") from exc


def build_embedding_service(settings: Settings) -> EmbeddingService:
    logger.info("Using Ollama embeddings %s at %s", settings.embedding_model, settings.ollama_base_url)
    return EmbeddingService(
        OllamaEmbeddings(
            model=settings.embedding_model,
            base_url=settings.ollama_base_url,
        )
    )


def build_completion_service(settings: Settings) -> CompletionService:
    logger.info("Using Ollama chat model %s at %s", settings.chat_model, settings.ollama_base_url)
    return CompletionService(
        ChatOllama(
            model=settings.chat_model,
            base_url=settings.ollama_base_url,
            temperature=settings.temperature,
        )
    )
