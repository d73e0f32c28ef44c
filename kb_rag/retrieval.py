"""Two-phase retrieval: the selected collection first, then every collection."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Union

from langchain_core.documents import Document

from .errors import ExternalServiceError
from .llm import EmbeddingService
from .registry import MetadataRegistry
from .schemas import ScoredDocument
from .vector_store import VectorIndex

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Hit:
    results: List[ScoredDocument] = field(default_factory=list)


@dataclass(frozen=True)
class Empty:
    pass


@dataclass(frozen=True)
class Failed:
    reason: str
    error: Optional[BaseException] = None


SearchOutcome = Union[Hit, Empty, Failed]


def merge_by_score(results: Sequence[ScoredDocument], k: int) -> List[ScoredDocument]:
    """Top ``k`` ascending by score; ties keep their input order."""
    return sorted(results, key=lambda item: item.score)[:k]


class RetrievalEngine:
    """
    Retrieve passages for a question.

    Phase 1 queries the selected collection and returns its hits when there
    are any. Phase 2 queries every registered knowledge base, skipping those
    that fail, and keeps the ``k`` closest hits overall.

    A failed phase 1 falls back like an empty one unless ``fallback_on_error``
    is off, in which case the failure is raised.
    """

    def __init__(
        self,
        embeddings: EmbeddingService,
        vector_index: VectorIndex,
        registry: MetadataRegistry,
        placeholder_collection: Optional[str] = "private-knowledge-base",
        fallback_on_error: bool = True,
    ):
        self._embeddings = embeddings
        self._vector_index = vector_index
        self._registry = registry
        self.placeholder_collection = placeholder_collection
        self._fallback_on_error = fallback_on_error

    def search_collection(self, collection_id: str, embedding: Sequence[float], k: int) -> SearchOutcome:
        """Query one collection; failures are returned as ``Failed``, never raised."""
        try:
            results = self._vector_index.open(collection_id).query(embedding, k)
        except Exception as exc:
            return Failed(reason=str(exc), error=exc)
        if not results:
            return Empty()
        return Hit(results=results)

    def retrieve(self, question: str, collection_id: Optional[str] = None, k: int = 4) -> List[Document]:
        """Documents for ``question``, closest first. See :meth:`retrieve_scored`."""
        return [item.document for item in self.retrieve_scored(question, collection_id, k)]

    def retrieve_scored(
        self,
        question: str,
        collection_id: Optional[str] = None,
        k: int = 4,
    ) -> List[ScoredDocument]:
        """
        Raises:
            ExternalServiceError: If the question cannot be embedded, or phase 1
                fails while ``fallback_on_error`` is off
        """
        embedding = self._embeddings.embed_text(question)

        if collection_id and collection_id != self.placeholder_collection:
            outcome = self.search_collection(collection_id, embedding, k)
            if isinstance(outcome, Hit):
                logger.info("Found %d result(s) in '%s'", len(outcome.results), collection_id)
                return outcome.results[:k]
            if isinstance(outcome, Failed):
                if not self._fallback_on_error:
                    raise ExternalServiceError(
                        "vector_store", f"search in '{collection_id}' failed: {outcome.reason}"
                    ) from outcome.error
                logger.warning(
                    "Search in '%s' failed, falling back to all knowledge bases: %s",
                    collection_id,
                    outcome.reason,
                )
            else:
                logger.info("No results in '%s', falling back to all knowledge bases", collection_id)

        return self._search_all(embedding, k)

    def _search_all(self, embedding: Sequence[float], k: int) -> List[ScoredDocument]:
        knowledge_bases = self._registry.list_knowledge_bases()
        if not knowledge_bases:
            logger.warning("No knowledge bases registered, nothing to search")
            return []

        aggregated: List[ScoredDocument] = []
        for kb in knowledge_bases:
            outcome = self.search_collection(kb.id, embedding, k)
            if isinstance(outcome, Hit):
                aggregated.extend(outcome.results)
            elif isinstance(outcome, Failed):
                logger.warning("Skipping knowledge base '%s': %s", kb.id, outcome.reason)

        top = merge_by_score(aggregated, k)
        if not top:
            logger.warning("Global search returned no documents")
        else:
            logger.info("Global search kept %d of %d result(s)", len(top), len(aggregated))
        return top
