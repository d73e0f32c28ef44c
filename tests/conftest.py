"""Shared fixtures and fake collaborators."""

from typing import Dict, List, Optional

import pytest
from langchain_core.documents import Document

from kb_rag.answer import AnswerSynthesizer
from kb_rag.errors import ExternalServiceError
from kb_rag.ingest import IngestionPipeline
from kb_rag.registry import MetadataRegistry
from kb_rag.retrieval import RetrievalEngine
from kb_rag.schemas import ScoredDocument, VectorRecord
from kb_rag.service import KnowledgeService
from kb_rag.vector_store import CollectionHandle, VectorIndex, matches_filter


def scored(text: str, score: float, kb_id: str = "kb") -> ScoredDocument:
    return ScoredDocument(
        document=Document(page_content=text, metadata={"sourceKbId": kb_id}),
        score=score,
    )


class FakeEmbeddingService:
    """Deterministic three-dimensional vectors."""

    def __init__(self, fail_on_batch: Optional[int] = None):
        self.fail_on_batch = fail_on_batch
        self.text_calls: List[str] = []
        self.batch_calls: List[List[str]] = []

    @staticmethod
    def vector(text: str) -> List[float]:
        return [float(len(text) % 13), float(sum(map(ord, text)) % 17), 1.0]

    def embed_text(self, text):
        self.text_calls.append(text)
        return self.vector(text)

    def embed_batch(self, texts):
        self.batch_calls.append(list(texts))
        if self.fail_on_batch is not None and len(self.batch_calls) == self.fail_on_batch:
            raise ExternalServiceError("embedding", "model unavailable")
        return [self.vector(text) for text in texts]


class FakeHandle(CollectionHandle):

    def __init__(self, index: "FakeVectorIndex", collection_id: str):
        self._index = index
        self.collection_id = collection_id

    def upsert(self, records):
        if self._index.upsert_failure is not None:
            raise self._index.upsert_failure
        self._index.upserts.append((self.collection_id, list(records)))
        stored = self._index.records.setdefault(self.collection_id, {})
        for record in records:
            stored[record.id] = record

    def query(self, embedding, k):
        self._index.query_calls.append(self.collection_id)
        if self.collection_id in self._index.query_failures:
            raise self._index.query_failures[self.collection_id]
        if self.collection_id in self._index.results:
            return list(self._index.results[self.collection_id])[:k]
        hits = []
        for record in self._index.records.get(self.collection_id, {}).values():
            distance = sum((a - b) ** 2 for a, b in zip(record.embedding, embedding))
            hits.append(
                ScoredDocument(
                    document=Document(page_content=record.text, metadata=dict(record.metadata)),
                    score=distance,
                )
            )
        return sorted(hits, key=lambda hit: hit.score)[:k]

    def delete_by_filter(self, where=None):
        self._index.delete_calls.append((self.collection_id, dict(where or {})))
        if self._index.delete_failure is not None:
            raise self._index.delete_failure
        stored = self._index.records.get(self.collection_id, {})
        if not where:
            self._index.records.pop(self.collection_id, None)
            return
        for record_id in [rid for rid, rec in stored.items() if matches_filter(rec.metadata, where)]:
            del stored[record_id]


class FakeVectorIndex(VectorIndex):
    """In-memory collections with scripted results and failures."""

    def __init__(self):
        self.records: Dict[str, Dict[str, VectorRecord]] = {}
        self.results: Dict[str, List[ScoredDocument]] = {}
        self.query_failures: Dict[str, Exception] = {}
        self.upsert_failure: Optional[Exception] = None
        self.delete_failure: Optional[Exception] = None
        self.opened: List[str] = []
        self.query_calls: List[str] = []
        self.delete_calls: List[tuple] = []
        self.upserts: List[tuple] = []

    def open(self, collection_id):
        self.opened.append(collection_id)
        return FakeHandle(self, collection_id)


class FakeCompletionService:

    def __init__(self, response: str = "mocked answer"):
        self.response = response
        self.prompts: List[str] = []

    def complete(self, prompt):
        self.prompts.append(prompt)
        return self.response


@pytest.fixture
def registry(tmp_path):
    return MetadataRegistry(tmp_path / "registry.db")


@pytest.fixture
def embeddings():
    return FakeEmbeddingService()


@pytest.fixture
def vector_index():
    return FakeVectorIndex()


@pytest.fixture
def completion():
    return FakeCompletionService()


@pytest.fixture
def engine(embeddings, vector_index, registry):
    return RetrievalEngine(embeddings, vector_index, registry)


@pytest.fixture
def service(registry, vector_index, embeddings, completion):
    pipeline = IngestionPipeline(embeddings, vector_index, show_progress=False)
    engine = RetrievalEngine(embeddings, vector_index, registry)
    return KnowledgeService(
        registry,
        vector_index,
        pipeline,
        engine,
        AnswerSynthesizer(completion),
    )
