"""Transport-independent operations over knowledge bases, files and questions."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from .answer import AnswerSynthesizer
from .config import Settings, get_settings
from .errors import NotFoundError, ValidationError
from .ingest import IngestionPipeline
from .llm import build_completion_service, build_embedding_service
from .loader import load_document, normalize_type, type_from_filename
from .registry import MetadataRegistry
from .retrieval import RetrievalEngine
from .schemas import FileRecord, IngestResult, KnowledgeBase
from .splitter import LayeredTextSplitter
from .utils import new_id
from .vector_store import VectorIndex, build_vector_index

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CleanupTask:
    """Remove the vectors of one file, or of a whole collection; safe to re-run."""

    collection_id: str
    source_file_id: Optional[str] = None

    @property
    def where(self) -> Dict[str, str]:
        if self.source_file_id:
            return {"sourceFileId": self.source_file_id}
        return {}

    def run(self, vector_index: VectorIndex) -> None:
        vector_index.open(self.collection_id).delete_by_filter(self.where)


class KnowledgeService:
    """
    Entry point for callers.

    Metadata deletion commits first. The paired vector cleanup runs afterwards
    and, when it fails, is queued in the registry instead of failing the call.
    """

    def __init__(
        self,
        registry: MetadataRegistry,
        vector_index: VectorIndex,
        pipeline: IngestionPipeline,
        engine: RetrievalEngine,
        synthesizer: AnswerSynthesizer,
        top_k: int = 4,
    ):
        self.registry = registry
        self.vector_index = vector_index
        self.pipeline = pipeline
        self.engine = engine
        self.synthesizer = synthesizer
        self.top_k = top_k

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "KnowledgeService":
        settings = settings or get_settings()
        registry = MetadataRegistry.from_settings(settings)
        vector_index = build_vector_index(settings)
        embeddings = build_embedding_service(settings)
        pipeline = IngestionPipeline(
            embeddings,
            vector_index,
            splitter=LayeredTextSplitter(settings.chunk_size, settings.chunk_overlap),
            batch_size=settings.embed_batch_size,
        )
        engine = RetrievalEngine(
            embeddings,
            vector_index,
            registry,
            placeholder_collection=settings.placeholder_collection,
            fallback_on_error=settings.fallback_on_error,
        )
        synthesizer = AnswerSynthesizer(build_completion_service(settings))
        return cls(registry, vector_index, pipeline, engine, synthesizer, top_k=settings.top_k)

    def _require_kb(self, kb_id: Optional[str]) -> KnowledgeBase:
        if not kb_id:
            raise ValidationError("Knowledge base ID is required")
        kb = self.registry.get_knowledge_base(kb_id)
        if kb is None:
            raise NotFoundError(f"Knowledge base not found: {kb_id}")
        return kb

    def _cleanup(self, task: CleanupTask) -> None:
        try:
            task.run(self.vector_index)
        except Exception as exc:
            logger.warning(
                "Vector cleanup for %s failed, queued for retry: %s", task, exc
            )
            self.registry.add_pending_cleanup(task.collection_id, task.source_file_id, str(exc))

    # Knowledge bases

    def list_knowledge_bases(self) -> List[KnowledgeBase]:
        return self.registry.list_knowledge_bases()

    def create_knowledge_base(self, name: str, description: str = "") -> KnowledgeBase:
        if not name or not name.strip():
            raise ValidationError("Name is required")
        return self.registry.create_knowledge_base(name.strip(), description or "")

    def delete_knowledge_base(self, kb_id: str) -> List[FileRecord]:
        """Delete the knowledge base and its files, then wipe its collection."""
        self._require_kb(kb_id)
        removed = self.registry.delete_knowledge_base(kb_id)
        self._cleanup(CleanupTask(kb_id))
        return removed

    # Files

    def list_files(self, kb_id: str) -> List[FileRecord]:
        return self.registry.list_files(kb_id)

    def add_file(self, kb_id: str, filename: str, storage_path: str, file_type: str = "text") -> FileRecord:
        self._require_kb(kb_id)
        return self.registry.add_file(kb_id, filename, storage_path, normalize_type(file_type))

    def delete_file(self, kb_id: str, file_id: str) -> FileRecord:
        """Delete the file record, then its vectors."""
        record = self.registry.delete_file(kb_id, file_id)
        if record is None:
            raise NotFoundError("File not found in knowledge base")
        self._cleanup(CleanupTask(kb_id, file_id))
        return record

    # Ingestion

    def ingest_file(self, kb_id: str, filename: str, storage_path: str) -> IngestResult:
        """
        Record a staged upload and ingest it into its knowledge base.

        A file that cannot be loaded is not recorded. Once loaded, the record
        is kept even when embedding or storage fails.
        """
        self._require_kb(kb_id)
        declared_type = type_from_filename(filename)
        text = load_document(storage_path, declared_type)
        record = self.registry.add_file(kb_id, filename, storage_path, declared_type)
        return self.pipeline.ingest(
            text,
            declared_type,
            kb_id,
            {"sourceFileId": record.id, "sourceKbId": kb_id, "source": filename},
        )

    def ingest_text(self, kb_id: str, text: str, source: str = "inline.txt") -> IngestResult:
        """Ingest already loaded content, tagged with a fresh source id."""
        self._require_kb(kb_id)
        return self.pipeline.ingest(
            text,
            "text",
            kb_id,
            {"sourceFileId": new_id(), "sourceKbId": kb_id, "source": source},
        )

    # Questions

    def ask(self, question: str, kb_id: Optional[str] = None) -> str:
        """Answer ``question``, preferring ``kb_id`` when given."""
        if not question or not question.strip():
            raise ValidationError("Question is required")
        if kb_id and kb_id != self.engine.placeholder_collection:
            self._require_kb(kb_id)
        documents = self.engine.retrieve(question, kb_id, k=self.top_k)
        return self.synthesizer.synthesize(question, documents)

    # Maintenance

    def retry_pending_cleanups(self) -> int:
        """
        Re-run queued vector cleanups.

        Returns:
            Number of cleanups that completed and were dequeued.
        """
        completed = 0
        for pending in self.registry.list_pending_cleanups():
            task = CleanupTask(pending.collection_id, pending.source_file_id)
            try:
                task.run(self.vector_index)
            except Exception as exc:
                logger.warning("Cleanup %s still failing: %s", task, exc)
                self.registry.add_pending_cleanup(task.collection_id, task.source_file_id, str(exc))
                continue
            self.registry.remove_pending_cleanup(task.collection_id, task.source_file_id)
            completed += 1
        return completed
