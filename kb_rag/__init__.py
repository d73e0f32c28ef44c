"""kb-rag - retrieval-augmented question answering over managed knowledge bases."""

from .answer import AnswerSynthesizer, NO_CONTEXT
from .config import Settings, get_settings
from .errors import (
    EmptyDocumentError,
    EmptySplitError,
    ExternalServiceError,
    KnowledgeRagError,
    NotFoundError,
    ValidationError,
)
from .ingest import IngestionPipeline
from .registry import MetadataRegistry
from .retrieval import RetrievalEngine
from .schemas import FileRecord, IngestResult, KnowledgeBase
from .service import KnowledgeService

__version__ = "0.1.0"

__all__ = [
    "AnswerSynthesizer",
    "NO_CONTEXT",
    "Settings",
    "get_settings",
    "KnowledgeRagError",
    "ValidationError",
    "NotFoundError",
    "EmptyDocumentError",
    "EmptySplitError",
    "ExternalServiceError",
    "IngestionPipeline",
    "MetadataRegistry",
    "RetrievalEngine",
    "KnowledgeBase",
    "FileRecord",
    "IngestResult",
    "KnowledgeService",
]
