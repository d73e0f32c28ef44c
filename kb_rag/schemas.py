"""Data schemas for kb-rag."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Optional

from langchain_core.documents import Document
from pydantic import BaseModel, ConfigDict, Field


class KnowledgeBase(BaseModel):
    """A named collection of ingested documents; ``id`` doubles as the vector collection."""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    description: str = ""
    created_at: str = Field(alias="createdAt")


class FileRecord(BaseModel):
    """A staged source file that belongs to one knowledge base."""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    kb_id: str = Field(alias="kbId")
    filename: str
    storage_path: str = Field(alias="path")
    type: Literal["text"] = "text"
    uploaded_at: str = Field(alias="uploadedAt")


class Chunk(BaseModel):
    """A bounded fragment of a source document, produced during ingestion only."""
    text: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class VectorRecord(BaseModel):
    """The stored form of a chunk inside a vector collection."""
    id: str
    embedding: List[float]
    text: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class StoredChunk(BaseModel):
    """A vector record as persisted beside a local FAISS index; the embedding lives in the index."""
    id: str
    text: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class IngestResult(BaseModel):
    """Outcome of one ingestion call."""
    collection_id: str
    chunk_count: int
    source_file_id: Optional[str] = None


class PendingCleanup(BaseModel):
    """A vector cleanup that failed and waits to be replayed."""
    collection_id: str
    source_file_id: Optional[str] = None
    attempts: int = 1
    last_error: str = ""
    created_at: str


@dataclass
class ScoredDocument:
    """Query hit; lower ``score`` means more similar."""
    document: Document
    score: float
