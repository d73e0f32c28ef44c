"""
Vector index adapter.

A :class:`VectorIndex` hands out per-collection handles without revealing
whether the collection already exists: an absent collection yields an
unbound handle that creates the collection on its first write.

Two backends:

- :class:`ChromaVectorIndex` for a Chroma server (one Chroma collection per
  knowledge base)
- :class:`FaissVectorIndex` for local directories holding ``index.faiss``
  and ``records.jsonl``

Store errors are classified by :func:`classify_store_error` so cleanup paths
can treat absence as "nothing to delete" and propagate everything else.
"""

from __future__ import annotations

import enum
import json
import logging
import os
import shutil
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

import chromadb
import faiss
import httpx
import numpy as np
from chromadb.errors import ChromaError
from langchain_core.documents import Document

from .config import Settings
from .errors import ExternalServiceError, ValidationError
from .schemas import ScoredDocument, StoredChunk, VectorRecord

logger = logging.getLogger(__name__)

MetadataFilter = Dict[str, Any]

_ABSENT_ERRORS = {"NotFound", "NotFoundError", "InvalidCollection", "InvalidCollectionException"}
_INVALID_FILTER_ERRORS = {"InvalidArgument", "InvalidArgumentError"}


class StoreErrorKind(enum.Enum):
    ABSENT = "absent"
    INVALID_FILTER = "invalid_filter"
    UNREACHABLE = "unreachable"
    FAILURE = "failure"

    @property
    def benign(self) -> bool:
        """True for kinds that mean "nothing to delete" on cleanup paths."""
        return self is not StoreErrorKind.FAILURE


def _exception_chain(exc: Optional[BaseException]) -> Iterator[BaseException]:
    seen = set()
    while exc is not None and id(exc) not in seen:
        seen.add(id(exc))
        yield exc
        exc = exc.__cause__ or (None if exc.__suppress_context__ else exc.__context__)


def classify_store_error(exc: BaseException) -> StoreErrorKind:
    """Classify a store failure from its error type, walking the cause chain."""
    for error in _exception_chain(exc):
        if isinstance(error, ExternalServiceError) and isinstance(error.store_error_kind, StoreErrorKind):
            return error.store_error_kind
        if isinstance(error, ChromaError):
            name = type(error).name()
            if name in _ABSENT_ERRORS:
                return StoreErrorKind.ABSENT
            if name in _INVALID_FILTER_ERRORS:
                return StoreErrorKind.INVALID_FILTER
            return StoreErrorKind.FAILURE
        if isinstance(error, FileNotFoundError):
            return StoreErrorKind.ABSENT
        if isinstance(error, (ConnectionError, httpx.TransportError, json.JSONDecodeError)):
            return StoreErrorKind.UNREACHABLE
    return StoreErrorKind.FAILURE


def _store_error(action: str, collection_id: str, exc: BaseException) -> ExternalServiceError:
    kind = classify_store_error(exc)
    return ExternalServiceError(
        "vector_store",
        f"{action} on collection '{collection_id}' failed ({kind.value}): {exc}",
        store_error_kind=kind,
    )


def matches_filter(metadata: Dict[str, Any], where: MetadataFilter) -> bool:
    return all(metadata.get(key) == value for key, value in where.items())


class CollectionHandle(ABC):
    """Operations on one collection."""

    collection_id: str

    @abstractmethod
    def upsert(self, records: Sequence[VectorRecord]) -> None:
        """Write records, overwriting any with the same id."""

    @abstractmethod
    def query(self, embedding: Sequence[float], k: int) -> List[ScoredDocument]:
        """Return up to ``k`` nearest records, ascending by distance."""

    @abstractmethod
    def delete_by_filter(self, where: Optional[MetadataFilter] = None) -> None:
        """
        Remove records whose metadata matches ``where``; an empty filter wipes the collection.

        Benign failures (absent collection, rejected filter, unreachable store)
        are logged and treated as nothing to delete.

        Raises:
            ExternalServiceError: For any other store failure
        """

    def _cleanup_failed(self, exc: BaseException, where: Optional[MetadataFilter]) -> None:
        kind = classify_store_error(exc)
        if kind.benign:
            logger.warning(
                "Ignoring vector cleanup failure on '%s' (filter=%s, %s): %s",
                self.collection_id,
                where or {},
                kind.value,
                exc,
            )
            return
        logger.error("Vector cleanup on '%s' failed: %s", self.collection_id, exc)
        raise _store_error("delete", self.collection_id, exc) from exc


class VectorIndex(ABC):
    """Binds collection ids to handles."""

    @abstractmethod
    def open(self, collection_id: str) -> CollectionHandle:
        """Return a handle; never fails because the collection is absent."""


def _to_document(text: Optional[str], metadata: Optional[Dict[str, Any]], collection_id: str) -> Document:
    metadata = dict(metadata or {})
    if not metadata.get("sourceKbId"):
        metadata["sourceKbId"] = collection_id
    return Document(page_content=text or "", metadata=metadata)


# Chroma


def _chroma_where(where: MetadataFilter) -> Dict[str, Any]:
    clauses = [{key: value} for key, value in where.items()]
    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}


def _chroma_metadata(metadata: Dict[str, Any]) -> Dict[str, Any]:
    # Chroma accepts flat scalar metadata only.
    cleaned = {}
    for key, value in metadata.items():
        if value is None:
            continue
        if isinstance(value, (str, int, float, bool)):
            cleaned[key] = value
        else:
            cleaned[key] = json.dumps(value, ensure_ascii=False)
    return cleaned


class ChromaCollectionHandle(CollectionHandle):

    def __init__(self, index: "ChromaVectorIndex", collection_id: str, collection=None):
        self._index = index
        self.collection_id = collection_id
        self._collection = collection

    @property
    def bound(self) -> bool:
        return self._collection is not None

    def _existing(self):
        if self._collection is None:
            self._collection = self._index.client.get_collection(name=self.collection_id)
        return self._collection

    def upsert(self, records: Sequence[VectorRecord]) -> None:
        if not records:
            return
        try:
            if self._collection is None:
                self._collection = self._index.client.get_or_create_collection(name=self.collection_id)
                logger.info("Created collection '%s' on first write", self.collection_id)
            self._collection.upsert(
                ids=[record.id for record in records],
                embeddings=[list(record.embedding) for record in records],
                documents=[record.text for record in records],
                metadatas=[_chroma_metadata(record.metadata) for record in records],
            )
        except Exception as exc:
            raise _store_error("upsert", self.collection_id, exc) from exc

    def query(self, embedding: Sequence[float], k: int) -> List[ScoredDocument]:
        try:
            collection = self._existing()
        except Exception as exc:
            if classify_store_error(exc) is StoreErrorKind.ABSENT:
                return []
            raise _store_error("query", self.collection_id, exc) from exc

        try:
            count = collection.count()
            if count == 0:
                return []
            result = collection.query(
                query_embeddings=[list(embedding)],
                n_results=min(k, count),
                include=["documents", "metadatas", "distances"],
            )
        except Exception as exc:
            raise _store_error("query", self.collection_id, exc) from exc

        documents = (result.get("documents") or [[]])[0] or []
        metadatas = (result.get("metadatas") or [[]])[0] or []
        distances = (result.get("distances") or [[]])[0] or []
        hits: List[ScoredDocument] = []
        for position, text in enumerate(documents):
            metadata = metadatas[position] if position < len(metadatas) else None
            distance = distances[position] if position < len(distances) else None
            hits.append(
                ScoredDocument(
                    document=_to_document(text, metadata, self.collection_id),
                    score=float("inf") if distance is None else float(distance),
                )
            )
        return hits

    def delete_by_filter(self, where: Optional[MetadataFilter] = None) -> None:
        try:
            if not where:
                self._index.client.delete_collection(name=self.collection_id)
                self._collection = None
                logger.info("Deleted collection '%s'", self.collection_id)
            else:
                self._existing().delete(where=_chroma_where(where))
                logger.info("Deleted vectors matching %s from '%s'", where, self.collection_id)
        except Exception as exc:
            self._cleanup_failed(exc, where)


class ChromaVectorIndex(VectorIndex):
    """Collections on a Chroma server; the HTTP client is created on first use."""

    def __init__(self, host: str = "localhost", port: int = 8000, client=None):
        self._host = host
        self._port = port
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = chromadb.HttpClient(host=self._host, port=self._port)
        return self._client

    def open(self, collection_id: str) -> ChromaCollectionHandle:
        try:
            collection = self.client.get_collection(name=collection_id)
            logger.info("Bound to existing collection '%s'", collection_id)
        except Exception as exc:
            logger.warning(
                "Collection '%s' not bound (%s), it will be created on first write",
                collection_id,
                classify_store_error(exc).value,
            )
            collection = None
        return ChromaCollectionHandle(self, collection_id, collection)


# Local FAISS


class FaissCollectionHandle(CollectionHandle):
    """One directory per collection: a flat L2 index plus aligned JSONL records."""

    INDEX_FILE = "index.faiss"
    RECORDS_FILE = "records.jsonl"

    def __init__(self, collection_dir: Path, collection_id: str):
        self._dir = collection_dir
        self.collection_id = collection_id

    @property
    def exists(self) -> bool:
        return (self._dir / self.INDEX_FILE).exists() and (self._dir / self.RECORDS_FILE).exists()

    def _load(self) -> Tuple[Optional[faiss.Index], List[StoredChunk]]:
        if not self.exists:
            return None, []

        index = faiss.read_index(str(self._dir / self.INDEX_FILE))
        records: List[StoredChunk] = []
        with open(self._dir / self.RECORDS_FILE, "r", encoding="utf-8") as f:
            for line in f:
                if line.strip():
                    records.append(StoredChunk.model_validate_json(line))

        if index.ntotal != len(records):
            raise RuntimeError(
                f"Index holds {index.ntotal} vector(s) but {len(records)} record(s) in {self._dir}"
            )
        return index, records

    @staticmethod
    def _vectors(index: Optional[faiss.Index]) -> List[np.ndarray]:
        if index is None or index.ntotal == 0:
            return []
        return list(index.reconstruct_n(0, index.ntotal))

    def _write(self, records: List[StoredChunk], vectors: List[np.ndarray]) -> None:
        if not records:
            shutil.rmtree(self._dir, ignore_errors=True)
            return

        matrix = np.vstack(vectors).astype("float32")
        index = faiss.IndexFlatL2(matrix.shape[1])
        index.add(matrix)

        self._dir.mkdir(parents=True, exist_ok=True)
        index_tmp = self._dir / f"{self.INDEX_FILE}.tmp"
        records_tmp = self._dir / f"{self.RECORDS_FILE}.tmp"
        faiss.write_index(index, str(index_tmp))
        with open(records_tmp, "w", encoding="utf-8") as handle:
            for record in records:
                handle.write(record.model_dump_json())
                handle.write("\n")
        os.replace(index_tmp, self._dir / self.INDEX_FILE)
        os.replace(records_tmp, self._dir / self.RECORDS_FILE)

    def upsert(self, records: Sequence[VectorRecord]) -> None:
        if not records:
            return
        try:
            index, stored = self._load()
            vectors = self._vectors(index)
            positions = {record.id: position for position, record in enumerate(stored)}
            for record in records:
                entry = StoredChunk(id=record.id, text=record.text, metadata=record.metadata)
                vector = np.asarray(record.embedding, dtype="float32")
                if record.id in positions:
                    stored[positions[record.id]] = entry
                    vectors[positions[record.id]] = vector
                else:
                    positions[record.id] = len(stored)
                    stored.append(entry)
                    vectors.append(vector)
            if index is None:
                logger.info("Created collection '%s' on first write", self.collection_id)
            self._write(stored, vectors)
        except Exception as exc:
            raise _store_error("upsert", self.collection_id, exc) from exc

    def query(self, embedding: Sequence[float], k: int) -> List[ScoredDocument]:
        try:
            index, stored = self._load()
            if index is None or index.ntotal == 0:
                return []
            query_array = np.array([list(embedding)], dtype="float32")
            distances, positions = index.search(query_array, min(k, index.ntotal))
        except Exception as exc:
            raise _store_error("query", self.collection_id, exc) from exc

        hits: List[ScoredDocument] = []
        for position, distance in zip(positions[0], distances[0]):
            if position == -1:
                break
            record = stored[int(position)]
            hits.append(
                ScoredDocument(
                    document=_to_document(record.text, record.metadata, self.collection_id),
                    score=float(distance),
                )
            )
        return hits

    def delete_by_filter(self, where: Optional[MetadataFilter] = None) -> None:
        try:
            if not self._dir.exists():
                raise FileNotFoundError(f"Collection directory not found: {self._dir}")
            if not where:
                shutil.rmtree(self._dir)
                logger.info("Deleted collection '%s'", self.collection_id)
                return
            index, stored = self._load()
            vectors = self._vectors(index)
            kept = [
                (record, vector)
                for record, vector in zip(stored, vectors)
                if not matches_filter(record.metadata, where)
            ]
            self._write([record for record, _ in kept], [vector for _, vector in kept])
            logger.info(
                "Deleted %d vector(s) matching %s from '%s'",
                len(stored) - len(kept),
                where,
                self.collection_id,
            )
        except Exception as exc:
            self._cleanup_failed(exc, where)


class FaissVectorIndex(VectorIndex):
    """Collections stored under ``root_dir/<collection_id>``."""

    def __init__(self, root_dir: str):
        self._root = Path(root_dir)

    def open(self, collection_id: str) -> FaissCollectionHandle:
        if not collection_id or collection_id in (".", "..") or os.sep in collection_id or "/" in collection_id:
            raise ValidationError(f"Invalid collection id: {collection_id!r}")
        handle = FaissCollectionHandle(self._root / collection_id, collection_id)
        if handle.exists:
            logger.info("Bound to existing collection '%s'", collection_id)
        else:
            logger.info("Collection '%s' not found, it will be created on first write", collection_id)
        return handle


def build_vector_index(settings: Settings) -> VectorIndex:
    if settings.vector_backend == "faiss":
        return FaissVectorIndex(settings.faiss_dir)
    return ChromaVectorIndex(host=settings.chroma_host, port=settings.chroma_port)
