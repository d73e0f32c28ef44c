"""Ingest text documents into a knowledge base collection."""

from __future__ import annotations

import logging
import sys
from typing import Any, Dict, List, Optional

from tqdm import tqdm

from .errors import ExternalServiceError
from .llm import EmbeddingService
from .loader import load_document, load_text
from .schemas import Chunk, IngestResult, VectorRecord
from .splitter import LayeredTextSplitter
from .utils import build_chunk_id, iter_batches, new_id
from .vector_store import VectorIndex

logger = logging.getLogger(__name__)


class IngestionPipeline:
    """Load, split, tag, embed and store."""

    def __init__(
        self,
        embeddings: EmbeddingService,
        vector_index: VectorIndex,
        splitter: Optional[LayeredTextSplitter] = None,
        batch_size: int = 32,
        show_progress: Optional[bool] = None,
    ):
        self._embeddings = embeddings
        self._vector_index = vector_index
        self._splitter = splitter or LayeredTextSplitter()
        self._batch_size = batch_size
        self._show_progress = sys.stderr.isatty() if show_progress is None else show_progress

    def split(self, text: str, provenance: Optional[Dict[str, Any]] = None) -> List[Chunk]:
        tags = {key: value for key, value in (provenance or {}).items() if value is not None}
        return self._splitter.split(text, metadata=tags)

    def ingest(
        self,
        raw_text: str,
        declared_type: str,
        collection_id: str,
        provenance: Optional[Dict[str, Any]] = None,
    ) -> IngestResult:
        """
        Ingest in-memory text into ``collection_id``.

        Args:
            raw_text: Document content, taken verbatim
            declared_type: Declared type (``text``)
            collection_id: Target collection (knowledge base id)
            provenance: Tags merged into every chunk, e.g. ``sourceFileId``, ``sourceKbId``

        Returns:
            IngestResult with the number of chunks written

        Raises:
            ValidationError: If the declared type is not supported
            EmptyDocumentError: If the content is empty
            EmptySplitError: If splitting produced nothing
            ExternalServiceError: If embedding or writing fails; chunks already written stay
        """
        text = load_text(raw_text, declared_type)
        return self._store(text, collection_id, provenance)

    def ingest_path(
        self,
        path: str,
        declared_type: str,
        collection_id: str,
        provenance: Optional[Dict[str, Any]] = None,
    ) -> IngestResult:
        """Same as :meth:`ingest` for a staged file on disk."""
        logger.info("Loading %s (%s) for collection '%s'", path, declared_type, collection_id)
        text = load_document(path, declared_type)
        return self._store(text, collection_id, provenance)

    def _store(
        self,
        text: str,
        collection_id: str,
        provenance: Optional[Dict[str, Any]],
    ) -> IngestResult:
        chunks = self.split(text, provenance)
        logger.info("Split %d character(s) into %d chunk(s)", len(text), len(chunks))

        source_id = str((provenance or {}).get("sourceFileId") or new_id())
        handle = self._vector_index.open(collection_id)

        written = 0
        try:
            with tqdm(total=len(chunks), desc="Embedding chunks", disable=not self._show_progress) as progress:
                for batch in iter_batches(chunks, self._batch_size):
                    vectors = self._embeddings.embed_batch([chunk.text for chunk in batch])
                    records = [
                        VectorRecord(
                            id=build_chunk_id(collection_id, source_id, written + offset),
                            embedding=vector,
                            text=chunk.text,
                            metadata=chunk.metadata,
                        )
                        for offset, (chunk, vector) in enumerate(zip(batch, vectors))
                    ]
                    handle.upsert(records)
                    written += len(records)
                    progress.update(len(records))
        except ExternalServiceError:
            logger.error(
                "Ingestion into '%s' failed after %d of %d chunk(s)",
                collection_id,
                written,
                len(chunks),
            )
            raise

        logger.info("Stored %d chunk(s) in collection '%s'", written, collection_id)
        return IngestResult(
            collection_id=collection_id,
            chunk_count=written,
            source_file_id=(provenance or {}).get("sourceFileId"),
        )
