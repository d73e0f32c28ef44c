"""Tests for the ingestion pipeline."""

import pytest

from conftest import FakeEmbeddingService
from kb_rag.errors import EmptyDocumentError, ExternalServiceError, NotFoundError, ValidationError
from kb_rag.ingest import IngestionPipeline
from kb_rag.splitter import LayeredTextSplitter

PROVENANCE = {"sourceFileId": "file-1", "sourceKbId": "kb-1"}


def _pipeline(embeddings, vector_index, **kwargs):
    return IngestionPipeline(embeddings, vector_index, show_progress=False, **kwargs)


def test_short_document_is_one_chunk(embeddings, vector_index):
    """Test ingesting a document shorter than one chunk."""
    result = _pipeline(embeddings, vector_index).ingest("A. B. C.", "text", "kb-1", PROVENANCE)

    assert result.chunk_count == 1
    assert result.collection_id == "kb-1"
    assert result.source_file_id == "file-1"
    [(collection_id, records)] = vector_index.upserts
    assert collection_id == "kb-1"
    assert records[0].text == "A. B. C."
    assert records[0].metadata["sourceFileId"] == "file-1"
    assert records[0].metadata["sourceKbId"] == "kb-1"
    assert records[0].metadata["startIndex"] == 0
    assert records[0].embedding == FakeEmbeddingService.vector("A. B. C.")


def test_chunk_count_matches_records_written(embeddings, vector_index):
    """Test the reported chunk count equals the records written."""
    text = "Paragraph about retrieval. " * 300
    result = _pipeline(embeddings, vector_index, batch_size=3).ingest(text, "text", "kb-1", PROVENANCE)

    stored = vector_index.records["kb-1"]
    assert result.chunk_count == len(stored)
    assert result.chunk_count >= len(text) // 800
    assert len(vector_index.upserts) == len(embeddings.batch_calls)
    assert all(len(batch) <= 3 for batch in embeddings.batch_calls)


def test_reingest_same_source_overwrites(embeddings, vector_index):
    """Test re-ingesting a source overwrites its vectors."""
    pipeline = _pipeline(embeddings, vector_index)
    text = "Some text. " * 200
    pipeline.ingest(text, "text", "kb-1", PROVENANCE)
    first = set(vector_index.records["kb-1"])
    pipeline.ingest(text, "text", "kb-1", PROVENANCE)

    assert set(vector_index.records["kb-1"]) == first


def test_txt_type_accepted(embeddings, vector_index):
    """Test the txt alias of the text type."""
    result = _pipeline(embeddings, vector_index).ingest("hello", "txt", "kb-1")
    assert result.chunk_count == 1


@pytest.mark.parametrize("text", ["", "   \n\t  "])
def test_empty_document_rejected_before_writes(embeddings, vector_index, text):
    """Test empty content is rejected before any store access."""
    with pytest.raises(EmptyDocumentError):
        _pipeline(embeddings, vector_index).ingest(text, "text", "kb-1", PROVENANCE)
    assert vector_index.opened == []
    assert embeddings.batch_calls == []


def test_unsupported_type_rejected(embeddings, vector_index):
    """Test unsupported declared types."""
    with pytest.raises(ValidationError):
        _pipeline(embeddings, vector_index).ingest("hello", "pdf", "kb-1")
    assert vector_index.opened == []


def test_embedding_failure_keeps_written_batches(vector_index):
    """Test batches written before an embedding failure stay stored."""
    embeddings = FakeEmbeddingService(fail_on_batch=2)
    pipeline = _pipeline(
        embeddings,
        vector_index,
        splitter=LayeredTextSplitter(chunk_size=100, chunk_overlap=20),
        batch_size=2,
    )

    with pytest.raises(ExternalServiceError):
        pipeline.ingest("x" * 1000, "text", "kb-1", PROVENANCE)

    assert len(vector_index.records["kb-1"]) == 2


def test_store_failure_propagates(embeddings, vector_index):
    """Test store write failures propagate."""
    vector_index.upsert_failure = ExternalServiceError("vector_store", "unreachable")
    with pytest.raises(ExternalServiceError):
        _pipeline(embeddings, vector_index).ingest("hello", "text", "kb-1", PROVENANCE)


def test_ingest_path_reads_staged_file(embeddings, vector_index, tmp_path):
    """Test ingesting a staged file from disk."""
    staged = tmp_path / "notes.md"
    staged.write_text("# Notes\n\nRemember the milk.", encoding="utf-8")

    result = _pipeline(embeddings, vector_index).ingest_path(str(staged), "text", "kb-1", PROVENANCE)

    assert result.chunk_count == 1
    [record] = vector_index.records["kb-1"].values()
    assert record.text == "# Notes\n\nRemember the milk."


def test_ingest_path_missing_file(embeddings, vector_index, tmp_path):
    """Test ingesting a missing staged file."""
    with pytest.raises(NotFoundError):
        _pipeline(embeddings, vector_index).ingest_path(str(tmp_path / "nope.txt"), "text", "kb-1")
