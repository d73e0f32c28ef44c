"""Tests for kb-rag schemas."""

import pytest
from pydantic import ValidationError

from kb_rag.schemas import FileRecord, IngestResult, KnowledgeBase


def test_knowledge_base_creation():
    """Test creating KnowledgeBase by field name and alias."""
    kb = KnowledgeBase(id="default", name="Default", created_at="2024-01-01T12:00:00.000Z")
    assert kb.description == ""

    same = KnowledgeBase.model_validate(
        {"id": "default", "name": "Default", "createdAt": "2024-01-01T12:00:00.000Z"}
    )
    assert same == kb


def test_knowledge_base_dump_uses_aliases():
    """Test the persisted shape of KnowledgeBase."""
    kb = KnowledgeBase(id="kb-1", name="Docs", description="d", created_at="2024-01-01T12:00:00.000Z")

    assert kb.model_dump(by_alias=True) == {
        "id": "kb-1",
        "name": "Docs",
        "description": "d",
        "createdAt": "2024-01-01T12:00:00.000Z",
    }


def test_file_record_creation():
    """Test creating FileRecord."""
    record = FileRecord(
        id="file-1",
        kbId="kb-1",
        filename="notes.txt",
        path="/uploads/notes.txt",
        uploadedAt="2024-01-01T12:00:00.000Z",
    )

    assert record.kb_id == "kb-1"
    assert record.storage_path == "/uploads/notes.txt"
    assert record.type == "text"
    assert record.model_dump(by_alias=True)["path"] == "/uploads/notes.txt"


def test_file_record_rejects_unknown_type():
    """Test FileRecord only accepts text files."""
    with pytest.raises(ValidationError):
        FileRecord(
            id="file-1",
            kb_id="kb-1",
            filename="scan.pdf",
            storage_path="/uploads/scan.pdf",
            type="pdf",
            uploaded_at="2024-01-01T12:00:00.000Z",
        )


def test_ingest_result_default_source():
    """Test IngestResult without a source file."""
    result = IngestResult(collection_id="kb-1", chunk_count=3)
    assert result.source_file_id is None
