"""Error taxonomy shared by every kb-rag component."""

from __future__ import annotations

from typing import Dict, Optional


class KnowledgeRagError(Exception):
    """Base class; ``kind`` is the machine-readable error category."""

    kind = "internal"

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail

    def to_dict(self) -> Dict[str, str]:
        return {"error": self.kind, "details": self.detail}


class ValidationError(KnowledgeRagError):
    """Required input is missing or unsupported."""

    kind = "validation"


class NotFoundError(KnowledgeRagError):
    """A referenced knowledge base or file does not exist."""

    kind = "not_found"


class EmptyDocumentError(KnowledgeRagError):
    """Loaded document content is empty or whitespace only."""

    kind = "empty_document"


class EmptySplitError(KnowledgeRagError):
    """Splitting produced no chunks."""

    kind = "empty_split"


class ExternalServiceError(KnowledgeRagError):
    """An embedding, completion or vector-store call failed."""

    kind = "external_service"

    def __init__(self, service: str, detail: str, store_error_kind: Optional[object] = None):
        super().__init__(f"{service}: {detail}")
        self.service = service
        self.store_error_kind = store_error_kind
