"""Load document content by declared type."""

from __future__ import annotations

from pathlib import Path

from langchain_community.document_loaders import TextLoader

from .errors import EmptyDocumentError, NotFoundError, ValidationError

# Declared type -> canonical type
SUPPORTED_TYPES = {"text": "text", "txt": "text"}

# Upload extension -> declared type
EXTENSION_TYPES = {".txt": "text", ".md": "text"}


def normalize_type(declared_type: str) -> str:
    """
    Return the canonical type for ``declared_type``.

    Raises:
        ValidationError: If the type is not supported
    """
    canonical = SUPPORTED_TYPES.get((declared_type or "").strip().lower())
    if canonical is None:
        raise ValidationError(
            f"Unsupported file type: {declared_type!r}. Only text files are supported."
        )
    return canonical


def type_from_filename(filename: str) -> str:
    """Declared type for an uploaded file name."""
    extension = Path(filename or "").suffix.lower()
    declared = EXTENSION_TYPES.get(extension)
    if declared is None:
        raise ValidationError(
            f"Unsupported file extension {extension or '(none)'!r}; allowed: "
            + ", ".join(sorted(EXTENSION_TYPES))
        )
    return declared


def load_text(raw: str, declared_type: str) -> str:
    """
    Take in-memory content verbatim.

    Raises:
        ValidationError: If the type is not supported
        EmptyDocumentError: If the content is empty or whitespace only
    """
    normalize_type(declared_type)
    if not raw or not raw.strip():
        raise EmptyDocumentError("Loaded document is empty")
    return raw


def load_document(path: str, declared_type: str) -> str:
    """
    Read a staged file as UTF-8, falling back to the detected encoding.

    Raises:
        ValidationError: If the type is not supported or the file cannot be decoded
        NotFoundError: If the file does not exist
        EmptyDocumentError: If the content is empty or whitespace only
    """
    normalize_type(declared_type)
    if not Path(path).is_file():
        raise NotFoundError(f"Staged file not found: {path}")

    try:
        docs = TextLoader(path, encoding="utf-8", autodetect_encoding=True).load()
    except RuntimeError as exc:
        raise ValidationError(f"Could not read {path} as text: {exc}") from exc
    text = "".join(doc.page_content for doc in docs)
    if not text.strip():
        raise EmptyDocumentError(f"Loaded document is empty: {path}")
    return text
