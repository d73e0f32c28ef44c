"""Utility functions for kb-rag."""

from __future__ import annotations

import hashlib
import logging
import os
import uuid
from datetime import datetime, timezone
from typing import Iterable, List

logger = logging.getLogger(__name__)


def new_id() -> str:
    """Generate a fresh opaque identifier."""
    return str(uuid.uuid4())


def utc_now() -> str:
    """Current UTC time as an ISO-8601 string with ``Z`` suffix."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


def sha1_text(text: str) -> str:
    """Calculate SHA1 hash of a text string."""
    return hashlib.sha1(text.encode("utf-8")).hexdigest()


def build_chunk_id(collection_id: str, source_id: str, chunk_index: int) -> str:
    """Stable id of a chunk, so re-ingesting a source overwrites its vectors."""
    return sha1_text(f"{collection_id}:{source_id}:{chunk_index}")


def iter_batches(items: List, batch_size: int) -> Iterable[List]:
    """Yield batches of items."""
    for start in range(0, len(items), batch_size):
        yield items[start : start + batch_size]


def remove_file_quietly(path: str) -> bool:
    """Unlink a staged file; failures are logged and reported as ``False``."""
    if not path:
        return False
    try:
        if os.path.exists(path):
            os.unlink(path)
            logger.info("Removed staged file %s", path)
            return True
    except OSError as exc:
        logger.warning("Failed to remove staged file %s: %s", path, exc)
    return False
