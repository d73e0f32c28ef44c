"""Split text into overlapping chunks along the most natural boundary available."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Tuple

from .errors import EmptySplitError
from .schemas import Chunk

# Tried in order: paragraphs, then lines and sentences, then words.
DEFAULT_SEPARATOR_LAYERS: Tuple[Tuple[str, ...], ...] = (
    ("\n\n",),
    ("\n", ". ", "! ", "? ", "。", "！", "？"),
    (" ",),
)


class LayeredTextSplitter:
    """
    Character splitter with a fixed overlap.

    Text that fits in ``chunk_size`` is returned whole. Longer text becomes
    contiguous spans of the original string: each span is at most
    ``chunk_size`` long, overlaps its predecessor by exactly ``chunk_overlap``
    characters and adds at most ``chunk_size - chunk_overlap`` new characters.
    Each window ends after the last separator of the first layer that occurs
    in it, or is cut at the window limit when no layer matches.

    The span budget guarantees at least ``ceil(len(text) / (chunk_size - chunk_overlap))``
    chunks only for text longer than ``chunk_size``; shorter text is always one chunk.
    """

    def __init__(
        self,
        chunk_size: int = 1000,
        chunk_overlap: int = 200,
        separator_layers: Optional[Sequence[Sequence[str]]] = None,
    ):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if not 0 <= chunk_overlap < chunk_size:
            raise ValueError("chunk_overlap must be in [0, chunk_size)")
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.separator_layers = tuple(
            tuple(layer) for layer in (separator_layers or DEFAULT_SEPARATOR_LAYERS)
        )

    def _break_point(self, text: str, low: int, high: int) -> int:
        """Position just past the last preferred separator in ``text[low:high]``."""
        for layer in self.separator_layers:
            best = -1
            for separator in layer:
                found = text.rfind(separator, low, high)
                if found != -1:
                    best = max(best, found + len(separator))
            if best != -1:
                return best
        return high

    def split_spans(self, text: str) -> List[Tuple[int, int]]:
        length = len(text)
        if length == 0:
            return []
        if length <= self.chunk_size:
            return [(0, length)]

        stride = self.chunk_size - self.chunk_overlap
        spans: List[Tuple[int, int]] = []
        start = covered = 0
        while covered < length:
            limit = min(covered + stride, length)
            if limit == length:
                end = length
            else:
                end = self._break_point(text, start + self.chunk_overlap, limit)
            spans.append((start, end))
            covered = end
            start = end - self.chunk_overlap
        return spans

    def split(self, text: str, metadata: Optional[Dict[str, Any]] = None) -> List[Chunk]:
        """
        Split ``text`` into chunks carrying their span and ``metadata``.

        Raises:
            EmptySplitError: If no chunk was produced
        """
        spans = self.split_spans(text)
        if not spans:
            raise EmptySplitError("Splitting produced no chunks")

        chunks: List[Chunk] = []
        for chunk_index, (start, end) in enumerate(spans):
            chunk_metadata: Dict[str, Any] = {
                "chunkIndex": chunk_index,
                "startIndex": start,
                "endIndex": end,
            }
            chunk_metadata.update(metadata or {})
            chunks.append(Chunk(text=text[start:end], metadata=chunk_metadata))
        return chunks
