"""
Document chunking service.

Splits extracted text into overlapping windows of whitespace-delimited tokens.
Windows that would still be too large for the embedding model (long runs
without whitespace, e.g. base64 blobs or tables flattened by the PDF parser)
are split again by characters.
"""

import logging
import math
from typing import List, Optional

logger = logging.getLogger(__name__)

# Characters per token used by estimate_tokens
CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """Rough token count: one token per four characters.

    This is a heuristic, not the provider's tokenizer. It over-counts for plain
    Spanish prose and is only used to keep segments under the embedding limit.
    """
    return math.ceil(len(text) / CHARS_PER_TOKEN)


class SlidingWindowChunker:
    """Token sliding window with a hard per-segment ceiling"""

    def __init__(self, chunk_size: int = 1200, chunk_overlap: int = 200, max_tokens: int = 8000):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if chunk_overlap < 0 or chunk_overlap >= chunk_size:
            raise ValueError("chunk_overlap must satisfy 0 <= overlap < chunk_size")
        if max_tokens <= 0:
            raise ValueError("max_tokens must be positive")
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.max_tokens = max_tokens

    def chunk_text(self, text: str) -> List[str]:
        tokens = text.split() if text else []
        if not tokens:
            return []
        if len(tokens) == 1:
            return self._split_by_characters(tokens[0])

        step = max(self.chunk_size - self.chunk_overlap, 1)
        chunks: List[str] = []
        start = 0
        while True:
            window = " ".join(tokens[start:start + self.chunk_size])
            if estimate_tokens(window) > self.max_tokens:
                pieces = self._split_by_characters(window)
                logger.debug(f"Oversized window at token {start} split into {len(pieces)} pieces")
                chunks.extend(pieces)
            else:
                chunks.append(window)
            if start + self.chunk_size >= len(tokens):
                break
            start += step
        return chunks

    def _split_by_characters(self, text: str) -> List[str]:
        window = self.chunk_size * CHARS_PER_TOKEN
        overlap = self.chunk_overlap * CHARS_PER_TOKEN
        # Never emit a piece above the ceiling
        ceiling = self.max_tokens * CHARS_PER_TOKEN
        if window > ceiling:
            window = ceiling
            overlap = min(overlap, window - 1)

        step = max(window - overlap, 1)
        pieces: List[str] = []
        start = 0
        while True:
            pieces.append(text[start:start + window])
            if start + window >= len(text):
                break
            start += step
        return pieces


def chunk_text(
    text: str,
    chunk_size: int = 1200,
    chunk_overlap: int = 200,
    max_tokens: Optional[int] = None,
) -> List[str]:
    """
    Split ``text`` into ordered, overlapping segments.

    Raises:
        ValueError: when ``chunk_overlap`` is negative or not smaller than ``chunk_size``
    """
    chunker = SlidingWindowChunker(chunk_size, chunk_overlap, max_tokens or 8000)
    return chunker.chunk_text(text)
