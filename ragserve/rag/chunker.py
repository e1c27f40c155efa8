"""Text chunking with overlap for RAG pipeline.

Splits text on whitespace and emits overlapping windows of words, so the
result does not depend on any tokenizer.
"""
from typing import Any, Dict, List

import structlog

from ragserve import config

logger = structlog.get_logger()


def chunk_text(text: str, size: int, overlap: int) -> List[str]:
    """Split text into overlapping windows of whitespace-separated words.

    Windows start ``size - overlap`` words apart; when the overlap is not
    smaller than the size the step falls back to ``size``. The last window
    is clipped to the remaining words and always emitted.

    Args:
        text: Text to chunk
        size: Words per window; ``size <= 0`` returns the text unchanged
        overlap: Words shared by consecutive windows

    Returns:
        List of fragment strings in document order
    """
    if size <= 0:
        return [text]

    words = text.split()
    step = size - overlap
    if step <= 0:
        step = size

    chunks = []
    for start in range(0, len(words), step):
        end = min(start + size, len(words))
        chunks.append(" ".join(words[start:end]))
        if end == len(words):
            break

    return chunks


class TextChunker:
    """Word-window text chunker with overlap support."""

    def __init__(
        self,
        chunk_size: int = None,
        chunk_overlap: int = None,
    ):
        """Initialize the text chunker.

        Args:
            chunk_size: Words per chunk (default from config)
            chunk_overlap: Words shared between chunks (default from config)
        """
        self.chunk_size = config.CHUNK_SIZE if chunk_size is None else chunk_size
        self.chunk_overlap = (
            config.CHUNK_OVERLAP if chunk_overlap is None else chunk_overlap
        )

        # Overlap is capped by chunk_text, not rejected
        if self.chunk_overlap >= self.chunk_size > 0:
            logger.warning(
                "chunk_overlap_not_smaller_than_size",
                chunk_size=self.chunk_size,
                chunk_overlap=self.chunk_overlap,
            )

        logger.info(
            "chunker_initialized",
            chunk_size=self.chunk_size,
            chunk_overlap=self.chunk_overlap,
        )

    def chunk_text(self, text: str) -> List[str]:
        """Split text into overlapping chunks using the configured policy."""
        chunks = chunk_text(text, self.chunk_size, self.chunk_overlap)

        logger.debug(
            "text_chunked",
            text_length=len(text),
            chunk_count=len(chunks),
        )

        return chunks

    def get_chunk_stats(self, chunks: List[str]) -> Dict[str, Any]:
        """Get statistics about a set of chunks.

        Args:
            chunks: Fragments produced by chunk_text

        Returns:
            Dictionary with chunk statistics (sizes in words)
        """
        if not chunks:
            return {
                "chunk_count": 0,
                "total_words": 0,
                "avg_chunk_words": 0,
                "min_chunk_words": 0,
                "max_chunk_words": 0,
            }

        chunk_sizes = [len(c.split()) for c in chunks]

        return {
            "chunk_count": len(chunks),
            "total_words": sum(chunk_sizes),
            "avg_chunk_words": sum(chunk_sizes) // len(chunks),
            "min_chunk_words": min(chunk_sizes),
            "max_chunk_words": max(chunk_sizes),
            "overlap": self.chunk_overlap,
        }
