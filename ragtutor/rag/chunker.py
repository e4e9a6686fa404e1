"""Text chunking with overlap for RAG pipeline.

Implements a deterministic character-based sliding window: window ``i``
covers ``[start, start + size)`` and the next window starts
``size - overlap`` characters later.
"""
from typing import List
from dataclasses import dataclass
import structlog

from ragtutor import config
from ragtutor.errors import InvalidConfiguration

logger = structlog.get_logger()


@dataclass
class TextChunk:
    """Represents a chunk of text with position information."""

    content: str
    char_start: int
    char_end: int
    chunk_index: int


def validate_window(size: int, overlap: int) -> None:
    """Reject window parameters that would not advance the window.

    Raises:
        InvalidConfiguration: If size <= 0, overlap < 0 or overlap >= size
    """
    if size <= 0:
        raise InvalidConfiguration(f"Chunk size must be positive, got {size}")
    if overlap < 0:
        raise InvalidConfiguration(f"Overlap must not be negative, got {overlap}")
    if overlap >= size:
        raise InvalidConfiguration(
            f"Overlap ({overlap}) must be less than chunk size ({size})"
        )


def iter_windows(text: str, size: int, overlap: int):
    """Yield (start, end) character windows over ``text``."""
    validate_window(size, overlap)

    step = size - overlap
    start = 0
    text_length = len(text)

    while start < text_length:
        yield start, min(start + size, text_length)
        start += step


def chunk_text(text: str, size: int, overlap: int) -> List[str]:
    """Split text into overlapping chunks.

    Args:
        text: Text to chunk
        size: Window size in characters
        overlap: Characters shared by consecutive windows

    Returns:
        Chunk strings in text order (empty for empty text)

    Raises:
        InvalidConfiguration: On invalid window parameters
    """
    return [text[start:end] for start, end in iter_windows(text, size, overlap)]


class TextChunker:
    """Character-based text chunker with overlap support."""

    def __init__(
        self,
        chunk_size: int = None,
        chunk_overlap: int = None,
    ):
        """Initialize the text chunker.

        Args:
            chunk_size: Size of each chunk in characters (default from config)
            chunk_overlap: Overlap between chunks in characters (default from config)

        Raises:
            InvalidConfiguration: If the overlap would stop the window advancing
        """
        self.chunk_size = config.CHUNK_SIZE if chunk_size is None else chunk_size
        self.chunk_overlap = (
            config.CHUNK_OVERLAP if chunk_overlap is None else chunk_overlap
        )

        validate_window(self.chunk_size, self.chunk_overlap)

        logger.info(
            "chunker_initialized",
            chunk_size=self.chunk_size,
            chunk_overlap=self.chunk_overlap,
        )

    def chunk_text(self, text: str) -> List[TextChunk]:
        """Split text into overlapping chunks.

        Args:
            text: Text to chunk

        Returns:
            List of TextChunk objects
        """
        chunks = [
            TextChunk(
                content=text[start:end],
                char_start=start,
                char_end=end,
                chunk_index=index,
            )
            for index, (start, end) in enumerate(
                iter_windows(text, self.chunk_size, self.chunk_overlap)
            )
        ]

        if chunks:
            logger.debug(
                "text_chunked",
                text_length=len(text),
                chunk_count=len(chunks),
                avg_chunk_size=sum(len(c.content) for c in chunks) // len(chunks),
            )

        return chunks

    def get_chunk_stats(self, chunks: List[TextChunk]) -> dict:
        """Get statistics about a set of chunks.

        Args:
            chunks: List of TextChunk objects

        Returns:
            Dictionary with chunk statistics
        """
        if not chunks:
            return {
                "chunk_count": 0,
                "total_chars": 0,
                "avg_chunk_size": 0,
                "min_chunk_size": 0,
                "max_chunk_size": 0,
            }

        chunk_sizes = [len(c.content) for c in chunks]

        return {
            "chunk_count": len(chunks),
            "total_chars": sum(chunk_sizes),
            "avg_chunk_size": sum(chunk_sizes) // len(chunks),
            "min_chunk_size": min(chunk_sizes),
            "max_chunk_size": max(chunk_sizes),
            "overlap": self.chunk_overlap,
        }
