"""
Text chunking module for portfolio documents.

Splits text into fixed-size overlapping windows, preferring to end each
window on a sentence boundary.
"""

from dataclasses import dataclass, field

SENTENCE_TERMINATORS = ".!?"


@dataclass
class Chunk:
    """A single text chunk with its metadata."""

    text: str
    metadata: dict = field(default_factory=dict)
    chunk_index: int = 0


def split_text(text: str, chunk_size: int = 500, overlap: int = 100) -> list[str]:
    """
    Split text into overlapping windows.

    Each window is at most ``chunk_size`` characters. If a sentence
    terminator appears past the half-way point of the window, the window
    is cut just after it. The next window starts ``overlap`` characters
    before the previous end.

    Args:
        text: The text to split.
        chunk_size: Maximum characters per chunk.
        overlap: Characters shared by consecutive chunks.

    Returns:
        Non-empty, stripped chunks in document order.
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    overlap = max(0, min(overlap, chunk_size - 1))

    chunks: list[str] = []
    start = 0
    length = len(text)

    while start < length:
        end = min(start + chunk_size, length)
        if end < length:
            window = text[start:end]
            last_stop = max(window.rfind(c) for c in SENTENCE_TERMINATORS)
            if last_stop > chunk_size / 2:
                end = start + last_stop + 1

        piece = text[start:end].strip()
        if piece:
            chunks.append(piece)
        if end >= length:
            break
        # Always advance, even when the overlap would reach back past start
        start = max(end - overlap, start + 1)

    return chunks


def chunk_document(
    text: str,
    source: str,
    title: str = "",
    document_type: str = "",
    chunk_size: int = 500,
    overlap: int = 100,
) -> list[Chunk]:
    """
    Chunk a document and attach index metadata to every piece.

    The metadata carries the chunk text itself because the vector index
    returns metadata, not the original document.
    """
    normalized = " ".join(text.split())
    chunks = []
    for index, piece in enumerate(split_text(normalized, chunk_size, overlap)):
        metadata = {
            "text": piece,
            "source": source,
            "title": title or source,
            "chunkIndex": index,
        }
        if document_type:
            metadata["documentType"] = document_type
        chunks.append(Chunk(text=piece, metadata=metadata, chunk_index=index))
    return chunks
