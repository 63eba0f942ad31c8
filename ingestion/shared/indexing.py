"""
Indexing module for the vector index.

Handles idempotent upsert of document chunks with deterministic IDs.
"""

import base64
import hashlib
import logging
from datetime import datetime, timezone

from persona_chat.services.vector_index import VectorIndexClient, VectorRecord

from shared.chunking import Chunk

logger = logging.getLogger(__name__)


def generate_chunk_id(source: str, chunk_index: int) -> str:
    """
    Generate a deterministic, URL-safe ID for a chunk.

    Using SHA-256 hash of (source + chunk_index) ensures:
    - Idempotent re-processing (same file → same IDs).
    - No collisions across different files.
    """
    raw = f"{source}_chunk_{chunk_index}"
    hash_bytes = hashlib.sha256(raw.encode()).digest()
    return base64.urlsafe_b64encode(hash_bytes).decode().rstrip("=")


def build_records(
    chunks: list[Chunk],
    vectors: list[list[float]],
    source: str,
) -> list[VectorRecord]:
    """Pair chunks with their vectors and stamp ingestion metadata."""
    if len(chunks) != len(vectors):
        raise ValueError(
            f"Got {len(vectors)} vectors for {len(chunks)} chunks from '{source}'"
        )

    ingested_at = datetime.now(timezone.utc).isoformat()
    return [
        VectorRecord(
            id=generate_chunk_id(source, chunk.chunk_index),
            values=vector,
            metadata={**chunk.metadata, "ingestedAt": ingested_at},
        )
        for chunk, vector in zip(chunks, vectors)
    ]


async def upsert_chunks(
    index: VectorIndexClient,
    chunks: list[Chunk],
    vectors: list[list[float]],
    source: str,
    namespace: str | None = None,
) -> int:
    """
    Upsert chunks with their vectors into the index.

    Re-running ingestion for the same source overwrites its chunks
    instead of duplicating them.

    Returns:
        Number of vectors upserted.
    """
    records = build_records(chunks, vectors, source)
    upserted = await index.upsert(records, namespace=namespace)
    logger.info("Upserted %d/%d chunks for '%s'", upserted, len(records), source)
    return upserted
