"""
Embedding module for batch vector generation.

Reuses the API's EmbeddingProvider so documents and queries land in the
same vector space, including the deterministic fallback.
"""

import asyncio
import logging

from persona_chat.services.embedding import EmbeddingProvider

logger = logging.getLogger(__name__)


async def generate_embeddings(
    texts: list[str],
    provider: EmbeddingProvider,
    delay: float = 0.1,
) -> list[list[float]]:
    """
    Generate embedding vectors for a list of texts.

    Texts are embedded one at a time with a short pause between calls to
    stay under the hosted model's rate limit.

    Args:
        texts: List of text strings to embed.
        provider: Configured embedding provider.
        delay: Seconds to wait between requests.

    Returns:
        List of embedding vectors (same order as input).
    """
    all_embeddings: list[list[float]] = []

    for i, text in enumerate(texts):
        all_embeddings.append(await provider.embed(text))
        if (i + 1) % 10 == 0:
            logger.info("Embedded %d/%d chunks", i + 1, len(texts))
        if delay and i < len(texts) - 1:
            await asyncio.sleep(delay)

    logger.info("Generated %d embeddings total.", len(all_embeddings))
    return all_embeddings
