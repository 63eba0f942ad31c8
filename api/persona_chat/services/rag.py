"""
RAG Orchestrator: core chat pipeline.

Coordinates the Embed -> Retrieve -> Assemble -> Generate flow:
1. Embed the user query (remote model or deterministic fallback).
2. Retrieve scored context from the vector index.
3. Build a persona prompt, with context when any was found.
4. Call the LLM, falling back to a secondary model if needed.
5. Shape the answer and its sources for the caller.

Empty retrieval is not an error: the pipeline answers from general
knowledge instead.
"""

import asyncio
import logging
from dataclasses import dataclass, field

from persona_chat.core.errors import UpstreamTimeoutError
from persona_chat.core.telemetry import get_tracer
from persona_chat.models.chat import ChatMessage, Source
from persona_chat.services.completion import (
    CompletionOptions,
    CompletionProvider,
    TokenUsage,
)
from persona_chat.services.embedding import EmbeddingProvider
from persona_chat.services.prompt import PromptAssembler
from persona_chat.services.vector_index import ContextMatch, VectorIndexClient

logger = logging.getLogger(__name__)

SOURCE_PREVIEW_CHARS = 300


@dataclass
class RagResult:
    response_text: str
    sources: list[Source] = field(default_factory=list)
    model_used: str = ""
    usage: TokenUsage = field(default_factory=TokenUsage)


class RAGOrchestrator:
    """Orchestrates the full RAG pipeline for persona question answering."""

    def __init__(
        self,
        embedder: EmbeddingProvider,
        index: VectorIndexClient,
        assembler: PromptAssembler,
        completion: CompletionProvider,
        rag_options: CompletionOptions,
        general_options: CompletionOptions,
        top_k: int = 3,
        deadline: float | None = 45.0,
    ) -> None:
        self._embedder = embedder
        self._index = index
        self._assembler = assembler
        self._completion = completion
        self._rag_options = rag_options
        self._general_options = general_options
        self._top_k = top_k
        self._deadline = deadline
        self._tracer = get_tracer()

    async def run(self, query: str, history: list[ChatMessage]) -> RagResult:
        """
        Answer ``query`` within the request-wide deadline.

        Args:
            query: The latest user message.
            history: Conversation before the query, oldest first.

        Raises:
            UpstreamTimeoutError: if the whole pipeline exceeds the deadline.
            Any classified error raised by the completion provider.
        """
        if not self._deadline:
            return await self._run(query, history)
        try:
            return await asyncio.wait_for(self._run(query, history), timeout=self._deadline)
        except asyncio.TimeoutError as exc:
            raise UpstreamTimeoutError(
                f"Request exceeded the {self._deadline:.0f}s deadline"
            ) from exc

    async def _run(self, query: str, history: list[ChatMessage]) -> RagResult:
        with self._tracer.start_as_current_span("rag.run") as span:
            span.set_attribute("rag.query_length", len(query))

            # Step 1: Embed the query
            vector = await self._embedder.embed(query)

            # Step 2: Retrieve context
            matches = await self._index.search(vector, top_k=self._top_k)
            span.set_attribute("rag.retrieval_count", len(matches))

            # Step 3: Assemble prompt, choosing the branch
            messages = self._assembler.build(matches, history, query)
            if matches:
                logger.info("Found %d context matches, using RAG prompt.", len(matches))
                options = self._rag_options
            else:
                logger.info("No relevant context found, using general-knowledge prompt.")
                options = self._general_options
            span.set_attribute("rag.branch", "rag" if matches else "general")

            # Step 4: Generate
            result = await self._completion.complete(messages, options)
            span.set_attribute("rag.tokens_total", result.usage.total_tokens)

            return RagResult(
                response_text=result.text,
                sources=self._to_sources(matches),
                model_used=result.model_used,
                usage=result.usage,
            )

    @staticmethod
    def _to_sources(matches: list[ContextMatch]) -> list[Source]:
        sources = []
        for match in matches:
            text = match.text
            if len(text) > SOURCE_PREVIEW_CHARS:
                text = text[:SOURCE_PREVIEW_CHARS].rstrip() + "..."
            sources.append(
                Source(id=match.id, source=match.source, text=text, score=match.score)
            )
        return sources
