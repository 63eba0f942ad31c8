"""
Pipeline construction.

Builds the provider clients and the orchestrator once at startup and
hands them to request handlers through app state.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

import httpx

from persona_chat.core.config import Settings
from persona_chat.services.completion import CompletionOptions, CompletionProvider
from persona_chat.services.embedding import EmbeddingProvider
from persona_chat.services.prompt import PersonaConfig, PromptAssembler
from persona_chat.services.rag import RAGOrchestrator
from persona_chat.services.vector_index import VectorIndexClient

logger = logging.getLogger(__name__)


class ConfigurationError(RuntimeError):
    """A required setting is missing; retrying will not help."""


@dataclass
class PipelineContext:
    """Long-lived clients shared by all requests."""

    http_client: httpx.AsyncClient
    embedder: EmbeddingProvider
    index: VectorIndexClient
    completion: CompletionProvider
    orchestrator: RAGOrchestrator

    async def aclose(self) -> None:
        await self.http_client.aclose()
        await self.completion.aclose()


def completion_options(settings: Settings) -> tuple[CompletionOptions, CompletionOptions]:
    """Return the (RAG, general-knowledge) option sets."""
    shared = {
        "model": settings.completion_model,
        "top_p": settings.top_p,
        "frequency_penalty": settings.frequency_penalty,
        "presence_penalty": settings.presence_penalty,
    }
    rag = CompletionOptions(
        temperature=settings.temperature, max_tokens=settings.max_tokens, **shared
    )
    general = CompletionOptions(
        temperature=settings.general_temperature,
        max_tokens=settings.general_max_tokens,
        **shared,
    )
    return rag, general


def build_pipeline(settings: Settings) -> PipelineContext:
    """Construct every client and wire them into an orchestrator."""
    if not settings.groq_api_key:
        raise ConfigurationError("Missing required setting: GROQ_API_KEY")
    if not settings.huggingface_api_key:
        logger.warning("HUGGINGFACE_API_KEY not set, queries will use fallback embeddings.")
    if not settings.pinecone_host or not settings.pinecone_api_key:
        logger.warning("Vector index not configured, answers will use general knowledge only.")

    http_client = httpx.AsyncClient()
    embedder = EmbeddingProvider(settings, http_client=http_client)
    index = VectorIndexClient(settings, http_client=http_client)
    completion = CompletionProvider(settings)
    rag_options, general_options = completion_options(settings)
    orchestrator = RAGOrchestrator(
        embedder=embedder,
        index=index,
        assembler=PromptAssembler(
            PersonaConfig(
                name=settings.persona_name,
                description=settings.persona_description,
            ),
            history_window=settings.history_window,
        ),
        completion=completion,
        rag_options=rag_options,
        general_options=general_options,
        top_k=settings.top_k,
        deadline=settings.request_deadline,
    )
    return PipelineContext(
        http_client=http_client,
        embedder=embedder,
        index=index,
        completion=completion,
        orchestrator=orchestrator,
    )


def backoff_delay(attempt: int, base: float, cap: float) -> float:
    """Exponential backoff: base, 2*base, 4*base ... capped at ``cap``."""
    return min(base * 2 ** (attempt - 1), cap)


async def build_pipeline_with_retry(
    settings: Settings,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> PipelineContext:
    """Build the pipeline, retrying transient construction failures."""
    attempts = max(settings.init_max_attempts, 1)
    last_error: Exception | None = None

    for attempt in range(1, attempts + 1):
        try:
            logger.info("Initializing clients (attempt %d/%d)", attempt, attempts)
            context = build_pipeline(settings)
            logger.info("All clients initialized successfully.")
            return context
        except ConfigurationError:
            raise
        except Exception as exc:
            last_error = exc
            logger.error("Initialization attempt %d failed: %s", attempt, exc)
            if attempt < attempts:
                delay = backoff_delay(attempt, settings.init_backoff_base, settings.init_backoff_max)
                logger.info("Retrying in %.1fs...", delay)
                await sleep(delay)

    raise RuntimeError(
        f"Failed to initialize clients after {attempts} attempts: {last_error}"
    ) from last_error
