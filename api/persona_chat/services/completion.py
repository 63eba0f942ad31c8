"""
Chat completion client wrapper.

Calls an OpenAI-compatible chat-completions endpoint (Groq by default)
with a primary/fallback model pair. SDK errors are classified into the
pipeline's error types here, at the source of the failure.
"""

import asyncio
import logging
from dataclasses import dataclass, field, replace

import openai
from openai import AsyncOpenAI

from persona_chat.core.config import Settings
from persona_chat.core.errors import (
    AuthenticationError,
    EmptyResponseError,
    PersonaChatError,
    RateLimitError,
    UpstreamError,
    UpstreamTimeoutError,
)
from persona_chat.core.telemetry import get_tracer

logger = logging.getLogger(__name__)

_MODEL_MISSING_CODES = {"model_not_found", "model_decommissioned"}
_MODEL_MISSING_PHRASES = ("decommissioned", "model not found", "does not exist")


@dataclass(frozen=True)
class CompletionOptions:
    """Per-call generation settings. Only ``model`` is required."""

    model: str
    temperature: float = 0.5
    max_tokens: int = 500
    top_p: float = 1.0
    frequency_penalty: float = 0.0
    presence_penalty: float = 0.0


@dataclass
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass
class CompletionResult:
    text: str
    model_used: str
    usage: TokenUsage = field(default_factory=TokenUsage)


class ModelUnavailableError(UpstreamError):
    """The requested model is unknown or decommissioned."""

    code = "model_unavailable"


class CompletionProvider:
    """Wrapper around a chat-completions API with model fallback."""

    def __init__(
        self,
        settings: Settings,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self._timeout = settings.completion_timeout
        self._fallback_model = settings.completion_fallback_model
        self._tracer = get_tracer()
        self._client = client or AsyncOpenAI(
            api_key=settings.groq_api_key,
            base_url=settings.completion_base_url,
            timeout=settings.completion_timeout,
            max_retries=0,
        )

    async def aclose(self) -> None:
        await self._client.close()

    async def complete(
        self,
        messages: list[dict[str, str]],
        options: CompletionOptions,
    ) -> CompletionResult:
        """
        Generate a chat completion, falling back once if the model is gone.

        Args:
            messages: The conversation messages (system + history + user).
            options: Model and sampling parameters.

        Returns:
            CompletionResult with the answer text, model and token usage.

        Raises:
            AuthenticationError, RateLimitError, UpstreamTimeoutError,
            EmptyResponseError, UpstreamError.
        """
        with self._tracer.start_as_current_span("completion.complete") as span:
            span.set_attribute("completion.model", options.model)
            span.set_attribute("completion.temperature", options.temperature)

            try:
                result = await self._create(messages, options)
            except ModelUnavailableError:
                fallback = self._fallback_model
                if not fallback or fallback == options.model:
                    raise
                logger.warning(
                    "Model '%s' unavailable, retrying with fallback '%s'",
                    options.model,
                    fallback,
                )
                span.set_attribute("completion.fallback_model", fallback)
                result = await self._create(messages, replace(options, model=fallback))

            span.set_attribute("completion.model_used", result.model_used)
            span.set_attribute("completion.total_tokens", result.usage.total_tokens)
            logger.info(
                "Chat completion with %s: %d tokens used",
                result.model_used,
                result.usage.total_tokens,
            )
            return result

    async def _create(
        self,
        messages: list[dict[str, str]],
        options: CompletionOptions,
    ) -> CompletionResult:
        try:
            response = await asyncio.wait_for(
                self._client.chat.completions.create(
                    model=options.model,
                    messages=messages,
                    temperature=options.temperature,
                    max_tokens=options.max_tokens,
                    top_p=options.top_p,
                    frequency_penalty=options.frequency_penalty,
                    presence_penalty=options.presence_penalty,
                ),
                timeout=self._timeout,
            )
        except (asyncio.TimeoutError, openai.APITimeoutError) as exc:
            raise UpstreamTimeoutError(
                f"Completion request timed out after {self._timeout:.0f}s"
            ) from exc
        except openai.APIError as exc:
            raise classify_api_error(exc, options.model) from exc

        choices = getattr(response, "choices", None) or []
        content = choices[0].message.content if choices and choices[0].message else None
        if not content or not content.strip():
            raise EmptyResponseError(f"Model '{options.model}' returned an empty response")

        usage = getattr(response, "usage", None)
        return CompletionResult(
            text=content.strip(),
            model_used=getattr(response, "model", None) or options.model,
            usage=TokenUsage(
                prompt_tokens=usage.prompt_tokens if usage else 0,
                completion_tokens=usage.completion_tokens if usage else 0,
                total_tokens=usage.total_tokens if usage else 0,
            ),
        )


def classify_api_error(exc: openai.APIError, model: str) -> PersonaChatError:
    """Map an OpenAI SDK error to the pipeline error taxonomy."""
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return AuthenticationError("Completion provider rejected the API key")
    if isinstance(exc, openai.RateLimitError):
        return RateLimitError("Completion provider rate limit exceeded")
    if isinstance(exc, openai.APIConnectionError):
        return UpstreamError(f"Could not reach the completion provider: {exc}")
    if _is_model_missing(exc):
        return ModelUnavailableError(f"Model '{model}' is not available")
    return UpstreamError(f"Completion provider error: {exc}")


def _is_model_missing(exc: openai.APIError) -> bool:
    if isinstance(exc, openai.NotFoundError):
        return True
    if not isinstance(exc, openai.BadRequestError):
        return False
    if getattr(exc, "code", None) in _MODEL_MISSING_CODES:
        return True
    message = str(exc).lower()
    return any(phrase in message for phrase in _MODEL_MISSING_PHRASES)
