"""
Embedding provider for query and document text.

Calls a hosted feature-extraction model over HTTP and falls back to a
deterministic local hash embedding whenever the remote model is missing,
slow, or returns something unusable. ``embed`` never raises.
"""

import logging
import math
import re
from numbers import Real
from typing import Any

import httpx

from persona_chat.core.config import Settings
from persona_chat.core.errors import EmbeddingError
from persona_chat.core.telemetry import get_tracer

logger = logging.getLogger(__name__)

EMBEDDING_DIMENSION = 384

_NON_ALPHANUMERIC = re.compile(r"[^a-z0-9\s]")


def l2_normalize(vector: list[float]) -> list[float]:
    """Scale a vector to unit length. A zero vector is returned unchanged."""
    norm = math.sqrt(sum(value * value for value in vector))
    if norm == 0:
        return list(vector)
    return [value / norm for value in vector]


def fit_dimension(vector: list[float], dimension: int = EMBEDDING_DIMENSION) -> list[float]:
    """Truncate or zero-pad a vector to the index dimension."""
    if len(vector) >= dimension:
        return vector[:dimension]
    return vector + [0.0] * (dimension - len(vector))


def fallback_embedding(text: str, dimension: int = EMBEDDING_DIMENSION) -> list[float]:
    """
    Deterministic bag-of-tokens embedding.

    Each token is hashed into one of ``dimension`` buckets with a
    polynomial rolling hash; bucket counts are L2-normalized.
    """
    clean = _NON_ALPHANUMERIC.sub("", text.lower())
    buckets = [0.0] * dimension
    for token in clean.split():
        bucket = 0
        for char in token:
            bucket = (bucket * 31 + ord(char)) % dimension
        buckets[bucket] += 1.0
    return l2_normalize(buckets)


def _flatten(value: Any) -> list[Any]:
    if isinstance(value, (list, tuple)):
        flat: list[Any] = []
        for item in value:
            flat.extend(_flatten(item))
        return flat
    return [value]


def normalize_embedding_response(raw: Any) -> list[float]:
    """
    Reduce any supported feature-extraction payload to a flat float list.

    Accepted shapes:
        - ``[0.1, 0.2, ...]``
        - ``[[0.1, 0.2, ...]]`` or deeper nesting (flattened in order)
        - ``{"embedding": [...]}`` / ``{"embeddings": [...]}``

    Raises:
        EmbeddingError: if the payload is empty or not purely numeric.
    """
    if isinstance(raw, dict):
        if "embedding" in raw:
            raw = raw["embedding"]
        elif "embeddings" in raw:
            raw = raw["embeddings"]
        else:
            raise EmbeddingError(
                f"Embedding response has no embedding field (keys: {sorted(raw)})"
            )

    if not isinstance(raw, (list, tuple)):
        raise EmbeddingError(f"Unsupported embedding response type: {type(raw).__name__}")

    flat = _flatten(raw)
    if not flat:
        raise EmbeddingError("Embedding response is empty")
    if any(isinstance(v, bool) or not isinstance(v, Real) for v in flat):
        raise EmbeddingError("Embedding response contains non-numeric values")
    return [float(v) for v in flat]


class EmbeddingProvider:
    """Remote feature-extraction client with a local deterministic fallback."""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient | None = None,
        cache: dict[str, list[float]] | None = None,
    ) -> None:
        self._api_key = settings.huggingface_api_key
        self._url = f"{settings.embedding_api_url.rstrip('/')}/{settings.embedding_model}/pipeline/feature-extraction"
        self._max_length = settings.embedding_max_length
        self._timeout = settings.embedding_timeout
        self._http = http_client or httpx.AsyncClient()
        if cache is None and settings.embedding_cache_enabled:
            cache = {}
        self._cache = cache
        self._tracer = get_tracer()

    @property
    def url(self) -> str:
        return self._url

    async def embed(self, text: str) -> list[float]:
        """
        Embed a single text as a 384-dimensional unit vector.

        Args:
            text: Query or chunk text. Non-strings are coerced.

        Returns:
            A list of exactly EMBEDDING_DIMENSION floats.
        """
        with self._tracer.start_as_current_span("embedding.embed") as span:
            clean = str(text if text is not None else "").strip()[: self._max_length]
            span.set_attribute("embedding.input_length", len(clean))

            if not clean:
                logger.warning("Empty embedding input, using fallback embedding.")
                span.set_attribute("embedding.source", "fallback")
                return fallback_embedding("")

            if not self._api_key:
                logger.warning("No embedding API key configured, using fallback embedding.")
                span.set_attribute("embedding.source", "fallback")
                return fallback_embedding(clean)

            cache_key = clean.lower()
            if self._cache is not None and cache_key in self._cache:
                span.set_attribute("embedding.source", "cache")
                return list(self._cache[cache_key])

            vector = await self._embed_remote(clean)
            if vector is None:
                span.set_attribute("embedding.source", "fallback")
                return fallback_embedding(clean)

            span.set_attribute("embedding.source", "remote")
            if self._cache is not None:
                self._cache[cache_key] = vector
            return list(vector)

    async def _embed_remote(self, text: str) -> list[float] | None:
        """Call the remote model, retrying one transient failure. None means fall back."""
        for attempt in (1, 2):
            try:
                raw = await self._request(text)
                vector = normalize_embedding_response(raw)
                return l2_normalize(fit_dimension(vector))
            except (httpx.TimeoutException, httpx.TransportError) as exc:
                logger.warning(
                    "Embedding request failed (attempt %d/2): %s: %s",
                    attempt,
                    type(exc).__name__,
                    exc,
                )
                if attempt == 1:
                    continue
            except httpx.HTTPStatusError as exc:
                logger.error(
                    "Embedding API returned HTTP %d", exc.response.status_code
                )
            except httpx.HTTPError as exc:
                logger.error(
                    "Embedding request failed: %s: %s", type(exc).__name__, exc
                )
            except (EmbeddingError, ValueError) as exc:
                logger.error("Malformed embedding response: %s", exc)
            break

        logger.warning("Using fallback embedding.")
        return None

    async def _request(self, text: str) -> Any:
        response = await self._http.post(
            self._url,
            json={
                "inputs": text,
                "options": {"wait_for_model": True, "use_cache": True},
            },
            headers={"Authorization": f"Bearer {self._api_key}"},
            timeout=self._timeout,
        )
        response.raise_for_status()
        return response.json()
