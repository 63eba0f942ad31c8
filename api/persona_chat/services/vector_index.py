"""
Vector index client wrapper.

Talks to a Pinecone-compatible data plane over HTTP: nearest-neighbor
query with score filtering, batched upsert for ingestion, and index stats.
Retrieval is best-effort: ``search`` logs failures and returns no matches
unless strict retrieval is enabled.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from persona_chat.core.config import Settings
from persona_chat.core.errors import KnowledgeBaseError
from persona_chat.core.telemetry import get_tracer

logger = logging.getLogger(__name__)

MAX_QUERY_TOP_K = 10


@dataclass
class ContextMatch:
    """A single scored chunk returned by the index."""

    id: str
    score: float
    text: str
    source: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class VectorRecord:
    """A vector and its metadata, ready for upsert."""

    id: str
    values: list[float]
    metadata: dict[str, Any] = field(default_factory=dict)


class VectorIndexClient:
    """Wrapper around the vector index HTTP API for context retrieval."""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._host = self._normalize_host(settings.pinecone_host)
        self._api_key = settings.pinecone_api_key
        self._index_name = settings.pinecone_index
        self._namespace = settings.pinecone_namespace
        self._api_version = settings.pinecone_api_version
        self._timeout = settings.vector_timeout
        self._min_score = settings.min_score
        self._batch_size = settings.upsert_batch_size
        self._strict = settings.strict_retrieval
        self._http = http_client or httpx.AsyncClient()
        self._tracer = get_tracer()

    @property
    def min_score(self) -> float:
        return self._min_score

    async def search(self, vector: list[float], top_k: int = 3) -> list[ContextMatch]:
        """
        Find the chunks nearest to ``vector``.

        Over-fetches (2 * top_k, capped at 10) to improve yield after the
        score filter, then keeps matches with ``score >= min_score``.

        Args:
            vector: The embedded query.
            top_k: Maximum number of matches to return.

        Returns:
            ContextMatch list ordered by descending score. Empty on failure
            unless strict retrieval is enabled.
        """
        with self._tracer.start_as_current_span("vector_index.search") as span:
            request_k = min(max(2 * top_k, top_k), MAX_QUERY_TOP_K)
            span.set_attribute("vector_index.top_k", top_k)
            span.set_attribute("vector_index.request_k", request_k)

            try:
                payload = await self._post(
                    "/query",
                    {
                        "vector": vector,
                        "topK": request_k,
                        "includeMetadata": True,
                        "includeValues": False,
                        "namespace": self._namespace,
                    },
                )
                matches = self._parse_matches(payload)
            except KnowledgeBaseError:
                if self._strict:
                    raise
                return []

            results = sorted(
                (m for m in matches if m.score >= self._min_score),
                key=lambda m: m.score,
                reverse=True,
            )[:top_k]

            span.set_attribute("vector_index.results_count", len(results))
            logger.info(
                "Vector search returned %d/%d matches above %.2f",
                len(results),
                len(matches),
                self._min_score,
            )
            return results

    async def upsert(
        self,
        records: list[VectorRecord],
        namespace: str | None = None,
    ) -> int:
        """
        Upsert vectors in batches.

        Returns:
            Number of vectors the index reports as upserted.
        """
        namespace = self._namespace if namespace is None else namespace
        upserted = 0
        for start in range(0, len(records), self._batch_size):
            batch = records[start : start + self._batch_size]
            payload = await self._post(
                "/vectors/upsert",
                {
                    "vectors": [
                        {"id": r.id, "values": r.values, "metadata": r.metadata}
                        for r in batch
                    ],
                    "namespace": namespace,
                },
            )
            upserted += int(payload.get("upsertedCount", len(batch)))
            logger.info(
                "Upserted batch %d (%d vectors)",
                start // self._batch_size + 1,
                len(batch),
            )
        return upserted

    async def describe_index_stats(self) -> dict[str, Any]:
        """Return dimension, fullness and per-namespace vector counts."""
        return await self._post("/describe_index_stats", {})

    async def _post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        """POST to the index host, translating every failure to KnowledgeBaseError."""
        if not self._host or not self._api_key:
            logger.error("Vector index is not configured (host or API key missing).")
            raise KnowledgeBaseError("Vector index is not configured")

        try:
            response = await self._http.post(
                f"{self._host}{path}",
                json=body,
                headers={
                    "Api-Key": self._api_key,
                    "X-Pinecone-API-Version": self._api_version,
                },
                timeout=self._timeout,
            )
        except httpx.TimeoutException as exc:
            logger.error("Vector index request timed out: %s", exc)
            raise KnowledgeBaseError("Vector index request timed out") from exc
        except httpx.TransportError as exc:
            logger.error("Vector index unreachable: %s", exc)
            raise KnowledgeBaseError("Vector index unreachable") from exc
        except httpx.HTTPError as exc:
            logger.error("Vector index request failed: %s: %s", type(exc).__name__, exc)
            raise KnowledgeBaseError("Vector index request failed") from exc

        status = response.status_code
        if status in (401, 403):
            logger.error("Vector index authentication failed (HTTP %d).", status)
            raise KnowledgeBaseError("Vector index authentication failed")
        if status == 404:
            logger.error("Vector index '%s' not found at %s.", self._index_name, self._host)
            raise KnowledgeBaseError("Vector index not found")
        if status == 429:
            logger.error("Vector index rate limit exceeded.")
            raise KnowledgeBaseError("Vector index rate limit exceeded")
        if status >= 400:
            logger.error("Vector index returned HTTP %d: %s", status, response.text[:200])
            raise KnowledgeBaseError(f"Vector index returned HTTP {status}")

        try:
            payload = response.json()
        except ValueError as exc:
            logger.error("Vector index returned a non-JSON body.")
            raise KnowledgeBaseError("Malformed vector index response") from exc
        if not isinstance(payload, dict):
            logger.error("Vector index returned an unexpected payload type.")
            raise KnowledgeBaseError("Malformed vector index response")
        return payload

    @staticmethod
    def _parse_matches(payload: dict[str, Any]) -> list[ContextMatch]:
        matches = []
        for raw in payload.get("matches") or []:
            if not isinstance(raw, dict):
                continue
            metadata = raw.get("metadata") or {}
            if not isinstance(metadata, dict):
                logger.warning("Skipping match %s with non-object metadata.", raw.get("id"))
                continue
            text = metadata.get("text")
            if not text:
                continue
            try:
                score = float(raw.get("score") or 0.0)
            except (TypeError, ValueError):
                logger.warning("Skipping match %s with invalid score.", raw.get("id"))
                continue
            matches.append(
                ContextMatch(
                    id=str(raw.get("id", "")),
                    score=score,
                    text=str(text),
                    source=str(
                        metadata.get("source") or metadata.get("title") or "unknown"
                    ),
                    metadata=metadata,
                )
            )
        return matches

    @staticmethod
    def _normalize_host(host: str) -> str:
        host = host.strip().rstrip("/")
        if host and not host.startswith(("http://", "https://")):
            host = f"https://{host}"
        return host
