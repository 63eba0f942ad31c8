"""
Unit tests for the embedding provider.

Remote calls go through httpx.MockTransport; no network access.
"""

import math

import httpx
import pytest

from conftest import make_settings
from persona_chat.core.errors import EmbeddingError
from persona_chat.services.embedding import (
    EMBEDDING_DIMENSION,
    EmbeddingProvider,
    fallback_embedding,
    fit_dimension,
    l2_normalize,
    normalize_embedding_response,
)


def _norm(vector):
    return math.sqrt(sum(v * v for v in vector))


def _provider(handler, **overrides):
    transport = httpx.MockTransport(handler)
    client = httpx.AsyncClient(transport=transport)
    return EmbeddingProvider(make_settings(**overrides), http_client=client)


class TestFallbackEmbedding:
    def test_is_deterministic(self):
        text = "What is your AI background?"
        assert fallback_embedding(text) == fallback_embedding(text)

    def test_has_unit_norm_and_fixed_dimension(self):
        vector = fallback_embedding("Machine learning and computer vision")
        assert len(vector) == EMBEDDING_DIMENSION
        assert _norm(vector) == pytest.approx(1.0)

    def test_empty_text_is_zero_vector(self):
        vector = fallback_embedding("")
        assert len(vector) == EMBEDDING_DIMENSION
        assert all(v == 0.0 for v in vector)

    def test_ignores_case_and_punctuation(self):
        assert fallback_embedding("Hello, World!") == fallback_embedding("hello world")

    def test_token_bucket_uses_polynomial_hash(self):
        # "ab": h = (0*31 + 97) % 384 = 97, then (97*31 + 98) % 384 = 3105 % 384 = 33
        vector = fallback_embedding("ab")
        assert vector[33] == pytest.approx(1.0)
        assert sum(1 for v in vector if v) == 1


class TestNormalizeEmbeddingResponse:
    def test_flat_list(self):
        assert normalize_embedding_response([0.1, 0.2, 0.3]) == [0.1, 0.2, 0.3]

    def test_nested_list(self):
        assert normalize_embedding_response([[0.1, 0.2], [0.3]]) == [0.1, 0.2, 0.3]

    def test_deeply_nested_list(self):
        assert normalize_embedding_response([[[1, 2]], [[3]]]) == [1.0, 2.0, 3.0]

    @pytest.mark.parametrize("key", ["embedding", "embeddings"])
    def test_object_with_embedding_field(self, key):
        assert normalize_embedding_response({key: [[0.5, 0.5]]}) == [0.5, 0.5]

    @pytest.mark.parametrize(
        "raw",
        [[], [[]], {"vectors": [1.0]}, "0.1,0.2", [0.1, "x"], [True, False], None],
    )
    def test_rejects_malformed(self, raw):
        with pytest.raises(EmbeddingError):
            normalize_embedding_response(raw)


class TestVectorHelpers:
    def test_fit_dimension_pads_and_truncates(self):
        assert fit_dimension([1.0, 2.0], 4) == [1.0, 2.0, 0.0, 0.0]
        assert fit_dimension([1.0, 2.0, 3.0], 2) == [1.0, 2.0]

    def test_l2_normalize_leaves_zero_vector(self):
        assert l2_normalize([0.0, 0.0]) == [0.0, 0.0]
        assert l2_normalize([3.0, 4.0]) == [0.6, 0.8]


class TestEmbeddingProvider:
    @pytest.mark.asyncio
    async def test_remote_embedding_is_fitted_and_normalized(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json=[[3.0, 4.0]])

        provider = _provider(handler)
        vector = await provider.embed("  What is your AI background?  ")

        assert len(vector) == EMBEDDING_DIMENSION
        assert vector[:2] == pytest.approx([0.6, 0.8])
        assert _norm(vector) == pytest.approx(1.0)
        assert len(requests) == 1
        assert requests[0].headers["Authorization"] == "Bearer test-hf-key"
        assert str(requests[0].url) == provider.url
        assert b'"wait_for_model":true' in requests[0].content.replace(b" ", b"")

    @pytest.mark.asyncio
    async def test_input_is_truncated(self):
        seen = []

        def handler(request):
            seen.append(request.read())
            return httpx.Response(200, json=[0.1] * EMBEDDING_DIMENSION)

        provider = _provider(handler, embedding_max_length=10)
        await provider.embed("x" * 50)

        assert b'"inputs":"xxxxxxxxxx"' in seen[0].replace(b" ", b"")

    @pytest.mark.asyncio
    async def test_timeout_retries_once_then_falls_back(self):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ReadTimeout("timed out", request=request)

        provider = _provider(handler)
        vector = await provider.embed("What is your AI background?")

        assert len(calls) == 2
        assert vector == fallback_embedding("What is your AI background?")

    @pytest.mark.asyncio
    async def test_transient_error_then_success(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, json={"embedding": [1.0] * EMBEDDING_DIMENSION})

        provider = _provider(handler)
        vector = await provider.embed("hello")

        assert len(calls) == 2
        assert _norm(vector) == pytest.approx(1.0)
        assert vector != fallback_embedding("hello")

    @pytest.mark.asyncio
    async def test_http_error_falls_back_without_retry(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503, json={"error": "Model is loading"})

        provider = _provider(handler)
        vector = await provider.embed("hello")

        assert len(calls) == 1
        assert vector == fallback_embedding("hello")

    @pytest.mark.asyncio
    async def test_malformed_response_falls_back(self):
        provider = _provider(lambda request: httpx.Response(200, json={"oops": 1}))
        assert await provider.embed("hello") == fallback_embedding("hello")

    @pytest.mark.asyncio
    async def test_undecodable_body_falls_back(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(
                200, headers={"content-encoding": "gzip"}, content=b"not gzip"
            )

        provider = _provider(handler)
        vector = await provider.embed("hello world")

        assert len(calls) == 1
        assert vector == fallback_embedding("hello world")
        assert len(vector) == EMBEDDING_DIMENSION

    @pytest.mark.asyncio
    async def test_missing_api_key_skips_remote(self):
        def handler(request):
            raise AssertionError("remote model must not be called")

        provider = _provider(handler, huggingface_api_key="")
        assert await provider.embed("hello") == fallback_embedding("hello")

    @pytest.mark.asyncio
    async def test_empty_input_returns_zero_vector(self):
        def handler(request):
            raise AssertionError("remote model must not be called")

        provider = _provider(handler)
        vector = await provider.embed("   ")
        assert vector == [0.0] * EMBEDDING_DIMENSION

    @pytest.mark.asyncio
    async def test_remote_results_are_cached_by_normalized_text(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json=[0.2] * EMBEDDING_DIMENSION)

        provider = _provider(handler)
        first = await provider.embed("Hello there")
        second = await provider.embed("  hello there ")

        assert first == second
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_fallback_results_are_not_cached(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500)

        provider = _provider(handler)
        await provider.embed("hello")
        await provider.embed("hello")

        assert len(calls) == 2
