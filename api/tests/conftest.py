"""Shared fixtures for the API tests."""

import pytest

from persona_chat.core.config import Settings


def make_settings(**overrides) -> Settings:
    """Settings isolated from the developer's .env file."""
    values = {
        "groq_api_key": "test-groq-key",
        "huggingface_api_key": "test-hf-key",
        "pinecone_api_key": "test-pinecone-key",
        "pinecone_index": "portfolio",
        "pinecone_host": "https://portfolio-abc123.svc.pinecone.io",
        "environment": "test",
        "debug": False,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings():
    return make_settings()
