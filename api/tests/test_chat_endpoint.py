"""
Tests for the /api/chat gateway.

The app lifespan is not run; a mock orchestrator is placed in app state.
"""

import json

import pytest
from fastapi.testclient import TestClient

from conftest import make_settings
from persona_chat.core.config import get_settings
from persona_chat.core.errors import (
    AuthenticationError,
    KnowledgeBaseError,
    RateLimitError,
    UpstreamTimeoutError,
)
from persona_chat.main import app
from persona_chat.models.chat import Source
from persona_chat.services.rag import RagResult

USER_MESSAGES = {"messages": [{"role": "user", "content": "What is your AI background?"}]}


class MockOrchestrator:
    def __init__(self, result=None, error=None):
        self._result = result or RagResult(response_text="I studied AI.")
        self._error = error
        self.calls = []

    async def run(self, query, history):
        self.calls.append((query, history))
        if self._error:
            raise self._error
        return self._result


@pytest.fixture
def client_factory():
    def factory(orchestrator=None, **settings):
        app.state.rag_orchestrator = orchestrator or MockOrchestrator()
        app.dependency_overrides[get_settings] = lambda: make_settings(**settings)
        return TestClient(app)

    yield factory
    app.dependency_overrides.clear()


def test_successful_chat(client_factory):
    result = RagResult(
        response_text="I studied AI.",
        sources=[
            Source(id="c1", source="resume.pdf", text="MSc in AI", score=0.82),
            Source(id="c2", source="about.md", text="Vision research", score=0.75),
        ],
    )
    client = client_factory(MockOrchestrator(result=result))

    response = client.post("/api/chat", json=USER_MESSAGES)

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["response"] == "I studied AI."
    assert [s["score"] for s in body["sources"]] == [0.82, 0.75]
    assert isinstance(body["requestId"], int)
    assert "T" in body["timestamp"]


def test_no_context_returns_empty_sources(client_factory):
    client = client_factory(MockOrchestrator(result=RagResult(response_text="General answer.")))

    response = client.post("/api/chat", json=USER_MESSAGES)

    assert response.status_code == 200
    assert response.json()["sources"] == []
    assert response.json()["response"] == "General answer."


def test_query_and_history_are_split(client_factory):
    orchestrator = MockOrchestrator()
    client = client_factory(orchestrator)
    payload = {
        "messages": [
            {"role": "system", "content": "be nice"},
            {"role": "user", "content": "Hi"},
            {"role": "assistant", "content": "Hello!"},
            {"role": "user", "content": "  Where do you work?  "},
        ]
    }

    client.post("/api/chat", json=payload)

    query, history = orchestrator.calls[0]
    assert query == "Where do you work?"
    assert [m.role for m in history] == ["system", "user", "assistant"]


def test_json_string_body_is_accepted(client_factory):
    client = client_factory()
    response = client.post(
        "/api/chat",
        content=json.dumps(json.dumps(USER_MESSAGES)),
        headers={"Content-Type": "application/json"},
    )
    assert response.status_code == 200


def test_malformed_json(client_factory):
    client = client_factory()
    response = client.post(
        "/api/chat", content="{not json", headers={"Content-Type": "application/json"}
    )
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_json"
    assert response.json()["success"] is False


@pytest.mark.parametrize(
    "payload",
    [
        {"messages": []},
        {},
        {"messages": "hello"},
        {"messages": [{"role": "robot", "content": "hi"}]},
        {"messages": [{"role": "user"}]},
    ],
)
def test_invalid_request(client_factory, payload):
    client = client_factory()
    response = client.post("/api/chat", json=payload)
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_request"


@pytest.mark.parametrize(
    "messages",
    [
        [{"role": "assistant", "content": "hi"}],
        [{"role": "user", "content": "   "}],
    ],
)
def test_no_user_message(client_factory, messages):
    client = client_factory()
    response = client.post("/api/chat", json={"messages": messages})
    assert response.status_code == 400
    assert response.json()["error"] == "no_user_message"


@pytest.mark.parametrize(
    "error, status, code",
    [
        (AuthenticationError("bad key"), 401, "authentication_error"),
        (RateLimitError("slow down"), 429, "rate_limit_exceeded"),
        (UpstreamTimeoutError("too slow"), 504, "timeout"),
        (KnowledgeBaseError("index down"), 503, "knowledge_base_unavailable"),
        (RuntimeError("boom"), 500, "unexpected_error"),
    ],
)
def test_errors_map_to_status(client_factory, error, status, code):
    client = client_factory(MockOrchestrator(error=error))

    response = client.post("/api/chat", json=USER_MESSAGES)

    assert response.status_code == status
    body = response.json()
    assert body["success"] is False
    assert body["error"] == code
    assert isinstance(body["requestId"], int)
    assert "stack" not in body
    assert "details" not in body


def test_debug_mode_includes_details(client_factory):
    client = client_factory(MockOrchestrator(error=RuntimeError("boom")), debug=True)

    body = client.post("/api/chat", json=USER_MESSAGES).json()

    assert body["details"] == "boom"
    assert "RuntimeError" in body["stack"]


def test_options_preflight(client_factory):
    response = client_factory().options("/api/chat")
    assert response.status_code == 200
    assert response.content == b""


def _preflight_headers(origin):
    return {"Origin": origin, "Access-Control-Request-Method": "POST"}


def test_cors_preflight_from_configured_origin(client_factory):
    origin = get_settings().cors_origins[0]
    response = client_factory().options("/api/chat", headers=_preflight_headers(origin))
    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == origin


def test_cors_preflight_from_unknown_origin_is_rejected(client_factory):
    response = client_factory().options(
        "/api/chat", headers=_preflight_headers("https://unknown.example")
    )
    assert response.status_code == 400


def test_get_describes_service(client_factory):
    body = client_factory(environment="development").get("/api/chat").json()
    assert body["status"] == "ok"
    assert body["environment"] == "development"
    assert body["endpoints"]["chat"]["method"] == "POST"


@pytest.mark.parametrize("method", ["put", "delete", "patch"])
def test_other_methods_not_allowed(client_factory, method):
    response = getattr(client_factory(), method)("/api/chat")
    assert response.status_code == 405
    assert response.headers["Allow"] == "GET, POST, OPTIONS"
    assert response.json()["error"] == "method_not_allowed"


def test_health(client_factory):
    response = client_factory().get("/health")
    assert response.json() == {"status": "healthy", "service": "persona-chat"}
