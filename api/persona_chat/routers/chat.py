"""
Chat router: /api/chat endpoint.

Validates the inbound conversation, runs the RAG pipeline, and maps
pipeline errors to HTTP status codes with a stable JSON error envelope.
"""

import json
import logging
import time
import traceback
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from persona_chat.core.config import Settings, get_settings
from persona_chat.core.errors import InvalidRequestError, PersonaChatError
from persona_chat.models.chat import ChatMessage, ChatRequest, ChatResponse, ErrorResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["chat"])

CHAT_PATH = "/api/chat"
ALLOWED_METHODS = "GET, POST, OPTIONS"


def get_rag_orchestrator(request: Request):
    """
    Dependency injection for the RAG orchestrator.
    Initialized once in the app lifespan and stored in app.state.
    """
    return request.app.state.rag_orchestrator


def _new_request_id() -> int:
    return int(time.time() * 1000)


def _error_response(
    status_code: int,
    code: str,
    message: str,
    request_id: int,
    *,
    exc: BaseException | None = None,
    debug: bool = False,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    body = ErrorResponse(error=code, message=message, request_id=request_id)
    if debug and exc is not None:
        body.details = str(exc)
        body.stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(by_alias=True, exclude_none=True),
        headers=headers,
    )


def parse_chat_request(raw: bytes) -> ChatRequest:
    """
    Parse and validate a request body.

    Accepts a JSON object, or a JSON string that itself encodes the object.

    Raises:
        InvalidRequestError: with code invalid_json, invalid_request or
            no_user_message.
    """
    try:
        payload = json.loads(raw) if raw else None
        if isinstance(payload, str):
            payload = json.loads(payload)
    except ValueError as exc:
        raise InvalidRequestError("Request body is not valid JSON", code="invalid_json") from exc

    if not isinstance(payload, dict) or not isinstance(payload.get("messages"), list):
        raise InvalidRequestError("Expected messages array in request body")

    try:
        request = ChatRequest.model_validate(payload)
    except ValidationError as exc:
        raise InvalidRequestError(
            f"Invalid messages array: {exc.error_count()} validation error(s)"
        ) from exc

    if not any(m.role == "user" and m.content for m in request.messages):
        raise InvalidRequestError(
            "No user message found in conversation", code="no_user_message"
        )
    return request


def split_conversation(messages: list[ChatMessage]) -> tuple[str, list[ChatMessage]]:
    """Return the last non-empty user message and the history before it."""
    for index in range(len(messages) - 1, -1, -1):
        msg = messages[index]
        if msg.role == "user" and msg.content:
            return msg.content, messages[:index]
    raise InvalidRequestError("No user message found in conversation", code="no_user_message")


@router.options(CHAT_PATH)
async def chat_preflight() -> Response:
    """
    CORS preflight.

    Preflights carrying CORS headers are answered by CORSMiddleware and only
    succeed for configured origins; this route handles bare OPTIONS requests.
    """
    return Response(status_code=200)


@router.get(CHAT_PATH)
async def chat_description(settings: Settings = Depends(get_settings)):
    """Describe the chat service."""
    return {
        "status": "ok",
        "service": "persona-chat",
        "endpoints": {
            "chat": {
                "method": "POST",
                "path": CHAT_PATH,
                "body": {"messages": [{"role": "user", "content": "string"}]},
            },
            "health": {"method": "GET", "path": "/health"},
        },
        "environment": settings.environment,
    }


@router.api_route(CHAT_PATH, methods=["PUT", "PATCH", "DELETE"], include_in_schema=False)
async def chat_method_not_allowed(request: Request) -> JSONResponse:
    return _error_response(
        405,
        "method_not_allowed",
        f"Method {request.method} is not supported; use POST",
        _new_request_id(),
        headers={"Allow": ALLOWED_METHODS},
    )


@router.post(CHAT_PATH, response_model=ChatResponse)
async def chat(
    request: Request,
    settings: Settings = Depends(get_settings),
    rag=Depends(get_rag_orchestrator),
):
    """
    Ask the persona a question.

    The endpoint:
    1. Parses and validates the conversation.
    2. Retrieves context for the latest user message.
    3. Generates an answer, with or without context.
    4. Returns the answer and the sources it was grounded on.
    """
    request_id = _new_request_id()
    debug = settings.is_development

    try:
        chat_request = parse_chat_request(await request.body())
        query, history = split_conversation(chat_request.messages)
        logger.info("[%d] Processing query (%d chars)", request_id, len(query))

        result = await rag.run(query, history)
    except PersonaChatError as exc:
        log = logger.warning if exc.status_code < 500 else logger.error
        log("[%d] %s: %s", request_id, exc.code, exc.message)
        return _error_response(
            exc.status_code, exc.code, exc.message, request_id, exc=exc, debug=debug
        )
    except Exception as exc:
        logger.exception("[%d] Unexpected error", request_id)
        return _error_response(
            500,
            "unexpected_error",
            "An unexpected error occurred",
            request_id,
            exc=exc,
            debug=debug,
        )

    logger.info("[%d] Answered with %d sources", request_id, len(result.sources))
    response = ChatResponse(
        response=result.response_text,
        sources=result.sources,
        request_id=request_id,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )
    return JSONResponse(content=response.model_dump(by_alias=True, mode="json"))
