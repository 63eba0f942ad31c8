"""
Pydantic models for the Chat API request/response contracts.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

MAX_MESSAGE_CHARS = 10_000


class ChatMessage(BaseModel):
    """A single message in the conversation history."""

    role: Literal["system", "user", "assistant"] = Field(
        ..., description="Message role: 'system', 'user' or 'assistant'"
    )
    content: str = Field(..., description="Message content")

    @field_validator("content")
    @classmethod
    def _trim_content(cls, value: str) -> str:
        return value.strip()[:MAX_MESSAGE_CHARS]


class ChatRequest(BaseModel):
    """Request body for the POST /api/chat endpoint."""

    messages: list[ChatMessage] = Field(
        ..., min_length=1, description="Conversation history (latest message last)"
    )


class Source(BaseModel):
    """A retrieved context chunk surfaced to the caller."""

    id: str = Field(..., description="Vector id of the chunk in the index")
    source: str = Field(..., description="Document the chunk came from")
    text: str = Field(..., description="Preview of the chunk text")
    score: float = Field(..., description="Similarity score in [0, 1]")


class ChatResponse(BaseModel):
    """Response body from the POST /api/chat endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    response: str = Field(..., description="The assistant's answer")
    sources: list[Source] = Field(
        default_factory=list, description="Context chunks the answer was grounded on"
    )
    request_id: int = Field(..., alias="requestId")
    timestamp: str = Field(..., description="ISO-8601 time the response was built")


class ErrorResponse(BaseModel):
    """Stable error envelope returned for every failed request."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool = False
    error: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable description")
    request_id: int = Field(..., alias="requestId")
    details: str | None = None
    stack: str | None = None
