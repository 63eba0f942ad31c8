"""
Error taxonomy for the chat pipeline.

Each provider raises one of these at the point of failure so the gateway
can map it to an HTTP status without inspecting free-text messages.
"""


class PersonaChatError(Exception):
    """Base class for all classified pipeline errors."""

    code = "unexpected_error"
    status_code = 500

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class InvalidRequestError(PersonaChatError):
    """The inbound payload is malformed or incomplete."""

    code = "invalid_request"
    status_code = 400


class AuthenticationError(PersonaChatError):
    """An upstream provider rejected our credentials."""

    code = "authentication_error"
    status_code = 401


class EmbeddingError(PersonaChatError):
    """An embedding could not be produced or parsed."""

    code = "embedding_error"
    status_code = 422


class RateLimitError(PersonaChatError):
    code = "rate_limit_exceeded"
    status_code = 429


class UpstreamError(PersonaChatError):
    """An upstream provider failed in a way we do not classify further."""

    code = "upstream_error"
    status_code = 500


class EmptyResponseError(UpstreamError):
    code = "empty_response"


class KnowledgeBaseError(PersonaChatError):
    """The vector index is unreachable or misconfigured."""

    code = "knowledge_base_unavailable"
    status_code = 503


class UpstreamTimeoutError(PersonaChatError):
    code = "timeout"
    status_code = 504
