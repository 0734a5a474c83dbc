"""
Error taxonomy for the RAG engine.

Provider errors are raised by embedding/completion providers and are
handled inside the engine; none of them escape ``answer_question``.
"""


class RAGError(Exception):
    """Base class for all RAG engine errors."""


class ProviderError(RAGError):
    """An external embedding or completion provider call failed."""


class ProviderUnavailable(ProviderError):
    """The provider failed outright (network, auth, server error)."""


class RateLimited(ProviderError):
    """The provider throttled the request."""


class ProviderTimeout(ProviderError):
    """The provider did not answer in time."""


class ContextTooLong(ProviderError):
    """The prompt exceeded the model's context window."""


class MalformedGeneratedOutput(RAGError):
    """Structured model output could not be parsed."""

    def __init__(self, message: str, raw: str = ""):
        super().__init__(message)
        self.raw = raw


class ContentNotFoundError(RAGError):
    """The content store has no record for the requested id."""

    def __init__(self, content_id: str):
        super().__init__(f"Content not found: {content_id}")
        self.content_id = content_id
