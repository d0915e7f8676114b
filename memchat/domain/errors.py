from typing import Optional


class MemchatError(Exception):
    """Base class for all domain errors"""

    status_code: int = 500

    def __init__(self, message: str, error_code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code


class MessageValidationError(MemchatError):
    """Raised before any side effect when user input is unusable"""

    status_code = 400


class ConversationNotFoundError(MemchatError):
    """Conversation is missing or owned by someone else.

    Both cases share one message so callers cannot test for the existence
    of other users' conversations.
    """

    status_code = 404

    def __init__(self, message: str = "Conversation not found"):
        super().__init__(message, error_code="conversation_not_found")


class AuthenticationError(MemchatError):
    """Credentials missing or not recognised"""

    status_code = 401


class GenerationError(MemchatError):
    """The generator capability failed to produce a response"""

    status_code = 502


class ConfigurationError(MemchatError):
    """Fatal misconfiguration detected at startup"""


class EmbeddingDimensionError(ConfigurationError):
    """Embedder output length does not match the configured dimension"""

    def __init__(self, expected: int, actual: int):
        super().__init__(
            f"Embedding dimension mismatch: expected {expected}, got {actual}",
            error_code="embedding_dimension_mismatch"
        )
        self.expected = expected
        self.actual = actual


class VectorIndexError(MemchatError):
    """Vector index backend failure"""
