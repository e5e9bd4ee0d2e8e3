"""
Exceptions raised by the content-generation pipeline.

Anything derived from ``AutopilotError`` carries a message that is safe to
return to the caller as-is.
"""


class AutopilotError(Exception):
    """Base exception for pipeline operations"""


class ConfigurationError(AutopilotError):
    """Raised when configuration is invalid or missing"""


class Unauthorized(AutopilotError):
    """Raised when a manual trigger has no valid caller credential"""


class Forbidden(AutopilotError):
    """Raised when the caller is authenticated but not an administrator"""


class UpstreamGenerationFailure(AutopilotError):
    """Raised when a text-model call fails or returns an unusable structure"""

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimited(UpstreamGenerationFailure):
    """Raised when the model gateway answers 429"""


class QuotaExhausted(UpstreamGenerationFailure):
    """Raised when the model gateway answers 402"""


class ImageGenerationFailure(AutopilotError):
    """Raised by a single image attempt; never fatal for a run"""

    def __init__(self, message: str, *, retryable: bool = True, status_code: int | None = None):
        super().__init__(message)
        self.retryable = retryable
        self.status_code = status_code


class PersistenceFailure(AutopilotError):
    """Raised when a store cannot read or write a record"""


class DuplicateCategory(PersistenceFailure):
    """Raised when a category value already exists"""


class ArticleNotFound(PersistenceFailure):
    """Raised when an article id has no stored record"""
