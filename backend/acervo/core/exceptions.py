"""
Error taxonomy shared by the services and the HTTP layer.

Every error carries a short, user-presentable message and the HTTP status the
API answers with. Anything that is not an ``AcervoError`` is rendered as a
generic 500 by the application exception handler.
"""

from typing import Optional


class AcervoError(Exception):
    """Base class for all expected failures of a request"""

    status_code: int = 500

    def __init__(self, message: str, *, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class NotFoundError(AcervoError):
    """Missing document or record"""

    status_code = 404


class StorageError(AcervoError):
    """Blob download/upload failure"""

    status_code = 502


class ExtractionError(AcervoError):
    """Stored content could not be turned into text"""

    status_code = 422


class ProviderError(AcervoError):
    """Embedding or generation API answered with a non-success status"""

    status_code = 502

    def __init__(
        self,
        message: str,
        *,
        provider_status: Optional[int] = None,
        retryable: bool = False,
        status_code: Optional[int] = None,
    ):
        super().__init__(message, status_code=status_code)
        self.provider_status = provider_status
        self.retryable = retryable


class RateLimitedError(ProviderError):
    status_code = 429

    def __init__(self, message: str = "Rate limit exceeded at the AI provider. Try again later.", **kwargs):
        kwargs.setdefault("provider_status", 429)
        kwargs.setdefault("retryable", True)
        super().__init__(message, **kwargs)


class AuthInvalidError(ProviderError):
    def __init__(self, message: str = "AI provider API key is invalid or expired.", **kwargs):
        super().__init__(message, **kwargs)


class ParseError(AcervoError):
    """Provider returned structured output that does not match the expected schema"""

    status_code = 502


class ValidationError(AcervoError):
    """Missing fields, oversized upload, disallowed extension"""

    status_code = 400


class FileTooLargeError(ValidationError):
    status_code = 413


class DuplicateDocumentError(ValidationError):
    status_code = 409

    def __init__(self, message: str = "This document already exists in the system", *, existing_id: Optional[str] = None):
        super().__init__(message)
        self.existing_id = existing_id


class UnauthorizedError(AcervoError):
    status_code = 401


class RetrievalError(AcervoError):
    """Similarity search against the relational store failed"""

    status_code = 500


class QueryTimeoutError(AcervoError):
    """A RAG query exceeded its overall time budget"""

    status_code = 504

    def __init__(self, message: str = "The query took too long to answer. Try again later."):
        super().__init__(message)
