"""
Error Taxonomy

Exceptions shared by the ingestion, storage and query layers.
"""

from enum import Enum
from typing import Optional


class NewsAgentError(Exception):
    """Base class for all pipeline errors."""
    pass


class FetchErrorKind(str, Enum):
    """Classification of a failed HTML fetch."""
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    UNREACHABLE = "unreachable"
    HTTP_ERROR = "http_error"


class FetchError(NewsAgentError):
    """
    Raised when the raw HTML for a URL cannot be retrieved.

    Attributes:
        url: URL that was being fetched
        kind: FetchErrorKind classifying the failure
        status_code: HTTP status, if the server answered at all
    """

    kind = FetchErrorKind.HTTP_ERROR

    def __init__(
        self,
        message: str,
        url: str,
        status_code: Optional[int] = None,
        kind: Optional[FetchErrorKind] = None
    ):
        super().__init__(message)
        self.url = url
        self.status_code = status_code
        if kind is not None:
            self.kind = kind

    @property
    def is_transient(self) -> bool:
        """Whether retrying the same request may succeed."""
        if self.kind in (FetchErrorKind.UNREACHABLE, FetchErrorKind.RATE_LIMITED):
            return True
        return self.status_code is not None and self.status_code >= 500


class AccessDeniedError(FetchError):
    """The site refused the request (401/403), usually because it blocks scrapers."""
    kind = FetchErrorKind.FORBIDDEN


class PageNotFoundError(FetchError):
    """The page does not exist (404)."""
    kind = FetchErrorKind.NOT_FOUND


class RateLimitedError(FetchError):
    """Too many requests to the site (429)."""
    kind = FetchErrorKind.RATE_LIMITED


class UnreachableError(FetchError):
    """No response received: connection failure, timeout or redirect loop."""
    kind = FetchErrorKind.UNREACHABLE


class InvalidUrlError(NewsAgentError, ValueError):
    """Raised when a string is not an absolute http(s) URL."""
    pass


class ExtractionError(NewsAgentError):
    """Raised when a structuring stage produced no usable content."""
    pass


class IndexUnavailableError(NewsAgentError):
    """Raised when the vector index could not be opened or created."""
    pass


class IndexOperationError(NewsAgentError):
    """Raised when adding to or querying the vector index fails."""
    pass


class GenerationError(NewsAgentError):
    """Raised when the language model call fails."""
    pass
