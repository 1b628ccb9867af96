"""Error taxonomy for the sync core.

Every error raised by the core is a ``SyncError`` carrying a closed
``ErrorKind`` so callers can match on the kind at the boundary instead of
chains of ``isinstance`` checks.
"""

from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional


RETRYABLE_STATUS_CODES: FrozenSet[int] = frozenset({408, 429, 500, 502, 503, 504})

# Server-side overload responses count half toward the circuit breaker threshold
TRANSIENT_STATUS_CODES: FrozenSet[int] = frozenset({429, 502, 503, 504})


class ErrorKind(Enum):
    """Closed set of failure kinds surfaced by the sync core."""
    TRANSPORT = "transport"
    API = "api"
    INVALID_CREDENTIAL = "invalid_credential"
    CIRCUIT_OPEN = "circuit_open"
    TIMEOUT = "timeout"
    VALIDATION = "validation"
    PAGINATION_LIMIT = "pagination_limit"
    ALREADY_ACTIVE = "already_active"


class SyncError(Exception):
    """Base class for all sync core errors."""

    kind: ErrorKind

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.context: Dict[str, Any] = dict(context or {})

    def with_context(self, **context: Any) -> "SyncError":
        """Merge extra diagnostic context into the error and return it."""
        for key, value in context.items():
            self.context.setdefault(key, value)
        return self

    @property
    def retryable(self) -> bool:
        return False


class TransportError(SyncError):
    """HTTP-layer failure (DNS, connection, timeout, decoding, redirects) with no usable response."""

    kind = ErrorKind.TRANSPORT

    @property
    def retryable(self) -> bool:
        return True


class ApiError(SyncError):
    """Non-success HTTP status returned by the API."""

    kind = ErrorKind.API

    def __init__(
        self,
        message: str,
        status_code: int,
        body: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, context)
        self.status_code = status_code
        self.body = body

    def is_status(self, code: int) -> bool:
        return self.status_code == code

    @property
    def retryable(self) -> bool:
        return self.status_code in RETRYABLE_STATUS_CODES


class InvalidCredentialError(ApiError):
    """The API rejected the api-key (HTTP 401)."""

    kind = ErrorKind.INVALID_CREDENTIAL

    def __init__(self, message: str = "Invalid API key", body: Optional[str] = None,
                 context: Optional[Dict[str, Any]] = None):
        super().__init__(message, 401, body, context)

    @property
    def retryable(self) -> bool:
        return False


class CircuitOpenError(SyncError):
    """Raised without a network attempt while the circuit breaker is open."""

    kind = ErrorKind.CIRCUIT_OPEN

    def __init__(self, retry_after: float, context: Optional[Dict[str, Any]] = None):
        super().__init__(
            f"Circuit breaker is open. API is temporarily unavailable "
            f"(retry in ~{retry_after:.1f}s)",
            context
        )
        self.retry_after = retry_after


class ImportTimeoutError(SyncError):
    """Cooperative cancellation fired. Means pause and resume later, not abort."""

    kind = ErrorKind.TIMEOUT

    def __init__(
        self,
        message: str,
        items_processed: int = 0,
        pages_processed: int = 0,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, context)
        self.items_processed = items_processed
        self.pages_processed = pages_processed


class ValidationError(SyncError):
    """Batch data quality thresholds were breached."""

    kind = ErrorKind.VALIDATION

    def __init__(
        self,
        message: str,
        failed_ids: Optional[List[Any]] = None,
        total: int = 0,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, context)
        self.failed_ids = list(failed_ids or [])
        self.total = total


class PaginationLimitError(SyncError):
    """The page ceiling was hit, which indicates an inconsistent endpoint."""

    kind = ErrorKind.PAGINATION_LIMIT

    def __init__(self, message: str, items_processed: int,
                 context: Optional[Dict[str, Any]] = None):
        super().__init__(message, context)
        self.items_processed = items_processed


class AlreadyActiveError(SyncError):
    """Another import holds the document."""

    kind = ErrorKind.ALREADY_ACTIVE
