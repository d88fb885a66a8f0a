"""
Custom exception classes and error handling.

Two families live here:
- Brain errors raised by the knowledge engine itself
- API exceptions that give consistent HTTP error responses
"""
from fastapi import HTTPException, status
from typing import Optional, Dict, Any


class BrainError(Exception):
    """Base class for knowledge engine errors."""


class KnowledgeNotLoadedError(BrainError):
    """get_user_knowledge() was called before any load_user_knowledge()."""

    def __init__(self, detail: str = "Knowledge not loaded. Call load_user_knowledge first."):
        super().__init__(detail)


class ProfileLoadError(BrainError):
    """The identity/profile read failed; a snapshot without identity is meaningless."""

    def __init__(self, user_id: str, cause: Optional[BaseException] = None):
        super().__init__(f"Failed to load profile for user {user_id}: {cause}")
        self.user_id = user_id
        self.cause = cause


class CollectorError(BrainError):
    """A single-domain collector failed during an explicit refresh."""

    def __init__(self, domain: str, cause: Optional[BaseException] = None):
        super().__init__(f"Collector for {domain} failed: {cause!r}")
        self.domain = domain
        self.cause = cause


class CollectorTimeout(CollectorError):
    """A collector exceeded its deadline."""

    def __init__(self, domain: str, timeout_s: float):
        super().__init__(domain, TimeoutError(f"exceeded {timeout_s}s"))
        self.timeout_s = timeout_s


class UnknownDomainError(BrainError, ValueError):
    """Domain name does not match any knowledge domain."""

    def __init__(self, value: Any):
        super().__init__(f"Unknown knowledge domain: {value!r}")
        self.value = value


class DataStoreError(BrainError):
    """A read against the remote data store failed."""

    def __init__(self, table: str, cause: Optional[BaseException] = None):
        super().__init__(f"Data store read failed for table {table}: {cause}")
        self.table = table
        self.cause = cause


class APIException(HTTPException):
    """Base API exception with consistent structure."""

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: Optional[str] = None,
        headers: Optional[Dict[str, Any]] = None
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code


class NotFoundError(APIException):
    """Resource not found."""

    def __init__(self, resource: str, identifier: str):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{resource} not found: {identifier}",
            error_code="NOT_FOUND"
        )


class ServiceUnavailableError(APIException):
    """Upstream data source unavailable."""

    def __init__(self, detail: str = "Upstream data unavailable"):
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=detail,
            error_code="SERVICE_UNAVAILABLE"
        )
