"""
Exception hierarchy for the application.
Every error carries a message, an HTTP-style status code and optional details.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from httpx import codes


class AppError(Exception):
    """Base class for all application exceptions."""
    def __init__(
        self,
        message: str,
        status_code: int = codes.INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": {
                "code": self.__class__.__name__,
                "message": self.message,
                "details": self.details,
            }
        }


# ---------------------------------------------------------------------------
# Ledger (domain) errors
# ---------------------------------------------------------------------------


class EntityNotFoundException(AppError):
    """Resource not found error."""
    def __init__(self, message: str = "Entity not found", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, codes.NOT_FOUND, details)


class BusinessRuleViolationException(AppError):
    """Business logic violation error."""
    def __init__(self, message: str = "Business rule violation", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, codes.UNPROCESSABLE_ENTITY, details)


class DuplicateEntityException(AppError):
    """An entity with the same identifier already exists."""
    def __init__(self, message: str = "Entity already exists", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, codes.CONFLICT, details)


class InsufficientStockError(BusinessRuleViolationException):
    """Requested quantity exceeds the product's current stock."""
    def __init__(self, available: float, requested: float, product_id: Optional[int] = None):
        super().__init__(
            f"Insufficient stock. Available: {available:g}, Requested: {requested:g}",
            {"available": available, "requested": requested, "product_id": product_id},
        )
        self.available = available
        self.requested = requested


class ValidationFailedException(AppError):
    """Entity failed validation; `errors` lists every problem found."""
    def __init__(self, entity: str, errors: List[str]):
        super().__init__(
            f"Invalid {entity} data: {', '.join(errors)}",
            codes.UNPROCESSABLE_ENTITY,
            {"entity": entity, "errors": errors},
        )
        self.errors = errors


# ---------------------------------------------------------------------------
# Remote storage errors
# ---------------------------------------------------------------------------


class GitHubErrorType(str, Enum):
    AUTHENTICATION_ERROR = "AUTHENTICATION_ERROR"
    PERMISSION_ERROR = "PERMISSION_ERROR"
    RATE_LIMIT_ERROR = "RATE_LIMIT_ERROR"
    NOT_FOUND_ERROR = "NOT_FOUND_ERROR"
    CONFLICT_ERROR = "CONFLICT_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    SERVER_ERROR = "SERVER_ERROR"
    API_ERROR = "API_ERROR"
    TIMEOUT = "TIMEOUT"
    NETWORK_ERROR = "NETWORK_ERROR"
    PARSE_ERROR = "PARSE_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class GitHubAPIError(AppError):
    """Failure talking to the GitHub contents API (internal to the client)."""
    def __init__(
        self,
        message: str,
        error_type: GitHubErrorType = GitHubErrorType.API_ERROR,
        status: Optional[int] = None,
        sha: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message,
            status or codes.BAD_GATEWAY,
            {"error_type": error_type.value, "status": status, "sha": sha},
        )
        self.error_type = error_type
        self.status = status
        self.sha = sha
        self.data = data or {}


class GitHubSyncError(AppError):
    """Raised by the sync service when a remote operation fails."""
    def __init__(
        self,
        message: str,
        error_type: Optional[GitHubErrorType] = None,
        status: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, status or codes.BAD_GATEWAY, details)
        self.error_type = error_type
        self.status = status


class NotConnectedError(GitHubSyncError):
    """No repository connection has been established."""
    def __init__(self, message: str = "GitHub not configured"):
        super().__init__(message, status=codes.UNAUTHORIZED)


class SyncConflictError(GitHubSyncError):
    """The remote file changed since it was last fetched."""
    def __init__(self, message: str, expected_sha: Optional[str] = None):
        super().__init__(
            message,
            GitHubErrorType.CONFLICT_ERROR,
            codes.CONFLICT,
            {"expected_sha": expected_sha},
        )
        self.expected_sha = expected_sha


class CorruptedDataError(GitHubSyncError):
    """The remote file is not valid JSON; only a forced overwrite can recover it."""
    def __init__(self, message: str, sha: Optional[str] = None):
        super().__init__(message, GitHubErrorType.PARSE_ERROR, codes.UNPROCESSABLE_ENTITY, {"sha": sha})
        self.sha = sha


class EncryptionError(AppError):
    """Token could not be encrypted or decrypted."""
    def __init__(self, message: str = "Failed to process token"):
        super().__init__(message, codes.BAD_REQUEST)
