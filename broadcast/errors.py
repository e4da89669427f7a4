"""
Broadcast Errors
================
Centralized error handling for the publish pipeline and the API.

Request-level errors (NotFound, MissingAccounts, ...) abort a publish before
anything is dispatched. Platform-level errors (AdapterError,
ReconnectRequired) are raised inside adapters and converted to a per-platform
result by the orchestrator; they never abort sibling platforms.
"""

from enum import Enum
from typing import List, Optional


class ErrorCode(str, Enum):
    """Standardized error codes for debugging and frontend display."""
    # Generic
    TIMEOUT = "TIMEOUT"

    # Request
    UNAUTHORIZED = "UNAUTHORIZED"
    INVALID_REQUEST = "INVALID_REQUEST"
    NOT_FOUND = "NOT_FOUND"
    MISSING_ACCOUNTS = "MISSING_ACCOUNTS"
    PUBLISH_IN_PROGRESS = "PUBLISH_IN_PROGRESS"

    # Platform
    PLATFORM_ERROR = "PLATFORM_ERROR"
    RECONNECT_REQUIRED = "RECONNECT_REQUIRED"
    MEDIA_REQUIRED = "MEDIA_REQUIRED"
    MEDIA_DOWNLOAD_FAILED = "MEDIA_DOWNLOAD_FAILED"
    CONTAINER_FAILED = "CONTAINER_FAILED"
    CONTAINER_ERROR = "CONTAINER_ERROR"
    CONTAINER_EXPIRED = "CONTAINER_EXPIRED"
    UPLOAD_FAILED = "UPLOAD_FAILED"
    PUBLISH_FAILED = "PUBLISH_FAILED"
    PUBLISH_EXCEPTION = "PUBLISH_EXCEPTION"
    UNSUPPORTED = "UNSUPPORTED"

    # Infrastructure
    CLEANUP_FAILED = "CLEANUP_FAILED"
    NETWORK_ERROR = "NETWORK_ERROR"


class BroadcastError(Exception):
    """
    Base error for the publishing core.

    Attributes:
        code: Standardized error code
        message: Human-readable error message
        details: Optional additional context
        retryable: Whether this error can be retried
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: Optional[dict] = None,
        retryable: bool = False,
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        self.retryable = retryable
        super().__init__(f"[{code.value}] {message}")

    def to_dict(self) -> dict:
        """Convert to dictionary for logging/API response."""
        return {
            "error_code": self.code.value,
            "error_message": self.message,
            "details": self.details,
            "retryable": self.retryable,
        }


class InvalidRequest(BroadcastError):
    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(ErrorCode.INVALID_REQUEST, message, details=details)


class NotFound(BroadcastError):
    def __init__(self, message: str = "Post not found"):
        super().__init__(ErrorCode.NOT_FOUND, message)


class MissingAccounts(BroadcastError):
    """Requested platforms that the user has not connected."""

    def __init__(self, missing: List[str]):
        self.missing = list(missing)
        super().__init__(
            ErrorCode.MISSING_ACCOUNTS,
            f"Not connected to: {', '.join(self.missing)}",
            details={"missingPlatforms": self.missing},
        )


class PublishInProgress(BroadcastError):
    def __init__(self, post_id: str, status: Optional[str] = None):
        self.post_id = post_id
        super().__init__(
            ErrorCode.PUBLISH_IN_PROGRESS,
            f"Post {post_id} cannot be published from status '{status}'",
            details={"status": status},
        )


class AdapterError(BroadcastError):
    """A platform API rejected a request, or a platform precondition failed."""

    def __init__(
        self,
        platform: str,
        message: str,
        code: ErrorCode = ErrorCode.PLATFORM_ERROR,
        http_status: Optional[int] = None,
        retryable: bool = False,
    ):
        self.platform = platform
        self.http_status = http_status
        super().__init__(
            code,
            message,
            details={"platform": platform, "http_status": http_status},
            retryable=retryable,
        )


class ReconnectRequired(BroadcastError):
    """
    The stored refresh token is missing, expired or revoked.

    Kept apart from AdapterError because the remedy is re-authentication,
    not a retry.
    """

    def __init__(self, platform: str, message: Optional[str] = None):
        self.platform = platform
        super().__init__(
            ErrorCode.RECONNECT_REQUIRED,
            message or f"{platform} token expired. Please reconnect your {platform} account.",
            details={"platform": platform, "reconnect": True},
        )


# HTTP status code mapping
ERROR_HTTP_STATUS = {
    ErrorCode.TIMEOUT: 504,
    ErrorCode.UNAUTHORIZED: 401,
    ErrorCode.INVALID_REQUEST: 400,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.MISSING_ACCOUNTS: 400,
    ErrorCode.PUBLISH_IN_PROGRESS: 409,
    ErrorCode.RECONNECT_REQUIRED: 401,
    ErrorCode.PLATFORM_ERROR: 502,
    ErrorCode.NETWORK_ERROR: 502,
}


def get_http_status(code: ErrorCode) -> int:
    """Get HTTP status code for an error code."""
    return ERROR_HTTP_STATUS.get(code, 500)
