# =============================================================================
# fin_core/errors/exceptions.py
# Exception Hierarchy for the finance data layer
# =============================================================================

from datetime import datetime, timezone
from typing import Optional, Dict, Any


# Error codes
NETWORK_ERROR = "NETWORK_ERROR"
UNKNOWN_ERROR = "UNKNOWN_ERROR"
OFFLINE_UNAVAILABLE = "OFFLINE_UNAVAILABLE"
OFFLINE_UPDATE = "OFFLINE_UPDATE"
SYNC_ERROR = "SYNC_ERROR"
CONFIG_ERROR = "CONFIG_ERROR"


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class DataLayerError(Exception):
    """
    Base exception for all data layer errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g., "NETWORK_ERROR", "HTTP_404")
        details: Additional context as a dictionary
        retryable: Whether repeating the operation may succeed
        timestamp: ISO-8601 time the error was raised
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or UNKNOWN_ERROR
        self.details = details or {}
        self.retryable = retryable
        self.timestamp = _utc_now()

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization"""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp,
            "retryable": self.retryable,
        }


# =============================================================================
# TRANSPORT EXCEPTIONS
# =============================================================================

class APIError(DataLayerError):
    """
    Normalized HTTP failure.

    5xx and network-level failures are retryable, 4xx are not.
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
        retryable: bool = False,
    ):
        details = dict(details or {})
        if status_code is not None:
            details.setdefault("status_code", status_code)

        super().__init__(
            message=message,
            code=code,
            details=details,
            retryable=retryable,
        )
        self.status_code = status_code

    @property
    def is_network_error(self) -> bool:
        """True when no HTTP response was received."""
        return self.code == NETWORK_ERROR

    @classmethod
    def network(cls, message: str, **details) -> "APIError":
        return cls(message, code=NETWORK_ERROR, details=details, retryable=True)

    @classmethod
    def from_status(cls, status_code: int, message: str, **details) -> "APIError":
        return cls(
            message,
            code=f"HTTP_{status_code}",
            status_code=status_code,
            details=details,
            retryable=status_code >= 500,
        )


def is_network_error(error: BaseException) -> bool:
    """Check whether an exception is a network-class failure."""
    return isinstance(error, APIError) and error.is_network_error


# =============================================================================
# OFFLINE EXCEPTIONS
# =============================================================================

class OfflineUnavailableError(DataLayerError):
    """Raised when a read cannot be served from cache or local storage."""

    def __init__(
        self,
        message: str = "Resource not available offline",
        resource: Optional[str] = None,
        resource_id: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if resource:
            details["resource"] = resource
        if resource_id:
            details["id"] = resource_id

        super().__init__(
            message=message,
            code=OFFLINE_UNAVAILABLE,
            details=details,
            **kwargs,
        )


class OfflineUpdateError(DataLayerError):
    """Raised when an offline update has no cached record to patch."""

    def __init__(
        self,
        message: str = "Resource not found in cache for offline update",
        resource: Optional[str] = None,
        resource_id: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if resource:
            details["resource"] = resource
        if resource_id:
            details["id"] = resource_id

        super().__init__(
            message=message,
            code=OFFLINE_UPDATE,
            details=details,
            **kwargs,
        )


# =============================================================================
# SYNC EXCEPTIONS
# =============================================================================

class SyncError(DataLayerError):
    """Raised when queue replay is refused or an operation runs out of retries"""

    def __init__(
        self,
        message: str,
        operation_id: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if operation_id:
            details["operation_id"] = operation_id

        super().__init__(
            message=message,
            code=SYNC_ERROR,
            details=details,
            **kwargs,
        )


# =============================================================================
# CONFIGURATION EXCEPTIONS
# =============================================================================

class ConfigurationError(DataLayerError):
    """Raised when configuration is invalid or missing"""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        expected_type: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if config_key:
            details["config_key"] = config_key
        if expected_type:
            details["expected_type"] = expected_type

        super().__init__(
            message=message,
            code=CONFIG_ERROR,
            details=details,
            retryable=False,
            **kwargs,
        )
