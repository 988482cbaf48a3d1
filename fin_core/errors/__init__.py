# =============================================================================
# fin_core/errors/__init__.py
# Centralized Error Handling for the finance data layer
# =============================================================================

from .exceptions import (
    DataLayerError,
    APIError,
    OfflineUnavailableError,
    OfflineUpdateError,
    SyncError,
    ConfigurationError,
    is_network_error,
    NETWORK_ERROR,
    UNKNOWN_ERROR,
)

from .handlers import (
    handle_error,
    notify_callbacks,
    safe_execute,
    ErrorContext,
    error_boundary,
)

__all__ = [
    # Exceptions
    "DataLayerError",
    "APIError",
    "OfflineUnavailableError",
    "OfflineUpdateError",
    "SyncError",
    "ConfigurationError",
    "is_network_error",
    "NETWORK_ERROR",
    "UNKNOWN_ERROR",
    # Handlers
    "handle_error",
    "notify_callbacks",
    "safe_execute",
    "ErrorContext",
    "error_boundary",
]
