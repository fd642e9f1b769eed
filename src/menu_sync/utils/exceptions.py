"""
Custom exceptions for Menu Sync.

Defines the error taxonomy used across the catalog sync engine, the
credential vault and the webhook guard.
"""

from typing import Optional, Dict, Any


class MenuSyncError(Exception):
    """Base exception for all Menu Sync errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        """
        Initialize exception with message and optional details.

        Args:
            message: Error message
            details: Additional error details
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(MenuSyncError):
    """Raised when configuration is invalid or missing (token, owner id, catalog)."""
    pass


class DecryptionError(MenuSyncError):
    """Raised when a stored credential cannot be decoded or authenticated."""

    def __init__(self, message: str, reason: str = "unknown"):
        """
        Initialize decryption error.

        Args:
            message: Error message
            reason: Machine-readable failure reason (too_short, iv_length, ...)
        """
        super().__init__(message, {"reason": reason})
        self.reason = reason


class ExternalApiError(MenuSyncError):
    """Raised when the remote commerce platform rejects a call."""

    def __init__(self, message: str, status_code: Optional[int] = None,
                 response_data: Optional[Dict[str, Any]] = None,
                 endpoint: Optional[str] = None):
        """
        Initialize external API error.

        Args:
            message: Error message, the platform's own message when available
            status_code: HTTP status code
            response_data: Raw platform error payload
            endpoint: API endpoint that failed
        """
        details = {}
        if status_code:
            details["status_code"] = status_code
        if endpoint:
            details["endpoint"] = endpoint
        if response_data:
            details["response_data"] = response_data

        super().__init__(message, details)
        self.status_code = status_code
        self.response_data = response_data
        self.endpoint = endpoint


class ExternalNotFoundError(ExternalApiError):
    """Raised when the remote platform has no record for the requested id."""
    pass


class SignatureError(MenuSyncError):
    """Raised when an inbound webhook fails authentication.

    The reason is for internal logs only and must never reach the response.
    """

    def __init__(self, message: str, reason: str = "mismatch"):
        super().__init__(message, {"reason": reason})
        self.reason = reason


class ValidationError(MenuSyncError):
    """Raised when data validation fails."""

    def __init__(self, message: str, field: Optional[str] = None,
                 value: Optional[Any] = None, expected_type: Optional[str] = None):
        """
        Initialize validation error.

        Args:
            message: Error message
            field: Field name that failed validation
            value: Invalid value
            expected_type: Expected data type
        """
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)
        if expected_type:
            details["expected_type"] = expected_type

        super().__init__(message, details)
        self.field = field
        self.value = value
        self.expected_type = expected_type


class NotFoundError(MenuSyncError):
    """Raised when a tenant, product or category does not exist locally."""

    def __init__(self, message: str, resource: Optional[str] = None,
                 identifier: Optional[Any] = None):
        details = {}
        if resource:
            details["resource"] = resource
        if identifier is not None:
            details["identifier"] = str(identifier)

        super().__init__(message, details)
        self.resource = resource
        self.identifier = identifier


class DatabaseError(MenuSyncError):
    """Raised when database operations fail."""

    def __init__(self, message: str, operation: Optional[str] = None,
                 table: Optional[str] = None):
        """
        Initialize database error.

        Args:
            message: Error message
            operation: Database operation that failed
            table: Table involved in operation
        """
        details = {}
        if operation:
            details["operation"] = operation
        if table:
            details["table"] = table

        super().__init__(message, details=details)
        self.operation = operation
        self.table = table


def handle_api_error(response, endpoint: Optional[str] = None) -> None:
    """
    Handle a failed HTTP response from the Graph API and raise ExternalApiError.

    The platform returns ``{"error": {"message": ..., "code": ...}}``; its
    message is preserved as the exception message.

    Args:
        response: HTTP response object
        endpoint: API endpoint that was called

    Raises:
        ExternalNotFoundError: for a 404
        ExternalApiError: for any other status
    """
    status_code = getattr(response, "status_code", None)

    try:
        response_data = response.json()
    except ValueError:
        response_data = None

    platform_message = None
    if isinstance(response_data, dict):
        error = response_data.get("error")
        if isinstance(error, dict):
            platform_message = error.get("message")

    if not platform_message:
        if status_code and status_code >= 500:
            platform_message = f"Server error: {status_code}"
        else:
            platform_message = f"API request failed: {status_code}"

    error_class = ExternalNotFoundError if status_code == 404 else ExternalApiError
    raise error_class(
        platform_message,
        status_code=status_code,
        response_data=response_data,
        endpoint=endpoint,
    )
