"""
Custom exception hierarchy for structured error handling.

WHY: Custom exceptions provide:
1. Consistent error handling across the API
2. HTTP status code mapping for FastAPI
3. Structured error responses with contextual data
4. No sensitive data leaks in error messages (OWASP A04)
5. A specific error kind for every rejected mutation, so callers can
   render an accurate message

IMPORTANT: NEVER use base Exception class. Always use custom exceptions.
"""

from typing import Any, Dict, Optional


class AppException(Exception):
    """
    Base exception class for all application exceptions.

    WHY: Centralizing exception handling in a base class ensures consistent
    error responses, HTTP status code mapping, and prevents sensitive data
    leaks in error messages.

    All custom exceptions should inherit from this class.
    """

    status_code: int = 500
    default_message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: Optional[str] = None,
        status_code: Optional[int] = None,
        **context: Any,
    ):
        """
        Initialize exception with message and context.

        WHY: Context parameters allow including debugging information
        (ticket_id, profile_id, etc.) without leaking sensitive data like
        tokens or signing secrets.

        Args:
            message: Human-readable error message
            status_code: HTTP status code (overrides class default)
            **context: Additional context for debugging (filtered in to_dict)
        """
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        self.context = context
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """
        Serialize exception to dictionary for JSON response.

        WHY: Structured error responses allow frontends to handle errors
        consistently and display appropriate messages to users.

        Returns:
            Dictionary with error details (sensitive fields filtered out)
        """
        # WHY: Filter out sensitive fields to prevent data leaks
        sensitive_fields = {"password", "token", "secret", "key", "api_key", "signature"}
        filtered_context = {
            k: v for k, v in self.context.items() if k.lower() not in sensitive_fields
        }

        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "status_code": self.status_code,
            "details": filtered_context if filtered_context else None,
        }


# ============================================================================
# Authentication & Authorization Exceptions (OWASP A07)
# ============================================================================


class AuthenticationError(AppException):
    """
    Raised when the current principal cannot be resolved.

    WHY: Missing or invalid bearer tokens and unknown or inactive profiles
    all mean "no principal"; the core never runs without one.

    HTTP Status: 401 Unauthorized
    """

    status_code = 401
    default_message = "Authentication failed"


class TokenExpiredError(AuthenticationError):
    """
    Raised when JWT token has expired.

    WHY: Specific exception for expired tokens allows frontends to trigger
    automatic token refresh without logging out the user.

    HTTP Status: 401 Unauthorized
    """

    default_message = "Token has expired"


class TokenInvalidError(AuthenticationError):
    """
    Raised when JWT token is malformed or has invalid signature.

    HTTP Status: 401 Unauthorized
    """

    default_message = "Token is invalid"


class AuthorizationError(AppException):
    """
    Raised when a principal's role does not allow a mutation.

    WHY: Writes are rejected explicitly so the caller knows why the change
    did not happen. Reads never raise this error; they filter silently
    instead, so error messages cannot reveal that a record exists.

    HTTP Status: 403 Forbidden
    """

    status_code = 403
    default_message = "You do not have permission to perform this action"


# ============================================================================
# Validation & Input Exceptions (OWASP A03: Injection Prevention)
# ============================================================================


class ValidationError(AppException):
    """
    Raised when input validation fails.

    WHY: Empty content, missing required fields and out-of-range values
    return 400 with the offending field so the user can correct it.

    HTTP Status: 400 Bad Request
    """

    status_code = 400
    default_message = "Validation failed"


# ============================================================================
# Resource Exceptions
# ============================================================================


class NotFoundError(AppException):
    """
    Raised when a referenced ticket, category or attachment doesn't exist.

    HTTP Status: 404 Not Found
    """

    status_code = 404
    default_message = "Resource not found"


class TicketNotFoundError(NotFoundError):
    """Raised when a ticket doesn't exist."""

    default_message = "Ticket not found"


class AttachmentNotFoundError(NotFoundError):
    """Raised when an attachment doesn't exist."""

    default_message = "Attachment not found"


class CategoryNotFoundError(NotFoundError):
    """Raised when a ticket category doesn't exist."""

    default_message = "Category not found"


# ============================================================================
# Ticket Lifecycle Exceptions
# ============================================================================


class InvalidTransitionError(AppException):
    """
    Raised when an illegal ticket status change is attempted.

    WHY: The ticket state machine only allows a fixed set of transitions
    (e.g. reopen only from closed). A rejected transition must not leave
    a history entry behind, so it is raised before anything is written.

    HTTP Status: 409 Conflict
    """

    status_code = 409
    default_message = "Invalid status transition"


class HistoryImmutableError(AppException):
    """
    Raised when attempting to update or delete a history entry.

    WHY: The ticket history is an append-only audit trail. Once written,
    an entry cannot be modified or deleted.

    HTTP Status: 403 Forbidden
    """

    status_code = 403
    default_message = "History entries cannot be modified or deleted"


# ============================================================================
# External Service Exceptions (OWASP A08: Software Integrity)
# ============================================================================


class ExternalServiceError(AppException):
    """
    Base exception for external service failures.

    WHY: External API failures should return 502 Bad Gateway, indicating
    the problem is with an upstream service, not our application.

    HTTP Status: 502 Bad Gateway
    """

    status_code = 502
    default_message = "External service error"


class StorageError(ExternalServiceError):
    """
    Raised when blob store operations (put, delete, sign) fail.

    WHY: Storage failures abort the attachment operation. An attachment
    record must never exist without its blob, so this error is always
    propagated to the caller.

    HTTP Status: 502 Bad Gateway
    """

    default_message = "File storage error"


class SignedUrlError(StorageError):
    """
    Raised when a signed blob URL is malformed, tampered with or expired.

    HTTP Status: 403 Forbidden
    """

    status_code = 403
    default_message = "Signed URL is invalid or has expired"


class DeliveryError(ExternalServiceError):
    """
    Raised when the notification channel cannot deliver a message.

    WHY: Delivery failures are captured at the dispatcher boundary and
    recorded in the dispatch result. They are never propagated to the
    caller of the mutation that triggered the notification.

    HTTP Status: 502 Bad Gateway
    """

    default_message = "Notification delivery failed"


# ============================================================================
# Database Exceptions
# ============================================================================


class DatabaseError(AppException):
    """
    Raised when database operations fail.

    WHY: Database errors should be caught at the service layer and converted
    to application exceptions with safe error messages (no SQL exposed).

    HTTP Status: 500 Internal Server Error
    """

    status_code = 500
    default_message = "Database error"
