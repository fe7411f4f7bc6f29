"""
Centralized error handling for the email automation engine and its API.
Domain exceptions plus a reusable mapper so routes stay thin and new error types are easy to add.
"""
from __future__ import annotations

from fastapi import HTTPException

# ---------------------------------------------------------------------------
# Domain exceptions
# ---------------------------------------------------------------------------


class EmailAutomationError(Exception):
    """Base class for engine errors."""


class AutomationValidationError(EmailAutomationError):
    """Rule or template payload rejected at write time (bad trigger, unknown condition, missing template)."""


class NotFoundError(EmailAutomationError):
    """Automation or template does not exist."""


class RunInProgressError(EmailAutomationError):
    """Another automation run is still open (single-flight guard)."""


class UserDirectoryError(EmailAutomationError):
    """User store (auth provider) unreachable or returned an error. Aborts the whole run."""


class MailSendError(EmailAutomationError):
    """Mail provider rejected or failed one message. Recorded per recipient, never aborts a run."""


# ---------------------------------------------------------------------------
# Constants: status codes and user-facing messages
# ---------------------------------------------------------------------------

STATUS_BAD_REQUEST = 400
STATUS_UNAUTHORIZED = 401
STATUS_NOT_FOUND = 404
STATUS_CONFLICT = 409
STATUS_SERVICE_UNAVAILABLE = 503  # user store or mail provider down
STATUS_INTERNAL_ERROR = 500

MSG_UNAUTHORIZED = "Unauthorized"
MSG_INTERNAL_ERROR = "Internal error"
MSG_RUN_IN_PROGRESS = "Another automation run is in progress"


# ---------------------------------------------------------------------------
# Error rules: (exception type, status_code, detail or None to use str(exc))
# Add new rules here instead of scattering checks in routes. First match wins.
# ---------------------------------------------------------------------------

DOMAIN_ERROR_RULES: list[tuple[type[Exception], int, str | None]] = [
    (AutomationValidationError, STATUS_BAD_REQUEST, None),
    (NotFoundError, STATUS_NOT_FOUND, None),
    (RunInProgressError, STATUS_CONFLICT, MSG_RUN_IN_PROGRESS),
    (UserDirectoryError, STATUS_SERVICE_UNAVAILABLE, None),
    (MailSendError, STATUS_SERVICE_UNAVAILABLE, None),
]


def domain_error_to_http(exc: Exception) -> HTTPException:
    """
    Map an exception from a service call into an HTTPException.
    Uses DOMAIN_ERROR_RULES for known error types; otherwise returns 500 with the exception message.
    """
    for exc_type, status_code, detail in DOMAIN_ERROR_RULES:
        if isinstance(exc, exc_type):
            return HTTPException(status_code=status_code, detail=detail or str(exc))
    return HTTPException(status_code=STATUS_INTERNAL_ERROR, detail=str(exc))
