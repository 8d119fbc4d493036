"""
Error handling utilities and the billing error taxonomy.

Provides consistent error handling across the application:
- Sanitizes error messages to prevent information leakage
- Logs detailed error information for debugging
- Defines the exceptions raised by subscription reconciliation
"""

from __future__ import annotations

import logging
from flask import current_app, has_app_context

logger = logging.getLogger(__name__)

# User-friendly generic error messages
GENERIC_MESSAGES = {
    "database": "We're experiencing technical difficulties. Please try again.",
    "validation": "The information provided is invalid. Please check and try again.",
    "permission": "You don't have permission to perform this action.",
    "not_found": "The requested item was not found.",
    "payment": "We couldn't process your payment request. Please try again.",
    "network": "Network error occurred. Please check your connection and try again.",
}


# ============================================================================
# Billing / reconciliation errors
# ============================================================================

class BillingError(Exception):
    """Base class for subscription reconciliation failures."""


class TransientStoreError(BillingError):
    """
    A read or write against the record store failed.

    Safe to retry: every reconciliation operation is idempotent.
    """


class ConflictError(BillingError):
    """
    insert-if-absent found an existing idempotency key.

    Used internally as the signal to switch to update-in-place. Never
    surfaced to callers as a failure.
    """

    def __init__(self, key: str):
        super().__init__(f"Record already exists for key {key}")
        self.key = key


class InvalidEventError(BillingError):
    """A payment event is missing the fields needed to correlate it."""


class SignatureError(BillingError):
    """Webhook payload failed signature verification."""


# ============================================================================
# Logging helpers
# ============================================================================

def _logger():
    return current_app.logger if has_app_context() else logger


def sanitize_error(
    error: Exception,
    error_type: str = "database",
    log_prefix: str = ""
) -> str:
    """
    Sanitize error message for user display and log full details.

    Security: Prevents exposing internal error messages, stack traces, or
    database schema information to end users. Full details are logged for debugging.

    Args:
        error: The exception that occurred
        error_type: Type of error (database, validation, permission, not_found, payment, network)
        log_prefix: Optional prefix for log message context

    Returns:
        User-friendly error message
    """
    error_message = str(error)
    log_message = f"{log_prefix}: {error_message}" if log_prefix else error_message

    if error_type in ["validation", "not_found"]:
        # Expected errors (user mistakes)
        _logger().info(f"Expected error - {log_message}")
    else:
        _logger().error(f"Unexpected error - {log_message}", exc_info=True)

    return GENERIC_MESSAGES.get(error_type, GENERIC_MESSAGES["database"])


def _with_context(message: str, context: dict) -> str:
    if context:
        context_str = ", ".join(f"{k}={v}" for k, v in context.items())
        message = f"{message} | Context: {context_str}"
    return message


def log_warning(message: str, **context) -> None:
    """
    Log a warning with optional context.

    Examples:
        >>> log_warning("Dropped payment event", event_id="evt_123")
    """
    _logger().warning(_with_context(message, context))


def log_info(message: str, **context) -> None:
    """
    Log an info message with optional context.

    Examples:
        >>> log_info("Subscription inserted", session_id="cs_123")
    """
    _logger().info(_with_context(message, context))
