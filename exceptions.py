"""
Unified exception hierarchy for the POS ledger project.

This module defines the exception hierarchy with LedgerAppError as the
base exception, so views, the CLI and the form controller can handle
errors consistently regardless of which layer raised them.
"""

from typing import Dict, Optional


class LedgerAppError(Exception):
    """
    Base exception class for all ledger errors.

    Attributes:
        message: Human-readable error message
        details: Optional dictionary with additional error context
        original_error: Optional original exception that caused this error
    """

    def __init__(
        self,
        message: str,
        details: Optional[dict] = None,
        original_error: Optional[Exception] = None
    ) -> None:
        """
        Initialize LedgerAppError.

        Args:
            message: Human-readable error message
            details: Optional dictionary with additional error context
            original_error: Optional original exception that caused this error
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.original_error = original_error

    def __str__(self) -> str:
        """Return string representation of the error."""
        msg = self.message
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            msg = f"{msg} ({detail_str})"
        return msg


class ConfigError(LedgerAppError):
    """Raised when configuration loading or validation fails."""
    pass


class FormValidationError(LedgerAppError):
    """
    Raised when client-side form validation fails.

    Carries one message per failing field. These errors are shown next to
    the fields and never escalate to a toast notification.
    """

    def __init__(
        self,
        field_errors: Dict[str, str],
        message: str = "Form validation failed"
    ) -> None:
        super().__init__(message, details={"fields": ", ".join(sorted(field_errors))})
        self.field_errors = dict(field_errors)


class ApiError(LedgerAppError):
    """
    Raised when a REST call fails (network error or non-2xx response).

    Attributes:
        status_code: HTTP status code, or None for transport failures
        server_message: Message extracted from the response body, if any
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        server_message: Optional[str] = None,
        details: Optional[dict] = None,
        original_error: Optional[Exception] = None
    ) -> None:
        super().__init__(message, details=details, original_error=original_error)
        self.status_code = status_code
        self.server_message = server_message


class SessionError(ApiError):
    """Raised when a required session value (token or tenant) is missing."""
    pass


class FilterError(LedgerAppError):
    """Raised when filter input is invalid (e.g. start date after end date)."""
    pass


class AggregationError(LedgerAppError):
    """Raised when an aggregation scope or period is invalid."""
    pass


class ReportError(LedgerAppError):
    """Raised when report generation fails."""
    pass


class ViewError(LedgerAppError):
    """Raised when a view operation is used out of order."""
    pass
