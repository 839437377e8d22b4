"""
Skyrapport Exceptions and Error Utilities

File Purpose: Centralized exception taxonomy for the sync & analytics engine
Primary Classes/Functions: SkyrapportError, AuthenticationError, APIError, TransportError,
    ItemLevelError, SyncCancelledError, DeadlineExceededError, StoreError, handle_error
Inputs and Outputs (I/O): Accepts exceptions and console; prints user-friendly messages
"""

from typing import Any, Optional

from rich.console import Console


class SkyrapportError(Exception):
    """Base exception for all Skyrapport-specific errors."""

    def __init__(
        self,
        message: str,
        details: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        self.message = message
        self.details = details
        self.original_error = original_error
        super().__init__(message)


class APIError(SkyrapportError):
    """Raised when a remote API call returns a non-2xx response."""

    def __init__(
        self,
        message: str,
        status_code: int = 0,
        error_code: Optional[str] = None,
        details: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(message, details=details, original_error=original_error)
        self.status_code = status_code
        self.error_code = error_code

    def __str__(self) -> str:
        if self.status_code:
            return f"{self.message} (HTTP {self.status_code})"
        return self.message


class AuthenticationError(APIError):
    """Raised when credentials are missing or rejected (HTTP 401).

    Terminal for the current sync run; never retried.
    """

    def __init__(
        self,
        message: str = "Authentication required",
        details: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(
            message,
            status_code=401,
            error_code="AuthRequired",
            details=details,
            original_error=original_error,
        )


class TransportError(APIError):
    """Raised on network-level failures (DNS, connection reset, timeout, bad JSON)."""

    def __init__(
        self,
        message: str,
        details: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(
            message, status_code=0, details=details, original_error=original_error
        )


class ItemLevelError(SkyrapportError):
    """Failure of one sub-resource inside a fan-out batch.

    Collected into the batch result list; never escapes a stage.
    """

    def __init__(self, item: Any, original_error: Exception):
        super().__init__(
            f"Item {item!r} failed: {original_error}",
            original_error=original_error,
        )
        self.item = item


class SyncCancelledError(SkyrapportError):
    """Raised at a suspension point when the caller cancelled the run."""


class DeadlineExceededError(SkyrapportError):
    """Raised at a suspension point when the caller's deadline has passed."""


class StoreError(SkyrapportError):
    """Raised when the local store cannot complete an operation."""


class ValidationError(SkyrapportError):
    """Raised when configuration or input validation fails."""


def handle_error(
    console: Console,
    error: Exception,
    operation: str,
    show_details: bool = False,
    reraise: bool = False,
) -> None:
    """
    Standardized error rendering for command-line entry points.

    Args:
        console: Rich console for output
        error: The exception that occurred
        operation: Description of the operation that failed
        show_details: Whether to show detailed error information
        reraise: Whether to re-raise the exception after handling
    """
    if isinstance(error, SkyrapportError):
        console.print(f"[red]{operation} failed: {error}[/]")
        if show_details and error.details:
            console.print(f"[dim]   Details: {error.details}[/]")
        if show_details and error.original_error:
            console.print(f"[dim]   Original error: {error.original_error}[/]")
    else:
        console.print(f"[red]{operation} failed: {str(error)}[/]")
        if show_details:
            console.print(f"[dim]   Error type: {type(error).__name__}[/]")

    if reraise:
        raise error
