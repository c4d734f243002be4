"""
Core Exceptions
================

Custom exceptions for the application framework.

Two kinds of failure are fatal to a request: a capability that cannot be
loaded, and a database or template operation that rejects its input. Both
are reported through Application.report_fatal_error(), which always ends
the request by raising RequestTerminated.
"""

from typing import Optional


class ApplicationException(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ConfigurationException(ApplicationException):
    """Exception for configuration errors."""


class ExternalServiceException(ApplicationException):
    """Base exception for external service failures."""

    def __init__(
        self,
        service_name: str,
        message: str,
        details: Optional[dict] = None
    ):
        self.service_name = service_name
        super().__init__(f"{service_name}: {message}", details)


class DependencyLoadException(ApplicationException):
    """Exception when an optional capability cannot be loaded."""

    def __init__(self, identifier: str, reason: str = "", details: Optional[dict] = None):
        self.identifier = identifier
        self.reason = reason
        message = f"Failed to load the {identifier} capability"
        if reason:
            message += f" ({reason})"
        super().__init__(message, details)


class DatabaseConnectionException(ExternalServiceException):
    """Exception when the database driver rejects a connection."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("Database", message, details)


class TemplateException(ApplicationException):
    """Exception when a template cannot be located or filled."""


class RequestTerminated(ApplicationException):
    """
    Raised after a fatal error has been reported to the client.

    The response header and body have already been written through the
    request adapter; `body` holds what was written so a web framework can
    turn it into a response. The original failure, if any, is chained as
    `__cause__`.
    """

    status_code = 500

    def __init__(
        self,
        message: str,
        body: str = "",
        kind: str = "fatal",
        details: Optional[dict] = None
    ):
        self.body = body
        self.kind = kind
        super().__init__(message, details)


class FatalErrorLoop(SystemExit):
    """
    Raised when the fatal-error reporter is entered while already reporting.

    This is a programming error, not a user-facing condition, so it aborts
    the process instead of producing another response.
    """

    EXIT_CODE = 70

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.EXIT_CODE)

    def __str__(self) -> str:
        return self.message
