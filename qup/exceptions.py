"""
Defines custom exceptions for the application to allow for more specific error handling.
"""


class QupError(Exception):
    """Base exception for all application-specific errors."""


class ConfigurationError(QupError):
    """Raised for issues related to configuration loading or validation."""


class SessionValidationError(QupError):
    """Raised when a session is started without a product, directory or valid URL."""


class SessionBusyError(QupError):
    """
    Raised when a download or install is requested while a copy is already running.
    """


class ManifestError(QupError):
    """Raised when the instructions file is incomplete, unreadable or unusable."""


class TransferError(QupError):
    """Raised when a network transfer fails."""


class OperationCancelledError(QupError):
    """Raised inside a background task once its cancellation token is set."""


class LaunchError(QupError):
    """Raised when the installed program cannot be started."""
