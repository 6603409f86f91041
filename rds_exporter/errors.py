"""Exception hierarchy for the collection pipeline."""
from typing import Optional


class ExporterError(Exception):
    """Base class for all exporter errors."""


class ValidationError(ExporterError):
    """A call was made with invalid arguments. Never retried."""


class CallTimeoutError(ExporterError, TimeoutError):
    """A remote call exceeded its deadline. Never retried."""


class ServiceError(ExporterError):
    """A remote service returned a failure. Retried per policy."""


class RetryExhaustedError(ExporterError):
    """The retry policy's attempt budget was consumed."""

    def __init__(self, message: str, attempts: int, last_error: Optional[BaseException] = None):
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


class DirectoryError(ExporterError):
    """Instance listing failed; the whole poll cycle is aborted."""


class RegistrationConflictError(ExporterError):
    """A series name reappeared with an incompatible label set."""
