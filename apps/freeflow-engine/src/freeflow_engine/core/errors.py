"""Error taxonomy for the job engine."""

from typing import Optional


class FreeflowError(Exception):
    """Base class for engine errors."""


class ValidationError(FreeflowError):
    """A required or invalid field blocked request construction."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class UploadError(FreeflowError):
    """A reference file could not be uploaded."""


class ProviderError(FreeflowError):
    """Remote execution failed or returned no extractable result."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class PersistenceError(FreeflowError):
    """Best-effort durable write of a result failed."""


class RehydrationParseError(FreeflowError):
    """A persisted history record could not be parsed."""


class InvalidTransition(FreeflowError):
    """A job status change that the lifecycle does not allow."""
