from __future__ import annotations
from typing import Optional


class AuditError(Exception):
    """Base class for failures raised by the audit core."""


class QuotaExceeded(AuditError):
    """Provider rejected the call for rate-limit / quota reasons (retryable)."""


class ProviderError(AuditError):
    """Any other upstream failure. Never retried by the gateway."""

    def __init__(self, message: str, offset: Optional[int] = None, size: int = 0):
        super().__init__(message)
        self.offset = offset
        self.size = size


class SchemaParseError(AuditError):
    """A provider response (or one item of it) did not match the output schema."""

    def __init__(self, message: str, image_index: Optional[int] = None):
        super().__init__(message)
        self.image_index = image_index


class BatchExhausted(AuditError):
    """A logical batch used up all of its attempts on quota errors."""

    def __init__(self, offset: int, size: int, attempts: int, last_error: Optional[BaseException] = None):
        super().__init__(
            f"batch at offset {offset} (size {size}) failed after {attempts} attempts: {last_error}"
        )
        self.offset = offset
        self.size = size
        self.attempts = attempts
        self.last_error = last_error


class RunCancelled(AuditError):
    """The caller signalled cancellation before the run completed."""


class NoImagesProcessed(AuditError):
    """Not a single image of the case produced an analysis."""
