"""
Compression error taxonomy
Every native-layer failure is mapped onto one of these before it leaves the pipeline
"""

from enum import Enum
from typing import Optional


class ErrorCategory(Enum):
    """Categories of compression failures for handling and reporting"""
    UNSUPPORTED_ENVIRONMENT = "unsupported_environment"
    INITIALIZATION = "initialization"
    ENCODER = "encoder"
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"
    INPUT = "input"
    GENERAL = "general"


class CompressionError(Exception):
    """Base class for all errors surfaced by the compressor"""
    category = ErrorCategory.GENERAL
    # Nothing in this package retries; the flag tells callers whether a retry could help
    retryable = False


class UnsupportedEnvironment(CompressionError):
    """No usable FFmpeg toolchain on this host"""
    category = ErrorCategory.UNSUPPORTED_ENVIRONMENT


class InitializationFailure(CompressionError):
    """The engine failed to load; the next call starts a fresh load"""
    category = ErrorCategory.INITIALIZATION


class EncodeFailure(CompressionError):
    """FFmpeg ran and failed"""
    category = ErrorCategory.ENCODER

    def __init__(self, message: str, diagnostic: Optional[str] = None, returncode: Optional[int] = None):
        super().__init__(message)
        self.diagnostic = diagnostic or ''
        self.returncode = returncode

    def __str__(self):
        base = super().__str__()
        if self.diagnostic:
            return f"{base}: {self.diagnostic}"
        return base


class InvalidInput(CompressionError):
    """The input could not be probed as a video"""
    category = ErrorCategory.INPUT


class Cancelled(CompressionError):
    """Cancellation requested by the caller was honored"""
    category = ErrorCategory.CANCELLED

    def __init__(self, message: str = "Compression was cancelled"):
        super().__init__(message)


class TimedOut(CompressionError):
    """The wall-clock budget for the encode ran out"""
    category = ErrorCategory.TIMEOUT

    def __init__(self, budget_seconds: float):
        super().__init__(f"Compression timed out after {budget_seconds:.0f} seconds")
        self.budget_seconds = budget_seconds
