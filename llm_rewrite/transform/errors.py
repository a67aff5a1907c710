"""Exceptions raised by the rewrite pipeline."""

from typing import Optional


class RewriteError(Exception):
    """Base exception for all llm-rewrite errors."""

    pass


class ConfigurationError(RewriteError):
    """Raised when a TransformConfig value is invalid."""

    def __init__(self, message: str, config_key: Optional[str] = None):
        super().__init__(message)
        self.config_key = config_key


class TransformError(RewriteError):
    """Raised when a document cannot be transformed."""

    def __init__(self, message: str, ordinal: Optional[int] = None):
        super().__init__(message)
        self.ordinal = ordinal


class SegmentTransformError(TransformError):
    """Raised when a segment keeps failing after all retries."""

    def __init__(
        self,
        message: str,
        ordinal: Optional[int] = None,
        attempts: int = 0,
        status_code: Optional[int] = None,
    ):
        super().__init__(message, ordinal=ordinal)
        self.attempts = attempts
        self.status_code = status_code


class OversizedPayloadError(TransformError):
    """Raised when a segment is still too large at the minimum chunk size."""

    def __init__(self, message: str, ordinal: Optional[int] = None, size: int = 0):
        super().__init__(message, ordinal=ordinal)
        self.size = size


class BackendConfigurationError(TransformError):
    """Raised when the selected backend cannot be used (missing key, unknown model)."""

    def __init__(self, message: str, backend: Optional[str] = None, ordinal: Optional[int] = None):
        super().__init__(message, ordinal=ordinal)
        self.backend = backend


class TransformCancelled(Exception):
    """Raised when a run is cancelled. Carries whatever text was already produced."""

    def __init__(self, reason: str = "Transformation cancelled by user.", partial_text: str = ""):
        super().__init__(reason)
        self.reason = reason
        self.partial_text = partial_text
