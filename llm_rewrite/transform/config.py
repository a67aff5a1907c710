"""Configuration for a transformation run."""

from dataclasses import dataclass, replace
import os
from typing import Optional

from .errors import ConfigurationError

# Roughly 2000 words per chunk
DEFAULT_CHUNK_SIZE = 8000
DEFAULT_MIN_CHUNK_SIZE = 500
DEFAULT_RETRY_BOUND = 2
DEFAULT_RETRY_DELAY_MS = 1000
DEFAULT_MODEL = "gpt-4o"
SEGMENT_SEPARATOR = "\n\n"


@dataclass(frozen=True)
class TransformConfig:
    """
    Everything one run needs to know, passed explicitly into the pipeline.

    Attributes:
        backend_selector: Opaque identifier of the rewrite provider/model.
        max_chunk_size: Largest segment, in characters, sent in one request.
        retry_bound: Retries after the first attempt for transient failures.
        retry_delay_ms: Fixed delay between attempts.
        min_chunk_size: Oversize re-splitting stops below this size. Defaults
            to DEFAULT_MIN_CHUNK_SIZE, capped at max_chunk_size.
        separator: Joins transformed segments in the reassembled output.
        strip_markdown: Remove markdown markers from partial and final text.
        request_timeout: Per-request timeout handed to the backend clients.
    """

    backend_selector: str = DEFAULT_MODEL
    max_chunk_size: int = DEFAULT_CHUNK_SIZE
    retry_bound: int = DEFAULT_RETRY_BOUND
    retry_delay_ms: int = DEFAULT_RETRY_DELAY_MS
    min_chunk_size: Optional[int] = None
    separator: str = SEGMENT_SEPARATOR
    strip_markdown: bool = True
    request_timeout: float = 60.0

    def __post_init__(self):
        if self.min_chunk_size is None:
            object.__setattr__(
                self, "min_chunk_size", max(1, min(DEFAULT_MIN_CHUNK_SIZE, self.max_chunk_size))
            )

    @property
    def retry_delay(self) -> float:
        """Retry delay in seconds."""
        return self.retry_delay_ms / 1000.0

    @property
    def max_attempts(self) -> int:
        return self.retry_bound + 1

    def validate(self) -> "TransformConfig":
        """Check value ranges, returning self so calls can be chained."""
        if not self.backend_selector or not self.backend_selector.strip():
            raise ConfigurationError("A backend selector is required", "backend_selector")
        if self.max_chunk_size <= 0:
            raise ConfigurationError(
                f"max_chunk_size must be positive, got {self.max_chunk_size}", "max_chunk_size"
            )
        if self.min_chunk_size <= 0:
            raise ConfigurationError(
                f"min_chunk_size must be positive, got {self.min_chunk_size}", "min_chunk_size"
            )
        if self.min_chunk_size > self.max_chunk_size:
            raise ConfigurationError(
                "min_chunk_size cannot exceed max_chunk_size", "min_chunk_size"
            )
        if self.retry_bound < 0:
            raise ConfigurationError(
                f"retry_bound cannot be negative, got {self.retry_bound}", "retry_bound"
            )
        if self.retry_delay_ms < 0:
            raise ConfigurationError(
                f"retry_delay_ms cannot be negative, got {self.retry_delay_ms}", "retry_delay_ms"
            )
        if self.request_timeout <= 0:
            raise ConfigurationError("request_timeout must be positive", "request_timeout")
        return self

    def with_overrides(self, **overrides) -> "TransformConfig":
        """Return a copy with every non-None override applied."""
        changes = {key: value for key, value in overrides.items() if value is not None}
        if "max_chunk_size" in changes and "min_chunk_size" not in changes:
            # Re-derive the floor from the new chunk size
            changes["min_chunk_size"] = None
        return replace(self, **changes)

    @classmethod
    def from_env(cls, environ: Optional[dict] = None) -> "TransformConfig":
        """Build a config from LLM_REWRITE_* environment variables."""
        env = os.environ if environ is None else environ
        return cls(
            backend_selector=env.get("LLM_REWRITE_MODEL", DEFAULT_MODEL),
            max_chunk_size=_int_from_env(env, "LLM_REWRITE_CHUNK_SIZE", DEFAULT_CHUNK_SIZE),
            retry_bound=_int_from_env(env, "LLM_REWRITE_MAX_RETRIES", DEFAULT_RETRY_BOUND),
            retry_delay_ms=_int_from_env(env, "LLM_REWRITE_RETRY_DELAY_MS", DEFAULT_RETRY_DELAY_MS),
        )


def _int_from_env(env, key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{key} must be an integer, got {raw!r}", key)
