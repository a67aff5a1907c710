"""Chunked document transformation through AI rewrite backends."""

from .backends import (
    BackendOutcome,
    ClaudeBackend,
    DeepSeekBackend,
    HttpRewriteBackend,
    MockBackend,
    OpenAIBackend,
    OutcomeStatus,
    PerplexityBackend,
    RewriteBackend,
    TransformRequest,
    create_backend,
)
from .cancellation import CancellationToken
from .config import TransformConfig
from .errors import (
    BackendConfigurationError,
    ConfigurationError,
    OversizedPayloadError,
    RewriteError,
    SegmentTransformError,
    TransformCancelled,
    TransformError,
)
from .formatting import build_instructions, strip_markdown
from .invoker import TransformInvoker, TransformResult
from .pipeline import RunState, RunStatus, TextTransformer, TransformOutcome, transform_text
from .splitter import Segment, join_segments, split_into_segments

__all__ = [
    "BackendOutcome",
    "ClaudeBackend",
    "DeepSeekBackend",
    "HttpRewriteBackend",
    "MockBackend",
    "OpenAIBackend",
    "OutcomeStatus",
    "PerplexityBackend",
    "RewriteBackend",
    "TransformRequest",
    "create_backend",
    "CancellationToken",
    "TransformConfig",
    "BackendConfigurationError",
    "ConfigurationError",
    "OversizedPayloadError",
    "RewriteError",
    "SegmentTransformError",
    "TransformCancelled",
    "TransformError",
    "build_instructions",
    "strip_markdown",
    "TransformInvoker",
    "TransformResult",
    "RunState",
    "RunStatus",
    "TextTransformer",
    "TransformOutcome",
    "transform_text",
    "Segment",
    "join_segments",
    "split_into_segments",
]
