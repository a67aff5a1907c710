"""
Document transformation orchestration.

Drives the invoker over every segment of a document, one at a time and in
order, publishing progress with the partially reassembled text after each
segment so callers can show output as it arrives.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence
import logging
import time

from .backends import RewriteBackend, create_backend
from .cancellation import CancellationToken
from .config import TransformConfig
from .errors import TransformCancelled, TransformError
from .formatting import strip_markdown
from .invoker import TransformInvoker
from .splitter import Segment, split_into_segments

logger = logging.getLogger(__name__)

# on_progress(current_index, total_segments, partial_text)
ProgressCallback = Callable[[int, int, str], None]


class RunStatus(str, Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class RunState:
    """Mutable state of one run. Never shared between runs."""
    segments: List[Segment]
    completed_results: Dict[int, str] = field(default_factory=dict)
    current_ordinal: int = 0
    cancelled: bool = False

    @property
    def total(self) -> int:
        return len(self.segments)

    def joined(self, separator: str) -> str:
        """Completed results in ordinal order, whatever order they finished in."""
        return separator.join(
            self.completed_results[ordinal] for ordinal in sorted(self.completed_results)
        )


@dataclass
class TransformOutcome:
    """Final report of a run."""
    status: RunStatus
    text: str
    segments_total: int
    segments_completed: int
    error: Optional[TransformError] = None
    cancel_reason: Optional[str] = None
    processing_time: float = 0.0

    @property
    def completed(self) -> bool:
        return self.status == RunStatus.COMPLETED

    @property
    def cancelled(self) -> bool:
        return self.status == RunStatus.CANCELLED

    @property
    def failed(self) -> bool:
        return self.status == RunStatus.FAILED

    @property
    def progress_percent(self) -> int:
        if not self.segments_total:
            return 100
        return round(self.segments_completed / self.segments_total * 100)


class TextTransformer:
    """
    Transforms documents of any size through a size-limited rewrite backend.

    Segments are processed strictly sequentially. Each call is told which part
    of the document it holds, so the backend can keep the style consistent,
    and rate-limited providers never see more than one request per run.
    """

    def __init__(self, backend: RewriteBackend, config: Optional[TransformConfig] = None):
        """
        Initialize the transformer.

        Args:
            backend: Backend that rewrites individual segments
            config: Run configuration. Defaults to TransformConfig().
        """
        self.config = (config or TransformConfig()).validate()
        self.backend = backend
        self.invoker = TransformInvoker(backend, self.config)
        self._active_token: Optional[CancellationToken] = None

    @property
    def is_running(self) -> bool:
        return self._active_token is not None

    def split(self, text: str) -> List[Segment]:
        """Split a document using the configured chunk size."""
        return split_into_segments(text, self.config.max_chunk_size)

    def render(self, state: RunState) -> str:
        """Reassemble text for display. Used for partial and final output alike."""
        joined = state.joined(self.config.separator)
        if self.config.strip_markdown:
            return strip_markdown(joined)
        return joined

    def cancel(self, reason: str = "Transformation cancelled by user.") -> bool:
        """Cancel the active run, if any. Returns True if a run was cancelled."""
        if self._active_token is None:
            return False
        self._active_token.cancel(reason)
        return True

    def _activate(self, token: CancellationToken) -> None:
        # Two runs must never write to the same output sink
        if self._active_token is not None and self._active_token is not token:
            logger.info("Cancelling previous run before starting a new one")
            self._active_token.cancel("Superseded by a new transformation.")
        self._active_token = token

    async def transform(
        self,
        text: str,
        instructions: str,
        on_progress: Optional[ProgressCallback] = None,
        cancellation: Optional[CancellationToken] = None,
        auxiliary_context: Optional[Dict[str, Any]] = None,
    ) -> TransformOutcome:
        """
        Split and transform a whole document.

        Args:
            text: Document text
            instructions: Rewrite instructions
            on_progress: Called after every segment with (current, total, partial_text)
            cancellation: Token for this run. A fresh one is created if omitted.
            auxiliary_context: Style/content references forwarded to the backend

        Returns:
            TransformOutcome with the final text, or the partial text if the
            run was cancelled or failed.
        """
        if not text.strip():
            return TransformOutcome(
                status=RunStatus.COMPLETED,
                text=text,
                segments_total=0,
                segments_completed=0,
            )

        segments = self.split(text)
        if len(segments) > 1:
            logger.info(f"Text is large ({len(text)} chars), split into {len(segments)} segments")
        return await self.run(
            segments,
            instructions,
            on_progress=on_progress,
            cancellation=cancellation,
            auxiliary_context=auxiliary_context,
        )

    async def run(
        self,
        segments: Sequence[Segment],
        instructions: str,
        on_progress: Optional[ProgressCallback] = None,
        cancellation: Optional[CancellationToken] = None,
        auxiliary_context: Optional[Dict[str, Any]] = None,
    ) -> TransformOutcome:
        """Transform already-split segments in ordinal order."""
        token = cancellation or CancellationToken()
        self._activate(token)
        start_time = time.time()
        state = RunState(segments=sorted(segments, key=lambda s: s.ordinal))

        try:
            for index, segment in enumerate(state.segments, start=1):
                if token.cancelled:
                    return self._cancelled(state, token.reason, start_time)

                state.current_ordinal = segment.ordinal
                logger.info(
                    f"Processing segment {index} of {state.total} ({len(segment)} chars)"
                )

                try:
                    result = await self.invoker.invoke(
                        segment,
                        instructions,
                        state.total,
                        cancellation=token,
                        auxiliary_context=auxiliary_context,
                    )
                except TransformCancelled as e:
                    return self._cancelled(state, e.reason, start_time)
                except TransformError as e:
                    logger.error(f"Segment {index} of {state.total} failed: {e}")
                    self._report(on_progress, index, state)
                    return TransformOutcome(
                        status=RunStatus.FAILED,
                        text=self.render(state),
                        segments_total=state.total,
                        segments_completed=len(state.completed_results),
                        error=e,
                        processing_time=time.time() - start_time,
                    )

                state.completed_results[result.ordinal] = result.text
                self._report(on_progress, index, state)

            logger.info(
                f"Transformed {state.total} segment(s) in {time.time() - start_time:.1f}s"
            )
            return TransformOutcome(
                status=RunStatus.COMPLETED,
                text=self.render(state),
                segments_total=state.total,
                segments_completed=len(state.completed_results),
                processing_time=time.time() - start_time,
            )
        finally:
            if self._active_token is token:
                self._active_token = None

    def _report(self, on_progress: Optional[ProgressCallback], index: int, state: RunState) -> None:
        if on_progress:
            on_progress(index, state.total, self.render(state))

    def _cancelled(self, state: RunState, reason: Optional[str], start_time: float) -> TransformOutcome:
        state.cancelled = True
        logger.info(
            f"Run cancelled after {len(state.completed_results)} of {state.total} segment(s)"
        )
        return TransformOutcome(
            status=RunStatus.CANCELLED,
            text=self.render(state),
            segments_total=state.total,
            segments_completed=len(state.completed_results),
            cancel_reason=reason,
            processing_time=time.time() - start_time,
        )


async def transform_text(
    text: str,
    instructions: str,
    config: Optional[TransformConfig] = None,
    backend: Optional[RewriteBackend] = None,
    on_progress: Optional[ProgressCallback] = None,
    cancellation: Optional[CancellationToken] = None,
    auxiliary_context: Optional[Dict[str, Any]] = None,
) -> str:
    """
    Transform a document and return the final text.

    Args:
        text: Document text
        instructions: Rewrite instructions
        config: Run configuration (backend selector, chunk size, retries)
        backend: Backend to use. Built from config.backend_selector if omitted.
        on_progress: Progress callback
        cancellation: Cancellation token for this run

    Returns:
        The reassembled, transformed text.

    Raises:
        TransformCancelled: if cancelled; carries the partial text.
        TransformError: if a segment could not be transformed.
    """
    config = config or TransformConfig()
    owns_backend = backend is None
    if backend is None:
        backend = create_backend(config.backend_selector, timeout=config.request_timeout)

    try:
        transformer = TextTransformer(backend, config)
        outcome = await transformer.transform(
            text,
            instructions,
            on_progress=on_progress,
            cancellation=cancellation,
            auxiliary_context=auxiliary_context,
        )
    finally:
        if owns_backend:
            await backend.aclose()

    if outcome.cancelled:
        raise TransformCancelled(outcome.cancel_reason or "Transformation cancelled.", outcome.text)
    if outcome.failed:
        raise outcome.error
    return outcome.text
