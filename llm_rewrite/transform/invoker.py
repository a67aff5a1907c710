"""
Per-segment rewrite calls with retry and oversize recovery.

The invoker turns one segment into one rewritten string. Transient failures
are retried a fixed number of times with a fixed delay. An oversized payload
is never retried at the same size: the segment is split again at half the
chunk size and the pieces are rewritten in order and joined back together,
recursively, until the minimum chunk size is reached.
"""

from dataclasses import dataclass
import logging
from typing import Any, Dict, Optional

from .backends import BackendOutcome, OutcomeStatus, RewriteBackend, TransformRequest
from .cancellation import CancellationToken
from .config import TransformConfig
from .errors import (
    BackendConfigurationError,
    OversizedPayloadError,
    SegmentTransformError,
    TransformCancelled,
)
from .formatting import with_part_context, with_sub_part_context
from .splitter import Segment, split_into_segments

logger = logging.getLogger(__name__)


@dataclass
class TransformResult:
    """Rewritten text for one segment ordinal."""
    ordinal: int
    text: str
    backend_calls: int = 0
    resplit: bool = False


class TransformInvoker:
    """Sends segments to a rewrite backend, one call per attempt."""

    def __init__(self, backend: RewriteBackend, config: TransformConfig):
        self.backend = backend
        self.config = config

    async def invoke(
        self,
        segment: Segment,
        instructions: str,
        total_segments: int,
        cancellation: Optional[CancellationToken] = None,
        auxiliary_context: Optional[Dict[str, Any]] = None,
    ) -> TransformResult:
        """
        Rewrite a single segment.

        Args:
            segment: Segment to rewrite
            instructions: Rewrite instructions for the whole document
            total_segments: Number of segments in the document
            cancellation: Token checked before each attempt and raced against each call
            auxiliary_context: Style/content references forwarded to the backend

        Returns:
            TransformResult for the segment's ordinal.

        Raises:
            TransformCancelled: if the token fires.
            SegmentTransformError: if retries are exhausted or the failure is permanent.
            OversizedPayloadError: if the payload is too large even at the minimum size.
            BackendConfigurationError: if the backend is not usable (missing credentials).
        """
        token = cancellation or CancellationToken()
        part = segment.ordinal + 1
        if total_segments > 1:
            part_instructions = with_part_context(instructions, part, total_segments)
        else:
            part_instructions = instructions

        result = TransformResult(ordinal=segment.ordinal, text="")
        result.text = await self._rewrite_content(
            content=segment.content,
            instructions=part_instructions,
            part_instructions=part_instructions,
            ordinal=segment.ordinal,
            chunk_size=self.config.max_chunk_size,
            token=token,
            auxiliary_context=dict(auxiliary_context or {}),
            result=result,
        )
        return result

    async def _rewrite_content(
        self,
        content: str,
        instructions: str,
        part_instructions: str,
        ordinal: int,
        chunk_size: int,
        token: CancellationToken,
        auxiliary_context: Dict[str, Any],
        result: TransformResult,
        sub_path: str = "",
    ) -> str:
        request = TransformRequest(
            segment_content=content,
            instructions=instructions,
            backend_selector=self.config.backend_selector,
            auxiliary_context=auxiliary_context,
        )
        part = ordinal + 1
        attempt = 0

        while True:
            attempt += 1
            token.raise_if_cancelled()
            outcome = await self._call_backend(request, token)
            result.backend_calls += 1

            if outcome.status == OutcomeStatus.OK:
                return outcome.text

            if outcome.status == OutcomeStatus.CANCELLED:
                raise TransformCancelled(outcome.reason or "Transformation cancelled.")

            if outcome.status == OutcomeStatus.OVERSIZED:
                result.resplit = True
                return await self._resplit(
                    content, part_instructions, ordinal, chunk_size, token,
                    auxiliary_context, result, outcome, sub_path,
                )

            if outcome.status == OutcomeStatus.FATAL:
                logger.error(f"Part {part} failed permanently: {outcome.reason}")
                if outcome.status_code is None or outcome.status_code in (401, 403):
                    raise BackendConfigurationError(
                        outcome.reason or "Backend is not configured",
                        backend=self.config.backend_selector,
                        ordinal=ordinal,
                    )
                raise SegmentTransformError(
                    f"Transformation of part {part} failed: {outcome.reason}",
                    ordinal=ordinal,
                    attempts=attempt,
                    status_code=outcome.status_code,
                )

            # Transient
            if attempt >= self.config.max_attempts:
                logger.error(f"Part {part} failed after {attempt} attempts: {outcome.reason}")
                raise SegmentTransformError(
                    f"Transformation of part {part} failed after {attempt} attempts: {outcome.reason}",
                    ordinal=ordinal,
                    attempts=attempt,
                    status_code=outcome.status_code,
                )

            logger.warning(
                f"Attempt {attempt} for part {part} failed: {outcome.reason}. "
                f"Retrying in {self.config.retry_delay:.1f}s..."
            )
            await token.sleep(self.config.retry_delay)

    async def _resplit(
        self,
        content: str,
        part_instructions: str,
        ordinal: int,
        chunk_size: int,
        token: CancellationToken,
        auxiliary_context: Dict[str, Any],
        result: TransformResult,
        outcome: BackendOutcome,
        sub_path: str = "",
    ) -> str:
        part = ordinal + 1
        half = chunk_size // 2
        if len(content) <= half or half < self.config.min_chunk_size:
            raise OversizedPayloadError(
                f"Part {part} is too large for the backend even at {len(content)} characters: "
                f"{outcome.reason}",
                ordinal=ordinal,
                size=len(content),
            )

        sub_segments = split_into_segments(content, half)
        logger.info(
            f"Part {part} too large ({len(content)} chars), splitting into "
            f"{len(sub_segments)} sub-parts of at most {half} chars"
        )

        pieces = []
        for sub in sub_segments:
            number = sub.ordinal + 1
            pieces.append(
                await self._rewrite_content(
                    content=sub.content,
                    instructions=with_sub_part_context(
                        part_instructions, number, len(sub_segments), part, parent=sub_path or None
                    ),
                    part_instructions=part_instructions,
                    ordinal=ordinal,
                    chunk_size=half,
                    token=token,
                    auxiliary_context=auxiliary_context,
                    result=result,
                    sub_path=f"{sub_path}.{number}" if sub_path else str(number),
                )
            )
        return self.config.separator.join(pieces)

    async def _call_backend(self, request: TransformRequest, token: CancellationToken) -> BackendOutcome:
        try:
            return await token.run(self.backend.rewrite(request))
        except TransformCancelled:
            raise
        except Exception as e:
            # Backends report failures as outcomes; anything raised is unexpected
            logger.exception(f"{self.backend.get_provider_name()} backend raised")
            return BackendOutcome.retryable(f"{type(e).__name__}: {e}")
