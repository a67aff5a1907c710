"""
Tests for whole-document transformation: ordering, progress, cancellation
and reassembly.
"""

import asyncio

import pytest

from llm_rewrite.transform.backends import BackendOutcome, MockBackend
from llm_rewrite.transform.cancellation import CancellationToken
from llm_rewrite.transform.config import TransformConfig
from llm_rewrite.transform.errors import SegmentTransformError, TransformCancelled
from llm_rewrite.transform.pipeline import (
    RunState,
    RunStatus,
    TextTransformer,
    transform_text,
)
from llm_rewrite.transform.splitter import Segment


def five_part_document() -> str:
    # Five 10-character words; a chunk size of 10 gives one segment per word
    return "".join(f"part{i:05d} " for i in range(1, 6))


@pytest.fixture
def small_chunks():
    return TransformConfig(backend_selector="mock", max_chunk_size=10, retry_delay_ms=0)


class ProgressRecorder:
    def __init__(self):
        self.calls = []

    def __call__(self, current, total, partial_text):
        self.calls.append((current, total, partial_text))


class TestTwoPartDocument:
    """A document just over the chunk size with a paragraph break near the end."""

    @pytest.mark.asyncio
    async def test_two_segments_in_order_with_progress(self):
        first = "x" * 6000
        second = "y" * 3000
        backend = MockBackend()
        transformer = TextTransformer(backend, TransformConfig(backend_selector="mock"))
        progress = ProgressRecorder()

        outcome = await transformer.transform(first + "\n\n" + second, "Polish", on_progress=progress)

        assert outcome.status == RunStatus.COMPLETED
        assert outcome.segments_total == 2
        assert outcome.segments_completed == 2
        assert outcome.text == first + "\n\n" + second

        assert len(backend.requests) == 2
        assert backend.requests[0].segment_content == first + "\n\n"
        assert "part 1 of 2" in backend.requests[0].instructions
        assert "part 2 of 2" in backend.requests[1].instructions

        assert [(c, t) for c, t, _ in progress.calls] == [(1, 2), (2, 2)]
        assert progress.calls[0][2] == first
        assert progress.calls[1][2] == outcome.text

    @pytest.mark.asyncio
    async def test_small_document_is_one_call(self):
        backend = MockBackend(transform=lambda text: "Rewritten.")
        transformer = TextTransformer(backend, TransformConfig(backend_selector="mock"))
        progress = ProgressRecorder()

        outcome = await transformer.transform("A short note.", "Polish", on_progress=progress)

        assert outcome.completed
        assert outcome.text == "Rewritten."
        assert backend.requests[0].instructions == "Polish"
        assert progress.calls == [(1, 1, "Rewritten.")]

    @pytest.mark.asyncio
    async def test_whitespace_only_document(self):
        backend = MockBackend()
        transformer = TextTransformer(backend, TransformConfig(backend_selector="mock"))

        outcome = await transformer.transform("   \n ", "Polish")

        assert outcome.completed
        assert outcome.segments_total == 0
        assert outcome.progress_percent == 100
        assert backend.requests == []


class TestOrdering:
    """Output order always follows segment order."""

    def test_run_state_joins_by_ordinal(self):
        state = RunState(segments=[])
        state.completed_results[2] = "third"
        state.completed_results[0] = "first"
        state.completed_results[1] = "second"

        assert state.joined(" | ") == "first | second | third"

    @pytest.mark.asyncio
    async def test_segments_given_out_of_order_run_in_ordinal_order(self, small_chunks):
        backend = MockBackend()
        transformer = TextTransformer(backend, small_chunks)
        segments = [
            Segment(ordinal=2, content="gamma", start_offset=10, end_offset=15),
            Segment(ordinal=0, content="alpha", start_offset=0, end_offset=5),
            Segment(ordinal=1, content="beta ", start_offset=5, end_offset=10),
        ]

        outcome = await transformer.run(segments, "Fix")

        assert [r.segment_content for r in backend.requests] == ["alpha", "beta ", "gamma"]
        assert outcome.text == "alpha\n\nbeta\n\ngamma"

    @pytest.mark.asyncio
    async def test_variable_latency_does_not_reorder(self, small_chunks):
        delays = iter([0.03, 0.0, 0.02, 0.0, 0.01])

        async def slow_then_fast(request):
            await asyncio.sleep(next(delays))
            return BackendOutcome.success(request.segment_content.strip().upper())

        backend = MockBackend()
        backend.rewrite = slow_then_fast
        transformer = TextTransformer(backend, small_chunks)

        outcome = await transformer.transform(five_part_document(), "Fix")

        assert outcome.text.split("\n\n") == [f"PART{i:05d}" for i in range(1, 6)]


class TestCancellation:
    """Cancelling keeps the finished segments and stops further calls."""

    @pytest.mark.asyncio
    async def test_cancel_after_second_of_five_segments(self, small_chunks):
        backend = MockBackend()
        transformer = TextTransformer(backend, small_chunks)
        token = CancellationToken()

        def on_progress(current, total, partial_text):
            if current == 2:
                token.cancel("Transformation cancelled by user.")

        outcome = await transformer.transform(
            five_part_document(), "Fix", on_progress=on_progress, cancellation=token
        )

        assert outcome.status == RunStatus.CANCELLED
        assert outcome.segments_completed == 2
        assert outcome.segments_total == 5
        assert outcome.text == "part00001\n\npart00002"
        assert outcome.cancel_reason == "Transformation cancelled by user."
        assert len(backend.requests) == 2
        assert not transformer.is_running

    @pytest.mark.asyncio
    async def test_cancel_during_backend_call(self, small_chunks):
        backend = MockBackend(delay=10)
        transformer = TextTransformer(backend, small_chunks)
        token = CancellationToken()
        asyncio.get_running_loop().call_later(0.05, token.cancel, "stop")

        outcome = await asyncio.wait_for(
            transformer.transform(five_part_document(), "Fix", cancellation=token), timeout=2
        )

        assert outcome.cancelled
        assert outcome.text == ""
        assert len(backend.requests) == 1

    @pytest.mark.asyncio
    async def test_caller_timeout_aborts_backend_request(self, small_chunks):
        state = {"aborted": False, "finished": False}

        async def slow_rewrite(request):
            try:
                await asyncio.sleep(0.3)
            except asyncio.CancelledError:
                state["aborted"] = True
                raise
            state["finished"] = True
            return BackendOutcome.success("late")

        backend = MockBackend()
        backend.rewrite = slow_rewrite
        transformer = TextTransformer(backend, small_chunks)

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(transformer.transform("hello", "Fix"), timeout=0.05)
        await asyncio.sleep(0.4)

        assert state["aborted"]
        assert not state["finished"]
        assert not transformer.is_running

    @pytest.mark.asyncio
    async def test_transformer_cancel_method(self, small_chunks):
        backend = MockBackend()
        transformer = TextTransformer(backend, small_chunks)

        def on_progress(current, total, partial_text):
            if current == 3:
                transformer.cancel()

        outcome = await transformer.transform(five_part_document(), "Fix", on_progress=on_progress)

        assert outcome.cancelled
        assert outcome.segments_completed == 3
        assert not transformer.cancel()

    @pytest.mark.asyncio
    async def test_new_run_cancels_previous_run(self, small_chunks):
        backend = MockBackend(delay=0.2)
        transformer = TextTransformer(backend, small_chunks)

        first_run = asyncio.ensure_future(transformer.transform(five_part_document(), "Fix"))
        await asyncio.sleep(0.01)
        second = await transformer.transform("second doc", "Fix")
        first = await first_run

        assert first.cancelled
        assert first.cancel_reason == "Superseded by a new transformation."
        assert second.completed
        assert second.text == "second doc"


class TestFailure:
    """A permanent failure ends the run but keeps what was done."""

    @pytest.mark.asyncio
    async def test_failure_keeps_partial_text(self, small_chunks):
        backend = MockBackend(outcomes=[
            BackendOutcome.success("First part."),
            BackendOutcome.fatal("content policy", status_code=400),
        ])
        transformer = TextTransformer(backend, small_chunks)
        progress = ProgressRecorder()

        outcome = await transformer.transform(five_part_document(), "Fix", on_progress=progress)

        assert outcome.status == RunStatus.FAILED
        assert isinstance(outcome.error, SegmentTransformError)
        assert outcome.error.ordinal == 1
        assert outcome.text == "First part."
        assert outcome.segments_completed == 1
        assert progress.calls == [(1, 5, "First part."), (2, 5, "First part.")]
        assert len(backend.requests) == 2


class TestMarkdown:
    """Partial and final text are cleaned the same way."""

    @pytest.mark.asyncio
    async def test_markdown_stripped_from_partial_and_final(self, small_chunks):
        backend = MockBackend(transform=lambda text: f"**{text.strip()}**")
        transformer = TextTransformer(backend, small_chunks)
        progress = ProgressRecorder()

        outcome = await transformer.transform("part00001 part00002 ", "Fix", on_progress=progress)

        assert progress.calls[0][2] == "part00001"
        assert outcome.text == "part00001\n\npart00002"
        assert "**" not in outcome.text

    @pytest.mark.asyncio
    async def test_markdown_kept_when_disabled(self):
        config = TransformConfig(backend_selector="mock", strip_markdown=False)
        backend = MockBackend(transform=lambda text: "# Title\n\n**bold**")
        transformer = TextTransformer(backend, config)

        outcome = await transformer.transform("anything", "Fix")

        assert outcome.text == "# Title\n\n**bold**"


class TestTransformText:
    """The single-call convenience function."""

    @pytest.mark.asyncio
    async def test_returns_final_text(self, small_chunks):
        text = await transform_text(five_part_document(), "Fix", config=small_chunks)

        assert text.split("\n\n") == [f"part{i:05d}" for i in range(1, 6)]

    @pytest.mark.asyncio
    async def test_raises_cancelled_with_partial_text(self, small_chunks):
        token = CancellationToken()

        def on_progress(current, total, partial_text):
            if current == 1:
                token.cancel("stop")

        with pytest.raises(TransformCancelled) as exc_info:
            await transform_text(
                five_part_document(),
                "Fix",
                config=small_chunks,
                backend=MockBackend(),
                on_progress=on_progress,
                cancellation=token,
            )

        assert exc_info.value.reason == "stop"
        assert exc_info.value.partial_text == "part00001"

    @pytest.mark.asyncio
    async def test_raises_segment_error(self, small_chunks):
        backend = MockBackend(outcomes=[BackendOutcome.retryable("busy")] * 3)

        with pytest.raises(SegmentTransformError) as exc_info:
            await transform_text(five_part_document(), "Fix", config=small_chunks, backend=backend)

        assert exc_info.value.attempts == 3
