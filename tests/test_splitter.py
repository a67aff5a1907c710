"""
Tests for splitting documents into size-bounded segments.
"""

import pytest

from llm_rewrite.transform.splitter import Segment, join_segments, split_into_segments


SAMPLE_TEXTS = [
    "",
    "short",
    "The quick brown fox jumps over the lazy dog. " * 40,
    "First paragraph here.\n\nSecond paragraph follows. It has two sentences.\n\n" * 25,
    "x" * 257,
    "https://example.com/" + "a" * 300 + " trailing words after a very long url",
    "  leading and trailing spaces  \n\n\n  with odd   spacing. Yes.  " * 12,
]


class TestSmallInputs:
    """Inputs that fit in one chunk are returned untouched."""

    def test_text_shorter_than_chunk_is_single_segment(self):
        segments = split_into_segments("hello world", 100)

        assert segments == [Segment(ordinal=0, content="hello world", start_offset=0, end_offset=11)]

    def test_text_exactly_chunk_size_is_single_segment(self):
        text = "a" * 50
        segments = split_into_segments(text, 50)

        assert len(segments) == 1
        assert segments[0].content == text

    def test_non_positive_chunk_size_rejected(self):
        with pytest.raises(ValueError):
            split_into_segments("text", 0)


class TestRoundTrip:
    """Joining segments must reproduce the source exactly."""

    @pytest.mark.parametrize("text", SAMPLE_TEXTS)
    @pytest.mark.parametrize("chunk_size", [1, 3, 16, 100, 1000])
    def test_segments_reconstruct_text(self, text, chunk_size):
        segments = split_into_segments(text, chunk_size)

        assert join_segments(segments) == text
        assert "".join(s.content for s in segments) == text

    @pytest.mark.parametrize("text", SAMPLE_TEXTS[2:])
    @pytest.mark.parametrize("chunk_size", [1, 7, 64, 500])
    def test_segments_are_contiguous_bounded_and_non_empty(self, text, chunk_size):
        segments = split_into_segments(text, chunk_size)

        assert segments[0].start_offset == 0
        assert segments[-1].end_offset == len(text)
        for index, segment in enumerate(segments):
            assert segment.ordinal == index
            assert 0 < len(segment.content) <= chunk_size
            assert segment.content == text[segment.start_offset:segment.end_offset]
        for current, following in zip(segments, segments[1:]):
            assert current.end_offset == following.start_offset

    def test_join_uses_ordinal_order(self):
        segments = split_into_segments("alpha beta gamma delta epsilon", 8)

        assert join_segments(list(reversed(segments))) == "alpha beta gamma delta epsilon"


class TestBoundaryPreference:
    """Cut points prefer paragraphs, then sentences, then spaces."""

    def test_paragraph_break_in_last_third_wins(self):
        text = "a" * 70 + "\n\n" + "b" * 100
        segments = split_into_segments(text, 100)

        assert segments[0].content == "a" * 70 + "\n\n"
        assert segments[0].end_offset == 72

    def test_paragraph_break_too_early_is_ignored(self):
        text = "a" * 50 + "\n\n" + "b" * 30 + " " + "c" * 100
        segments = split_into_segments(text, 100)

        # Falls through to the last space before the window end
        assert segments[0].end_offset == 83
        assert segments[0].content.endswith("b ")

    def test_sentence_break_in_last_quarter(self):
        text = "a" * 80 + ". " + "b" * 100
        segments = split_into_segments(text, 100)

        assert segments[0].content == "a" * 80 + ". "

    def test_space_used_when_no_sentence_break(self):
        text = "word " * 30
        segments = split_into_segments(text, 23)

        assert segments[0].content == "word word word word "
        assert all(s.content.endswith(" ") for s in segments)

    def test_paragraph_break_straddling_window_end(self):
        text = "a" * 99 + "\n\n" + "b" * 100
        segments = split_into_segments(text, 100)

        assert segments[0].content == "a" * 99
        assert segments[1].content.startswith("\n\nb")
        assert join_segments(segments) == text

    def test_long_unbroken_run_is_hard_cut(self):
        text = "x" * 250
        segments = split_into_segments(text, 100)

        assert [len(s.content) for s in segments] == [100, 100, 50]

    def test_two_paragraph_document(self):
        """A 6000 + 3000 character document splits at its paragraph break."""
        first = "x" * 6000
        second = "y" * 3000
        text = first + "\n\n" + second

        segments = split_into_segments(text, 8000)

        assert len(segments) == 2
        assert segments[0].content == first + "\n\n"
        assert segments[1].content == second
