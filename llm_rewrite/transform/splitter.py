"""
Chunk splitting for large documents.

Breaks a document into ordered, size-bounded segments, cutting at the most
natural boundary available near the end of each window: a paragraph break,
then a sentence break, then a space, and only as a last resort a hard
character cut.
"""

from dataclasses import dataclass
import logging
from typing import List, Sequence

logger = logging.getLogger(__name__)

PARAGRAPH_BREAK = "\n\n"
SENTENCE_BREAK = ". "


@dataclass(frozen=True)
class Segment:
    """A contiguous slice of the source document."""
    ordinal: int
    content: str
    start_offset: int
    end_offset: int

    def __len__(self) -> int:
        return len(self.content)


def split_into_segments(text: str, max_chunk_size: int) -> List[Segment]:
    """
    Split text into segments of at most `max_chunk_size` characters.

    Whitespace at a cut point stays at the end of the preceding segment, so
    joining the segment contents with no separator reproduces `text`.

    A run of non-space characters longer than `max_chunk_size` (a long URL,
    for example) is hard-cut mid-word.

    Args:
        text: Document to split
        max_chunk_size: Maximum segment length in characters

    Returns:
        Ordered list of segments. Small inputs come back as one segment.
    """
    if max_chunk_size <= 0:
        raise ValueError(f"max_chunk_size must be positive, got {max_chunk_size}")

    if len(text) <= max_chunk_size:
        return [Segment(ordinal=0, content=text, start_offset=0, end_offset=len(text))]

    segments: List[Segment] = []
    position = 0

    while position < len(text):
        end = _find_split_point(text, position, max_chunk_size)
        segments.append(
            Segment(
                ordinal=len(segments),
                content=text[position:end],
                start_offset=position,
                end_offset=end,
            )
        )
        position = end

    logger.debug(f"Split {len(text)} chars into {len(segments)} segments (max {max_chunk_size})")
    return segments


def _find_split_point(text: str, start: int, max_chunk_size: int) -> int:
    """Return the end offset of the segment starting at `start`."""
    end = min(start + max_chunk_size, len(text))
    if end >= len(text):
        return end

    # Paragraph break within the last third of the window. A break may
    # straddle the window end; cutting after it would overflow the chunk, so
    # that one is cut before instead.
    paragraph_break = text.rfind(PARAGRAPH_BREAK, start, end + 1)
    if paragraph_break > start and (end - paragraph_break) < max_chunk_size / 3:
        if paragraph_break + len(PARAGRAPH_BREAK) > end:
            return paragraph_break
        return paragraph_break + len(PARAGRAPH_BREAK)

    # Sentence break within the last quarter
    sentence_break = text.rfind(SENTENCE_BREAK, start, end)
    if sentence_break > start and (end - sentence_break) < max_chunk_size / 4:
        return sentence_break + len(SENTENCE_BREAK)

    space = text.rfind(" ", start, end)
    if space > start:
        return space + 1

    # No whitespace at all: hard cut
    return end


def join_segments(segments: Sequence[Segment]) -> str:
    """Reassemble the original text from its segments."""
    return "".join(segment.content for segment in sorted(segments, key=lambda s: s.ordinal))
