"""
Tests for instruction building and markdown cleanup.
"""

import pytest

from llm_rewrite.transform.formatting import (
    DEFAULT_INSTRUCTIONS,
    PRESET_INSTRUCTIONS,
    build_instructions,
    get_preset_instructions,
    strip_markdown,
    with_part_context,
    with_sub_part_context,
)


class TestStripMarkdown:
    """Markers go, words stay."""

    @pytest.mark.parametrize("source,expected", [
        ("**bold** and *italic*", "bold and italic"),
        ("***both***", "both"),
        ("~~gone~~ text", "gone text"),
        ("# Heading\n\nBody", "Heading\n\nBody"),
        ("### Deep heading", "Deep heading"),
        ("> quoted line", "quoted line"),
        ("use `code` here", "use code here"),
        ("```python\nprint(1)\n```", "print(1)"),
        ("see [the docs](https://example.com)", "see the docs"),
        ("one\n\n\n\ntwo", "one\n\ntwo"),
        ("above\n---\nbelow", "above\n\nbelow"),
    ])
    def test_markers_removed(self, source, expected):
        assert strip_markdown(source) == expected

    def test_plain_text_unchanged(self):
        text = "Plain text. With #hashtags and 5 * 3 = 15."

        assert strip_markdown(text) == text

    def test_empty(self):
        assert strip_markdown("") == ""


class TestInstructions:
    """Preset and custom instruction handling."""

    def test_default_when_nothing_given(self):
        assert build_instructions() == DEFAULT_INSTRUCTIONS

    def test_preset_only(self):
        assert build_instructions(preset="Concise") == PRESET_INSTRUCTIONS["Concise"]

    def test_preset_and_custom_combined(self):
        combined = build_instructions("Keep it in British English.", preset="Professional")

        assert combined.startswith(PRESET_INSTRUCTIONS["Professional"])
        assert combined.endswith("Keep it in British English.")

    def test_custom_preset_has_no_text(self):
        assert build_instructions(preset="Custom") == DEFAULT_INSTRUCTIONS
        assert get_preset_instructions("Unknown") == ""

    def test_part_context(self):
        text = with_part_context("Fix", 2, 5)

        assert text.startswith("Fix\n\n")
        assert "part 2 of 5" in text

    def test_sub_part_context(self):
        assert with_sub_part_context("Fix", 1, 3, 4).endswith("sub-part 1 of 3 of part 4.")
