"""
Instruction presets and markdown cleanup for rewritten text.
"""

import re
from typing import Dict, List, Optional

DEFAULT_INSTRUCTIONS = "Improve this text"

PRESET_INSTRUCTIONS: Dict[str, str] = {
    "Academic": (
        "Rewrite in a formal academic style with proper citations, theoretical frameworks, "
        "and scholarly tone. Use precise terminology and maintain a third-person perspective."
    ),
    "Professional": (
        "Transform into clear, concise professional writing suitable for business communication. "
        "Use direct language, remove unnecessary words, and organize with bullet points when appropriate."
    ),
    "Creative": (
        "Rewrite with vivid imagery, varied sentence structure, and engaging narrative elements. "
        "Add metaphors and descriptive language to create a more immersive experience."
    ),
    "Concise": (
        "Make the text as brief as possible while preserving all key information. "
        "Aim for at least 50% reduction in length without losing essential content."
    ),
    "Elaborate": (
        "Expand on the ideas in the text, adding depth, examples, and explanations. "
        "Develop arguments more fully and explore implications of the statements."
    ),
    "Intelligent": (
        "Rewrite in the style of someone who is extremely intelligent but who is not long-winded "
        "and who is not a pedant and who is explaining this in an effective and brisk manner "
        "to people of modest intelligence."
    ),
    "Custom": "",
}

# Order matters: fenced blocks before inline code, bold before italic.
_MARKDOWN_RULES = [
    (re.compile(r"```[a-zA-Z0-9_+-]*\n?"), ""),
    (re.compile(r"`([^`\n]+)`"), r"\1"),
    (re.compile(r"\*{1,3}([^*\n]+)\*{1,3}"), r"\1"),
    (re.compile(r"~~([^~\n]+)~~"), r"\1"),
    (re.compile(r"^#{1,6}[ \t]+", re.MULTILINE), ""),
    (re.compile(r"^>[ \t]?", re.MULTILINE), ""),
    (re.compile(r"^[ \t]*(?:-{3,}|_{3,}|\*{3,})[ \t]*$", re.MULTILINE), ""),
    (re.compile(r"\[([^\]]+)\]\([^)]+\)"), r"\1"),
    (re.compile(r"\n{3,}"), "\n\n"),
]


def strip_markdown(text: str) -> str:
    """
    Remove markdown formatting markers, keeping the words.

    Used for both partial and final output so the progressive view and the
    finished document never differ in formatting.
    """
    if not text:
        return ""

    cleaned = text
    for pattern, replacement in _MARKDOWN_RULES:
        cleaned = pattern.sub(replacement, cleaned)
    return cleaned.strip()


def get_preset_instructions(preset: Optional[str]) -> str:
    """Return the instructions for a named preset, or '' if unknown."""
    if not preset:
        return ""
    return PRESET_INSTRUCTIONS.get(preset, "")


def build_instructions(custom_instructions: Optional[str] = None, preset: Optional[str] = None) -> str:
    """
    Combine a preset and custom instructions into one instruction string.

    Falls back to a generic improvement request when nothing is given.
    """
    parts: List[str] = []
    preset_text = get_preset_instructions(preset)
    if preset_text:
        parts.append(preset_text)
    if custom_instructions and custom_instructions.strip():
        parts.append(custom_instructions.strip())

    return " ".join(parts) or DEFAULT_INSTRUCTIONS


def with_part_context(instructions: str, part: int, total: int) -> str:
    """Tell the backend where this piece sits in the larger document."""
    return (
        f"{instructions}\n\nThis is part {part} of {total} from a larger document. "
        "Maintain consistent style and formatting across all parts."
    )


def with_sub_part_context(
    instructions: str, sub_part: int, sub_total: int, part: int, parent: Optional[str] = None
) -> str:
    """Label a re-split piece. `parent` is the dotted path of the enclosing sub-part, e.g. "2" or "2.1"."""
    if parent:
        return (
            f"{instructions}\n\nThis is sub-part {sub_part} of {sub_total} "
            f"of sub-part {parent} of part {part}."
        )
    return f"{instructions}\n\nThis is sub-part {sub_part} of {sub_total} of part {part}."
