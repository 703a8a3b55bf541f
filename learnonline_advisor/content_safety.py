"""
Sanitation for gateway-supplied text interpolated into advisor prompts.

Course titles, quest titles and alert text come from other users and
faculty tooling. They are flattened to a single line, stripped of chat
role markup, and truncated before they reach the assistant.
"""

import re

__all__ = ["sanitize_for_prompt"]

_ROLE_TAGS_RE = re.compile(
    r"<\s*/?\s*(system|assistant|user|human|coach|student)\s*>", re.IGNORECASE
)
# A line that would read as a new conversation turn in the history block
_SPEAKER_RE = re.compile(r"^\s*(student|coach|system)\s*:", re.IGNORECASE)
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_WHITESPACE_RE = re.compile(r"\s+")


def sanitize_for_prompt(text: object, max_length: int = 500) -> str:
    """Return ``text`` as one safe line of at most ``max_length`` characters.

    Args:
        text: Raw external value (coerced with ``str``).
        max_length: Maximum output length.
    """
    cleaned = _CONTROL_CHARS_RE.sub("", str(text))
    cleaned = _ROLE_TAGS_RE.sub("", cleaned)
    cleaned = _WHITESPACE_RE.sub(" ", cleaned).strip()
    cleaned = _SPEAKER_RE.sub(lambda m: m.group(1) + " -", cleaned)
    if len(cleaned) > max_length:
        cleaned = cleaned[: max_length - 3].rstrip() + "..."
    return cleaned
