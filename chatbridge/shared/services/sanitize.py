"""Scrub chat input before it is forwarded to the assistant."""
from __future__ import annotations

import re

MAX_INPUT_CHARS = 4000
FILTERED = "[filtered]"
TRUNCATED_SUFFIX = "... [truncated]"

INJECTION_PATTERNS: tuple[str, ...] = (
    "ignore previous instructions",
    "ignore all previous",
    "disregard previous",
    "forget previous",
    "system prompt",
    "you are now",
    "act as if",
    "pretend you are",
    "new instructions:",
    "[system]",
    "[admin]",
    "---begin",
    "---end",
)

_INJECTION_RE = re.compile(
    "|".join(re.escape(p) for p in INJECTION_PATTERNS), re.IGNORECASE
)


def sanitize_user_input(text: str) -> str:
    """Replace prompt-injection phrases and cap the length."""
    cleaned = _INJECTION_RE.sub(FILTERED, text)
    if len(cleaned) > MAX_INPUT_CHARS:
        cleaned = cleaned[:MAX_INPUT_CHARS] + TRUNCATED_SUFFIX
    return cleaned
