"""Plain-text helpers for chat-sized output."""
from __future__ import annotations

import re

ELLIPSIS = "..."
_BLANK_RUN_RE = re.compile(r"\n[ \t]*(?:\n[ \t]*)+\n")
_FENCE_RE = re.compile(r"^\s*```")


def truncate_str(text: str, max_chars: int) -> str:
    """Cut *text* to at most *max_chars* characters, marking the cut."""
    if len(text) <= max_chars:
        return text
    if max_chars <= len(ELLIPSIS):
        return text[:max_chars]
    return text[: max_chars - len(ELLIPSIS)] + ELLIPSIS


def normalize_empty_lines(text: str) -> str:
    """Collapse runs of blank lines into one and trim blank edges."""
    collapsed = _BLANK_RUN_RE.sub("\n\n", text)
    return collapsed.strip("\n")


def _hard_wrap(line: str, limit: int) -> list[str]:
    return [line[i : i + limit] for i in range(0, len(line), limit)] or [""]


def split_message(text: str, limit: int) -> list[str]:
    """Split *text* into chunks of at most *limit* characters.

    Breaks fall on line boundaries where possible. A fenced code block
    cut by a break is closed at the end of one chunk and reopened at the
    start of the next, so each chunk renders on its own.
    """
    if len(text) <= limit:
        return [text]

    # Room for a closing fence plus its newline.
    budget = max(limit - 4, 1)
    chunks: list[str] = []
    current: list[str] = []
    size = 0
    fence: str | None = None

    def flush() -> None:
        nonlocal current, size
        if not current:
            return
        body = "\n".join(current)
        if fence is not None:
            body += "\n```"
        chunks.append(body)
        current = [fence] if fence is not None else []
        size = len(fence) if fence is not None else 0

    for line in text.split("\n"):
        pieces = _hard_wrap(line, max(budget - (len(fence) + 1 if fence else 0), 1))
        for piece in pieces:
            extra = len(piece) + (1 if current else 0)
            if current and size + extra > budget:
                flush()
                extra = len(piece) + (1 if current else 0)
            current.append(piece)
            size += extra
        if _FENCE_RE.match(line):
            fence = None if fence is not None else line.strip()

    if current and not (fence is not None and current == [fence]):
        body = "\n".join(current)
        chunks.append(body)
    return [c for c in chunks if c.strip()]
