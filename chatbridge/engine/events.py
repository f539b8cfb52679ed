"""Stream events produced by the normalizer.

Both wire dialects (claude ``stream-json`` and codex ``exec --json``)
are parsed into this closed set of variants. The renderer folds them
into display text; ``Done`` and ``Error`` are terminal for a turn.
"""
from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class StreamEvent:
    """Base event from the assistant stream."""
    event_type: str = field(default="", init=False)

    @property
    def is_terminal(self) -> bool:
        return False


@dataclass
class Init(StreamEvent):
    session_id: str = ""
    event_type: str = field(default="init", init=False)


@dataclass
class Text(StreamEvent):
    content: str = ""
    event_type: str = field(default="text", init=False)


@dataclass
class ToolUse(StreamEvent):
    name: str = ""
    input: str = ""
    event_type: str = field(default="tool_use", init=False)


@dataclass
class ToolResult(StreamEvent):
    content: str = ""
    is_error: bool = False
    event_type: str = field(default="tool_result", init=False)


@dataclass
class TaskNotification(StreamEvent):
    task_id: str = ""
    status: str = ""
    summary: str = ""
    event_type: str = field(default="task_notification", init=False)


@dataclass
class Done(StreamEvent):
    result: str = ""
    session_id: str | None = None
    event_type: str = field(default="done", init=False)

    @property
    def is_terminal(self) -> bool:
        return True


@dataclass
class Error(StreamEvent):
    message: str = ""
    event_type: str = field(default="error", init=False)

    @property
    def is_terminal(self) -> bool:
        return True
