"""Core data models for the streaming bridge.

Request context, renderer state, and the per-chat session record.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class LoopState(str, Enum):
    """Renderer loop states. See lifecycle.py for transition rules."""
    STREAMING = "streaming"
    COMPLETING = "completing"
    CANCELLING = "cancelling"
    ERRORING = "erroring"
    FINALIZED = "finalized"


class HistoryType(str, Enum):
    """Kinds of entries kept in a chat session's history."""
    USER = "user"
    ASSISTANT = "assistant"
    ERROR = "error"
    SYSTEM = "system"
    TOOL_USE = "tool_use"
    TOOL_RESULT = "tool_result"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class RequestContext:
    """Everything the launcher needs for one run.

    ``system_prompt`` of None selects the built-in safety preamble; an
    empty string disables the SYSTEM section entirely.
    """
    prompt: str
    working_dir: str
    session_id: str | None = None
    system_prompt: str | None = None
    allowed_tools: tuple[str, ...] | None = None

    def without_session(self) -> RequestContext:
        return RequestContext(
            prompt=self.prompt,
            working_dir=self.working_dir,
            session_id=None,
            system_prompt=self.system_prompt,
            allowed_tools=self.allowed_tools,
        )


@dataclass
class HistoryItem:
    type: HistoryType
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"type": self.type.value, "content": self.content}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HistoryItem:
        return cls(
            type=HistoryType(data.get("type", "system")),
            content=str(data.get("content", "")),
        )


@dataclass
class ChatSession:
    """Conversation state for one chat.

    ``generation`` counts resets. A renderer remembers the value it
    started under and skips its history write once it has moved on.
    """
    current_path: str
    session_id: str | None = None
    history: list[HistoryItem] = field(default_factory=list)
    pending_uploads: list[str] = field(default_factory=list)
    generation: int = 0
    created_at: datetime = field(default_factory=_utcnow)

    def reset(self) -> None:
        self.session_id = None
        self.history.clear()
        self.pending_uploads.clear()
        self.generation += 1

    def add_user(self, content: str) -> None:
        self.history.append(HistoryItem(HistoryType.USER, content))

    def add_assistant(self, content: str) -> None:
        self.history.append(HistoryItem(HistoryType.ASSISTANT, content))

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "history": [item.to_dict() for item in self.history],
            "current_path": self.current_path,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChatSession:
        created_raw = data.get("created_at")
        try:
            created_at = (
                datetime.fromisoformat(created_raw) if created_raw else _utcnow()
            )
        except (TypeError, ValueError):
            created_at = _utcnow()
        return cls(
            current_path=str(data.get("current_path", "")),
            session_id=data.get("session_id") or None,
            history=[
                HistoryItem.from_dict(item)
                for item in data.get("history", [])
                if isinstance(item, dict)
            ],
            created_at=created_at,
        )


@dataclass
class RenderState:
    """Mutable state owned by a single renderer task."""
    text: str = ""
    last_rendered: str = ""
    done: bool = False
    cancelled: bool = False
    errored: bool = False
    session_id: str | None = None
    spinner_index: int = 0
    state: LoopState = LoopState.STREAMING


@dataclass
class BridgeResponse:
    """Collected outcome of a non-streaming run."""
    success: bool
    response: str = ""
    session_id: str | None = None
    error: str | None = None
