"""Parse assistant JSONL output into StreamEvents.

Two dialects arrive on the same pipe and are told apart only by their
``type`` tag:

  claude ``--output-format stream-json``:
    system (subtype init / task_notification), assistant, result

  codex ``exec --json``:
    thread.started, item.started, item.completed, turn.completed

Lines that are not JSON objects, and tags we do not know, yield no
events. The CLIs print diagnostics on stdout and add new event types
over time; neither should break a live stream.
"""
from __future__ import annotations

import json
import logging
from typing import Any

from .events import (
    Done,
    Error,
    Init,
    StreamEvent,
    TaskNotification,
    Text,
    ToolResult,
    ToolUse,
)

logger = logging.getLogger(__name__)

BENIGN_ERROR_MARKER = "Under-development features enabled"
_FALLBACK_ERROR = "Claude execution failed"


def _str(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _tool_input_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if value is None:
        return ""
    try:
        return json.dumps(value, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(value)


def _assistant_events(event: dict[str, Any]) -> list[StreamEvent]:
    message = event.get("message")
    if not isinstance(message, dict):
        return []
    content = message.get("content")
    if not isinstance(content, list):
        return []
    out: list[StreamEvent] = []
    for block in content:
        if not isinstance(block, dict):
            continue
        block_type = block.get("type")
        if block_type == "text":
            text = _str(block.get("text"))
            if text:
                out.append(Text(text))
        elif block_type == "tool_use":
            name = _str(block.get("name")) or "Tool"
            out.append(ToolUse(name, _tool_input_text(block.get("input"))))
    return out


def _result_events(event: dict[str, Any]) -> list[StreamEvent]:
    result_text = _str(event.get("result"))
    session_id = _str(event.get("session_id")) or None
    out: list[StreamEvent] = []
    if event.get("is_error") is True:
        errors = event.get("errors")
        error_lines = (
            [str(e) for e in errors if e is not None]
            if isinstance(errors, list)
            else []
        )
        if error_lines:
            message = "\n".join(error_lines)
        elif result_text.strip():
            message = result_text
        else:
            message = _FALLBACK_ERROR
        out.append(Error(message))
    out.append(Done(result_text, session_id))
    return out


def _task_notification(event: dict[str, Any]) -> list[StreamEvent]:
    return [
        TaskNotification(
            task_id=_str(event.get("task_id")),
            status=_str(event.get("status")),
            summary=_str(event.get("summary")),
        )
    ]


def _item_started_events(item: dict[str, Any]) -> list[StreamEvent]:
    if item.get("type") == "command_execution":
        command = _str(item.get("command"))
        if command:
            return [ToolUse("Bash", command)]
    return []


def _item_completed_events(item: dict[str, Any]) -> list[StreamEvent]:
    item_type = item.get("type")
    if item_type == "agent_message":
        text = _str(item.get("text"))
        return [Text(text)] if text else []

    if item_type == "command_execution":
        output = _str(item.get("aggregated_output")).rstrip()
        exit_code = item.get("exit_code")
        if not isinstance(exit_code, int) or isinstance(exit_code, bool):
            exit_code = None
        is_error = (exit_code or 0) != 0
        if not output and not is_error:
            return []
        content = output or (
            f"Command exited with code {exit_code if exit_code is not None else -1}"
        )
        return [ToolResult(content, is_error)]

    if item_type == "error":
        message = _str(item.get("message")).strip()
        if not message or BENIGN_ERROR_MARKER in message:
            return []
        return [Error(message)]

    return []


def parse_stream_event(event: dict[str, Any]) -> list[StreamEvent]:
    """Dispatch one decoded JSON object on its ``type`` tag."""
    etype = event.get("type")

    if etype == "system":
        subtype = event.get("subtype")
        if subtype == "init":
            session_id = _str(event.get("session_id"))
            return [Init(session_id)] if session_id else []
        if subtype == "task_notification":
            return _task_notification(event)
        return []

    if etype == "assistant":
        return _assistant_events(event)

    if etype == "result":
        return _result_events(event)

    if etype == "task_notification":
        return _task_notification(event)

    if etype == "thread.started":
        thread_id = _str(event.get("thread_id"))
        return [Init(thread_id)] if thread_id else []

    if etype in ("item.started", "item.completed"):
        item = event.get("item")
        if not isinstance(item, dict):
            return []
        if etype == "item.started":
            return _item_started_events(item)
        return _item_completed_events(item)

    if etype == "turn.completed":
        return [Done("", None)]

    return []


def parse_stream_line(line: str | bytes) -> list[StreamEvent]:
    """Parse one line of process stdout; noise yields an empty list."""
    if isinstance(line, bytes):
        line = line.decode("utf-8", errors="replace")
    stripped = line.strip()
    if not stripped:
        return []
    try:
        event = json.loads(stripped)
    except (json.JSONDecodeError, ValueError):
        logger.debug("Dropping non-JSON stream line: %.200s", stripped)
        return []
    if not isinstance(event, dict):
        return []
    return parse_stream_event(event)
