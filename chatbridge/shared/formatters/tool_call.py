"""One-line tool call summaries for the chat transcript.

The renderer shows each tool invocation as a single line. Formatters are
registered per canonical tool name:

    @tool_formatter("MyTool")
    def _format_my_tool(name, args):
        return f"MyTool {args.get('target', '')}"

Unregistered tools fall back to ``<name>: <truncated raw input>``.
"""
from __future__ import annotations

import ast
import json
from typing import Any, Callable

SUMMARY_MAX = 200

# ── Argument Parsing ──


def parse_args(arguments: str) -> dict:
    """Parse a tool input string to a dict, falling back gracefully.

    Inputs usually arrive JSON-serialized. Python repr is tried next,
    then the raw text is kept under ``_raw``.
    """
    if not arguments:
        return {}
    try:
        parsed = json.loads(arguments)
        if isinstance(parsed, dict):
            return parsed
        return {"_raw": arguments}
    except (json.JSONDecodeError, TypeError):
        pass
    try:
        parsed = ast.literal_eval(arguments)
        if isinstance(parsed, dict):
            return parsed
        return {"_raw": arguments}
    except (ValueError, SyntaxError):
        pass
    return {"_raw": arguments}


# ── Formatter Registry ──

_FORMATTERS: dict[str, Callable[[str, dict], str]] = {}
_TOOL_NAME_ALIASES: dict[str, str] = {
    "read": "Read",
    "read_file": "Read",
    "write": "Write",
    "write_file": "Write",
    "edit": "Edit",
    "edit_file": "Edit",
    "multiedit": "Edit",
    "bash": "Bash",
    "run_shell_command": "Bash",
    "glob": "Glob",
    "grep": "Grep",
    "webfetch": "WebFetch",
    "websearch": "WebSearch",
    "web_search": "WebSearch",
    "task": "Task",
    "todowrite": "TodoWrite",
    "notebookedit": "NotebookEdit",
}


def tool_formatter(name: str):
    """Decorator to register a formatter for a given tool name."""

    def decorator(fn: Callable[[str, dict], str]):
        _FORMATTERS[name] = fn
        return fn

    return decorator


def _normalize_tool_name(name: str) -> str:
    """Strip an MCP server prefix and map aliases to canonical names.

    E.g. ``mcp__files__read_file`` → ``Read``.
    """
    if name.startswith("mcp__") and name.count("__") >= 2:
        name = name.split("__", 2)[2]
    return _TOOL_NAME_ALIASES.get(name.lower(), name)


def format_tool_input(name: str, tool_input: str) -> str:
    """Summarize one tool invocation on a single line."""
    args = parse_args(tool_input)
    formatter = _FORMATTERS.get(name)
    if formatter is None:
        formatter = _FORMATTERS.get(_normalize_tool_name(name), _format_default)
    summary = formatter(name, args)
    return _trunc(" ".join(summary.split("\n")), SUMMARY_MAX)


# ── Helpers ──


def _basename(path: str) -> str:
    """Extract a short display path (last 2 components)."""
    if not path:
        return ""
    parts = path.replace("\\", "/").rstrip("/").split("/")
    return "/".join(parts[-2:]) if len(parts) >= 2 else parts[-1]


def _trunc(text: str, length: int = 60) -> str:
    """Truncate text with ellipsis."""
    if not text:
        return ""
    if len(text) <= length:
        return text
    return text[: length - 3] + "..."


def _arg(args: dict, *keys: str) -> str:
    for key in keys:
        value = args.get(key)
        if isinstance(value, str) and value:
            return value
    return ""


def _format_default(name: str, args: dict) -> str:
    raw = args.get("_raw")
    if raw is None and args:
        raw = json.dumps(args, ensure_ascii=False)
    if not raw:
        return name
    return f"{name}: {_trunc(str(raw), 100)}"


# ── Per-tool formatters ──


@tool_formatter("Bash")
def _format_bash(name: str, args: dict) -> str:
    command = _arg(args, "command", "cmd", "_raw")
    description = _arg(args, "description")
    if description and not command:
        return f"Bash: {description}"
    return f"Bash: {_trunc(command, 150)}" if command else "Bash"


@tool_formatter("Read")
def _format_read(name: str, args: dict) -> str:
    path = _arg(args, "file_path", "path", "_raw")
    suffix = ""
    offset: Any = args.get("offset")
    limit: Any = args.get("limit")
    if isinstance(offset, int) and isinstance(limit, int):
        suffix = f" (lines {offset}-{offset + limit})"
    return f"Read {_basename(path)}{suffix}".rstrip()


@tool_formatter("Write")
def _format_write(name: str, args: dict) -> str:
    path = _arg(args, "file_path", "path", "_raw")
    return f"Write {_basename(path)}".rstrip()


@tool_formatter("Edit")
def _format_edit(name: str, args: dict) -> str:
    path = _arg(args, "file_path", "path", "_raw")
    return f"Edit {_basename(path)}".rstrip()


@tool_formatter("NotebookEdit")
def _format_notebook_edit(name: str, args: dict) -> str:
    path = _arg(args, "notebook_path", "file_path", "_raw")
    return f"NotebookEdit {_basename(path)}".rstrip()


@tool_formatter("Glob")
def _format_glob(name: str, args: dict) -> str:
    pattern = _arg(args, "pattern", "_raw")
    path = _arg(args, "path")
    where = f" in {_basename(path)}" if path else ""
    return f"Glob {pattern}{where}".rstrip()


@tool_formatter("Grep")
def _format_grep(name: str, args: dict) -> str:
    pattern = _arg(args, "pattern", "_raw")
    path = _arg(args, "path")
    where = f" in {_basename(path)}" if path else ""
    return f'Grep "{_trunc(pattern, 80)}"{where}'


@tool_formatter("WebFetch")
def _format_web_fetch(name: str, args: dict) -> str:
    return f"WebFetch {_arg(args, 'url', '_raw')}".rstrip()


@tool_formatter("WebSearch")
def _format_web_search(name: str, args: dict) -> str:
    return f'WebSearch "{_trunc(_arg(args, "query", "_raw"), 100)}"'


@tool_formatter("Task")
def _format_task(name: str, args: dict) -> str:
    description = _arg(args, "description", "prompt", "_raw")
    return f"Task: {_trunc(description, 100)}" if description else "Task"


@tool_formatter("TodoWrite")
def _format_todo_write(name: str, args: dict) -> str:
    todos = args.get("todos")
    if isinstance(todos, list):
        done = sum(
            1 for t in todos
            if isinstance(t, dict) and t.get("status") == "completed"
        )
        return f"TodoWrite: {done}/{len(todos)} done"
    return "TodoWrite"


@tool_formatter("Skill")
def _format_skill(name: str, args: dict) -> str:
    skill = _arg(args, "skill", "name", "_raw")
    return f"Skill: {skill}" if skill else "Skill"
