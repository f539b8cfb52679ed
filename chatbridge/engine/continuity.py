"""Session continuity: resume ids, CLI arguments, and prompt assembly.

The assistant's own session store can expire independently of ours.
A resume against a forgotten id fails with a recognizable stderr line;
``is_stale_session_error`` detects it so the runner can retry once
without ``--resume``. The match is a plain substring check on the
CLI's English error text and will need updating if that text changes.
"""
from __future__ import annotations

import re
from collections.abc import Sequence

from .errors import InvalidSessionId

MAX_SESSION_ID_LENGTH = 64
_SESSION_ID_RE = re.compile(r"[A-Za-z0-9_-]+")
_STALE_SESSION_SIGNATURE = "no conversation found"

DEFAULT_ALLOWED_TOOLS: tuple[str, ...] = (
    "Bash",
    "Read",
    "Edit",
    "Write",
    "Glob",
    "Grep",
    "Task",
    "TaskOutput",
    "TaskStop",
    "WebFetch",
    "WebSearch",
    "NotebookEdit",
    "Skill",
    "TaskCreate",
    "TaskGet",
    "TaskUpdate",
    "TaskList",
)

DEFAULT_SYSTEM_PROMPT = """You are a terminal coding assistant running through Claude Code CLI.
Be concise. Focus on practical, safe, non-interactive execution.
Respond in the same language as the user.

SECURITY RULES (MUST FOLLOW):
- NEVER execute destructive commands like rm -rf, format, mkfs, dd, etc.
- NEVER modify system files in /etc, /sys, /proc, /boot
- NEVER execute commands that could harm the system or compromise security
- If a request seems dangerous, explain the risk and suggest a safer alternative

BASH EXECUTION RULES (MUST FOLLOW):
- All commands MUST run non-interactively without user input
- Use -y, --yes, or --non-interactive flags where applicable
- Use -m flag for commit messages (e.g. git commit -m "message")
- Disable pagers with --no-pager or pipe to cat
- NEVER use commands that open editors (vim, nano, etc.)
- NEVER use commands that wait for stdin without arguments
- NEVER use interactive flags like -i"""


def is_valid_session_id(session_id: str) -> bool:
    """Non-empty, at most 64 chars, alphanumerics plus ``-`` and ``_``."""
    return (
        bool(session_id)
        and len(session_id) <= MAX_SESSION_ID_LENGTH
        and _SESSION_ID_RE.fullmatch(session_id) is not None
    )


def validate_session_id(session_id: str) -> str:
    if not is_valid_session_id(session_id):
        raise InvalidSessionId(session_id)
    return session_id


def build_ai_args(
    session_id: str | None, *, bypass_permissions: bool = False
) -> list[str]:
    """Build CLI arguments for one streaming run.

    Raises InvalidSessionId before anything reaches the process.
    """
    args = ["-p", "--output-format", "stream-json", "--verbose"]
    if bypass_permissions:
        args.append("--dangerously-skip-permissions")
    else:
        args.extend(["--permission-mode", "default"])
    if session_id is not None:
        args.extend(["--resume", validate_session_id(session_id)])
    return args


def build_full_prompt(
    prompt: str,
    system_prompt: str | None = None,
    allowed_tools: Sequence[str] | None = None,
) -> str:
    sections: list[str] = []
    system = DEFAULT_SYSTEM_PROMPT if system_prompt is None else system_prompt
    if system:
        sections.append(f"SYSTEM:\n{system}")
    if allowed_tools:
        sections.append(
            "TOOL CONSTRAINT:\n"
            "Only use the following tools when needed: "
            + ", ".join(allowed_tools)
        )
    sections.append(prompt)
    return "\n\n".join(sections)


def is_stale_session_error(stderr: str) -> bool:
    return _STALE_SESSION_SIGNATURE in stderr.lower()
