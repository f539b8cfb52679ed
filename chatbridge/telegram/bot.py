"""Telegram long-polling loop and command routing.

Commands:
    /help           usage
    /start [path]   bind the chat to a directory (default: project dir)
    /pwd            show the working directory
    /cd <path>      change directory, keeping the conversation
    /stop           cancel the in-flight AI request
    /clear          reset the conversation
    /availabletools tools the assistant can be offered
    /allowedtools   tools offered in this chat
    /allowed        add (+Tool) or remove (-Tool) tools for this chat

Any other text is sanitized and sent to the assistant. Documents and
photos are saved into the working directory and announced with the next
prompt; a caption is sent on as that prompt.
"""
from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import Any

from chatbridge.engine.bridge import BUSY_MESSAGE, NO_SESSION_MESSAGE, Bridge
from chatbridge.engine.config import BridgeConfig
from chatbridge.engine.continuity import DEFAULT_ALLOWED_TOOLS, DEFAULT_SYSTEM_PROMPT
from chatbridge.engine.errors import OutboundError
from chatbridge.engine.outbound import send_long_message
from chatbridge.shared.services.persistence import SessionStore
from chatbridge.shared.services.sanitize import sanitize_user_input

from .client import TelegramClient

logger = logging.getLogger(__name__)

HELP_TEXT = """\
<b>chatbridge</b>
Chat with the Claude Code AI inside a project directory.

<b>Session</b>
<code>/start &lt;path&gt;</code> — Start session at directory
<code>/start</code> — Start in the default project directory
<code>/pwd</code> — Show current working directory
<code>/cd &lt;path&gt;</code> — Change working directory
<code>/clear</code> — Clear AI conversation history
<code>/stop</code> — Stop current AI request

<b>Tools</b>
<code>/availabletools</code> — List all tools
<code>/allowedtools</code> — Show tools allowed in this chat
<code>/allowed +Tool -Tool</code> — Allow or disallow tools

<b>AI Chat</b>
Any other message is sent to the AI.
It can read, edit, and run commands in your session.
Files and photos you send are saved to the working directory.

<code>/help</code> — Show this help"""

BOT_COMMANDS: list[tuple[str, str]] = [
    ("help", "Show help"),
    ("start", "Start a session in a directory"),
    ("pwd", "Show current working directory"),
    ("cd", "Change working directory"),
    ("stop", "Stop the current AI request"),
    ("clear", "Clear AI conversation history"),
    ("availabletools", "List all tools"),
    ("allowedtools", "Show tools allowed in this chat"),
    ("allowed", "Allow (+Tool) or disallow (-Tool) tools"),
]

UPLOAD_NOTE = "[File uploaded] {path}"
ALLOWED_USAGE = "Usage: /allowed +Tool -Tool"

_HISTORY_PREFIX = {
    "user": "You",
    "assistant": "AI",
    "error": "Error",
    "system": "System",
    "tool_use": "Tool",
    "tool_result": "Result",
}


def strip_bot_mention(text: str) -> str:
    """Turn ``/cmd@botname args`` into ``/cmd args``."""
    if not text.startswith("/"):
        return text
    head, sep, rest = text.partition(" ")
    head = head.split("@", 1)[0]
    return f"{head}{sep}{rest}"


def split_command(text: str) -> tuple[str, str]:
    """Return ``(command, argument)``; command is empty for plain text."""
    if not text.startswith("/"):
        return "", text
    head, _, rest = text.partition(" ")
    return head.lower(), rest.strip()


def expand_path(raw: str) -> Path:
    return Path(os.path.expanduser(raw))


def is_within(path: Path, root: Path) -> bool:
    try:
        path.resolve().relative_to(root.resolve())
    except ValueError:
        return False
    return True


def describe_attachment(message: dict[str, Any]) -> tuple[str, str, int | None] | None:
    """Return ``(file_id, file_name, declared_size)`` for a document or photo."""
    document = message.get("document")
    if isinstance(document, dict) and document.get("file_id"):
        name = Path(str(document.get("file_name") or "")).name
        if name in ("", ".", ".."):
            name = f"document_{document.get('file_unique_id') or document['file_id']}"
        return str(document["file_id"]), name, document.get("file_size")
    photos = message.get("photo")
    if isinstance(photos, list) and photos:
        # Sizes arrive smallest first.
        largest = photos[-1]
        if isinstance(largest, dict) and largest.get("file_id"):
            unique = largest.get("file_unique_id") or largest["file_id"]
            return str(largest["file_id"]), f"photo_{unique}.jpg", largest.get("file_size")
    return None


def build_chat_system_prompt(
    current_path: str, allowed_tools: list[str] | None
) -> str:
    """System prompt for chat use: the safety preamble plus chat rules."""
    allowed = set(allowed_tools) if allowed_tools is not None else set(DEFAULT_ALLOWED_TOOLS)
    disabled = [t for t in DEFAULT_ALLOWED_TOOLS if t not in allowed]
    disabled_notice = ""
    if disabled:
        disabled_notice = (
            "\n\nDISABLED TOOLS: The following tools have been disabled by the "
            f"operator: {', '.join(disabled)}.\n"
            "You MUST NOT attempt to use these tools. If a request requires a "
            "disabled tool, do NOT proceed with the task. Instead, clearly tell "
            "the user which tool is needed and that it is currently disabled."
        )
    return (
        f"{DEFAULT_SYSTEM_PROMPT}\n\n"
        "You are chatting with a user through Telegram.\n"
        f"Current working directory: {current_path}\n\n"
        "Always keep the user informed about what you are doing. Briefly "
        'explain each step as you work (e.g. "Reading the file...", '
        '"Running tests..."). The user cannot see your tool calls, so narrate '
        "your progress.\n\n"
        "IMPORTANT: The user is on Telegram and CANNOT interact with any "
        "interactive prompts, dialogs, or confirmation requests. Tools that "
        "require user interaction (such as AskUserQuestion, EnterPlanMode, "
        "ExitPlanMode) will NOT work. If you need clarification, ask in plain "
        f"text.{disabled_notice}"
    )


class TelegramBot:
    def __init__(
        self,
        config: BridgeConfig,
        client: TelegramClient,
        *,
        project_dir: str,
        store: SessionStore | None = None,
        bridge: Bridge | None = None,
        sandbox_root: Path | None = None,
    ) -> None:
        self.config = config
        self.client = client
        self.project_dir = project_dir
        self.store = store
        self.bridge = bridge or Bridge(config, client, store=store)
        self.sandbox_root = sandbox_root or Path.home()
        self._owner_ids: set[int] = set(config.allowed_user_ids)
        self._offset: int | None = None
        self._handlers: set[asyncio.Task] = set()
        self._chat_tools: dict[int, list[str]] = {}

    # ── Access ──

    def is_authorized(self, user_id: int | None) -> bool:
        if user_id is None:
            return False
        if not self._owner_ids:
            # No configured owners: the first user to write becomes the owner.
            self._owner_ids.add(user_id)
            logger.warning("Registered user %s as bot owner", user_id)
            return True
        return user_id in self._owner_ids

    # ── Polling ──

    async def run(self) -> None:
        """Poll for updates until cancelled."""
        try:
            await self.client.set_my_commands(BOT_COMMANDS)
        except OutboundError as exc:
            logger.warning("Could not register bot commands: %s", exc)
        logger.info("Polling for Telegram updates (project=%s)", self.project_dir)
        try:
            while True:
                try:
                    updates = await self.client.get_updates(
                        self._offset, self.config.poll_timeout_seconds
                    )
                except OutboundError as exc:
                    logger.warning("getUpdates failed: %s; retrying in 5s", exc)
                    await asyncio.sleep(5)
                    continue
                for update in updates:
                    self._offset = int(update.get("update_id", 0)) + 1
                    task = asyncio.create_task(self.handle_update(update))
                    self._handlers.add(task)
                    task.add_done_callback(self._handlers.discard)
        finally:
            await self.bridge.shutdown()

    async def handle_update(self, update: dict[str, Any]) -> None:
        message = update.get("message")
        if not isinstance(message, dict):
            return
        text = message.get("text")
        chat_id = (message.get("chat") or {}).get("id")
        user_id = (message.get("from") or {}).get("id")
        has_file = bool(message.get("document") or message.get("photo"))
        if chat_id is None or not (isinstance(text, str) or has_file):
            return
        if not self.is_authorized(user_id):
            logger.warning("Ignoring message from unauthorized user %s", user_id)
            return
        try:
            if has_file:
                await self.handle_upload(int(chat_id), message)
            else:
                await self.dispatch(int(chat_id), text)
        except OutboundError as exc:
            logger.warning("Handling message in chat %s failed: %s", chat_id, exc)
        except Exception:
            logger.exception("Handler for chat %s crashed", chat_id)

    async def dispatch(self, chat_id: int, raw_text: str) -> None:
        text = strip_bot_mention(raw_text.strip())
        if not text:
            return
        command, arg = split_command(text)
        logger.info("Chat %s: %s", chat_id, command or "<prompt>")

        if command == "/stop":
            await self.bridge.stop(chat_id)
            return
        if command == "/clear":
            await self.bridge.clear(chat_id)
            return
        if command == "/help":
            await self.bridge.reply(chat_id, HELP_TEXT, html=True)
            return

        if command not in ("/start",):
            await self._auto_restore(chat_id)

        if command == "/start":
            await self.handle_start(chat_id, arg)
        elif command == "/pwd":
            await self.handle_pwd(chat_id)
        elif command == "/cd":
            await self.handle_cd(chat_id, arg)
        elif command == "/availabletools":
            await self.bridge.reply(
                chat_id, "Available tools:\n" + "\n".join(self.available_tools())
            )
        elif command == "/allowedtools":
            tools = self.allowed_tools_for(chat_id)
            await self.bridge.reply(
                chat_id, "Allowed tools:\n" + ("\n".join(tools) or "(none)")
            )
        elif command == "/allowed":
            await self.handle_allowed(chat_id, arg)
        elif command:
            await self.bridge.reply(chat_id, f"Unknown command: {command}. See /help.")
        else:
            await self.handle_prompt(chat_id, text)

    # ── Commands ──

    async def _auto_restore(self, chat_id: int) -> None:
        """Open the default project session for chats that have none."""
        if await self.bridge.session_for(chat_id) is not None:
            return
        if await self.bridge.is_busy(chat_id):
            return
        path = Path(self.project_dir)
        if path.is_dir():
            await self.bridge.open_session(chat_id, str(path.resolve()))
            logger.info("Auto-opened session for chat %s at %s", chat_id, path)

    def _validate_dir(self, raw: str) -> tuple[str | None, str | None]:
        """Return ``(canonical_path, error_message)``."""
        path = expand_path(raw)
        if not path.is_dir():
            return None, f"Error: '{path}' is not a valid directory."
        canonical = path.resolve()
        if not is_within(canonical, self.sandbox_root):
            return None, (
                f"Access denied: '{canonical}' is outside the allowed path sandbox."
            )
        return str(canonical), None

    async def handle_start(self, chat_id: int, arg: str) -> None:
        if await self.bridge.is_busy(chat_id):
            await self.bridge.reply(chat_id, BUSY_MESSAGE)
            return
        if not arg and not Path(self.project_dir).is_dir():
            await self.bridge.reply(
                chat_id,
                f"Error: default project dir is invalid: {self.project_dir}",
            )
            return
        path, error = self._validate_dir(arg or self.project_dir)
        if error is not None or path is None:
            await self.bridge.reply(chat_id, error or "Error: invalid directory.")
            return

        session, restored = await self.bridge.open_session(chat_id, path)
        if restored:
            lines = [f"Session restored at `{path}`.", ""]
            for item in session.history[-5:]:
                prefix = _HISTORY_PREFIX.get(item.type.value, "System")
                content = item.content[:200]
                suffix = "..." if len(item.content) > 200 else ""
                lines.append(f"[{prefix}] {content}{suffix}")
        else:
            lines = [f"Session started at `{path}`."]
        await send_long_message(
            self.client,
            chat_id,
            "\n".join(lines),
            limit=self.config.message_limit,
            html=False,
            limiter=self.bridge.limiter,
        )

    async def handle_pwd(self, chat_id: int) -> None:
        session = await self.bridge.session_for(chat_id)
        if session is None:
            await self.bridge.reply(chat_id, NO_SESSION_MESSAGE)
            return
        await self.bridge.reply(chat_id, session.current_path)

    async def handle_cd(self, chat_id: int, arg: str) -> None:
        session = await self.bridge.session_for(chat_id)
        if session is None:
            await self.bridge.reply(chat_id, NO_SESSION_MESSAGE)
            return
        if not arg:
            await self.bridge.reply(chat_id, f"Current: {session.current_path}")
            return
        raw = arg if os.path.isabs(expand_path(arg)) else os.path.join(
            session.current_path, arg
        )
        path, error = self._validate_dir(raw)
        if error is not None or path is None:
            await self.bridge.reply(chat_id, error or "Error: invalid directory.")
            return
        if await self.bridge.is_busy(chat_id):
            await self.bridge.reply(chat_id, BUSY_MESSAGE)
            return
        await self.bridge.change_directory(chat_id, path)
        await self.bridge.reply(chat_id, f"Changed to: {path}")

    # ── Tools ──

    def available_tools(self) -> list[str]:
        tools = list(DEFAULT_ALLOWED_TOOLS)
        for name in self.config.allowed_tools or ():
            if name not in tools:
                tools.append(name)
        return tools

    def allowed_tools_for(self, chat_id: int) -> list[str]:
        tools = self._chat_tools.get(chat_id)
        if tools is None:
            tools = self.config.allowed_tools or list(DEFAULT_ALLOWED_TOOLS)
        return list(tools)

    async def handle_allowed(self, chat_id: int, arg: str) -> None:
        """Apply ``+Tool``/``-Tool`` edits to the chat's allow-list."""
        if not arg:
            await self.bridge.reply(chat_id, ALLOWED_USAGE)
            return
        known = {name.lower(): name for name in self.available_tools()}
        tools = self.allowed_tools_for(chat_id)
        for item in arg.split():
            op, raw = item[0], item[1:]
            if op not in ("+", "-") or not raw:
                await self.bridge.reply(chat_id, ALLOWED_USAGE)
                return
            name = known.get(raw.lower())
            if name is None:
                await self.bridge.reply(
                    chat_id, f"Unknown tool: {raw}. See /availabletools."
                )
                return
            if op == "+" and name not in tools:
                tools.append(name)
            elif op == "-" and name in tools:
                tools.remove(name)
        self._chat_tools[chat_id] = tools
        logger.info("Chat %s allowed tools: %s", chat_id, ", ".join(tools) or "-")
        await self.bridge.reply(
            chat_id, "Allowed tools: " + (", ".join(tools) or "(none)")
        )

    # ── Prompts and uploads ──

    async def handle_prompt(self, chat_id: int, text: str) -> None:
        session = await self.bridge.session_for(chat_id)
        current_path = session.current_path if session is not None else self.project_dir
        tools = self.allowed_tools_for(chat_id)
        await self.bridge.submit(
            chat_id,
            sanitize_user_input(text),
            user_text=text,
            system_prompt=build_chat_system_prompt(current_path, tools),
            allowed_tools=tools,
        )

    async def handle_upload(self, chat_id: int, message: dict[str, Any]) -> None:
        """Save a document or photo into the chat's working directory.

        The saved path is announced to the assistant with the next prompt.
        A caption is sent on as that prompt straight away.
        """
        attachment = describe_attachment(message)
        if attachment is None:
            return
        await self._auto_restore(chat_id)
        session = await self.bridge.session_for(chat_id)
        if session is None:
            await self.bridge.reply(chat_id, NO_SESSION_MESSAGE)
            return

        file_id, name, declared_size = attachment
        limit = self.config.max_upload_bytes
        if declared_size is not None and declared_size > limit:
            await self.bridge.reply(
                chat_id, f"Upload rejected: {name} is larger than {limit} bytes."
            )
            return
        dest = Path(session.current_path) / name
        try:
            remote_path = await self.client.get_file_path(file_id)
            size = await self.client.download_file(remote_path, dest, max_bytes=limit)
        except (OutboundError, OSError) as exc:
            logger.warning("Upload for chat %s failed: %s", chat_id, exc)
            await self.bridge.reply(chat_id, f"Upload failed: {exc}")
            return
        await self.bridge.add_upload(chat_id, UPLOAD_NOTE.format(path=dest))
        logger.info("Saved upload for chat %s to %s (%d bytes)", chat_id, dest, size)
        await self.bridge.reply(chat_id, f"Saved: {dest} ({size} bytes)")

        caption = str(message.get("caption") or "").strip()
        if not caption:
            return
        if await self.bridge.is_busy(chat_id):
            await self.bridge.reply(chat_id, BUSY_MESSAGE)
            return
        await self.handle_prompt(chat_id, caption)
