"""Consumer side of the bridge: fold events into a live chat message.

One StreamRenderer runs per request in its own task. Every poll it
drains the channel, rebuilds the display text with a spinner, and edits
the placeholder message when the text changed (or sends a typing action
when it did not). The loop ends on Done, Error, channel disconnect or
cancellation, and then finalizes exactly once:

    completed   final text (or "(No response)") replaces the placeholder,
                split across messages when it is too long
    errored     "Error: ..." rendered the same way
    cancelled   partial text suffixed with "[Stopped]"

Rendering falls back from HTML to plain text to a truncated plain edit.
History is written once, and not at all when the chat was cleared while
the request was in flight.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from chatbridge.shared.formatters.markup import markdown_to_html
from chatbridge.shared.formatters.text import normalize_empty_lines, truncate_str
from chatbridge.shared.formatters.tool_call import format_tool_input

from .cancel import CancelToken
from .channel import EventChannel
from .config import TELEGRAM_MESSAGE_LIMIT
from .errors import BridgeError, ChannelDisconnected, ChannelEmpty, OutboundError
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
from .lifecycle import validate_transition
from .models import ChatSession, LoopState, RenderState
from .outbound import Outbound, send_long_message
from .rate_limit import RateLimiter
from .state import SharedState

if TYPE_CHECKING:
    from chatbridge.shared.services.persistence import SessionStore

logger = logging.getLogger(__name__)

SPINNER_FRAMES: tuple[str, ...] = (
    "🕐 P",
    "🕑 Pr",
    "🕒 Pro",
    "🕓 Proc",
    "🕔 Proce",
    "🕕 Proces",
    "🕖 Process",
    "🕗 Processi",
    "🕘 Processin",
    "🕙 Processing",
    "🕚 Processing.",
    "🕛 Processing..",
)
STOPPED_MARKER = "[Stopped]"
NO_RESPONSE = "(No response)"
TOOL_ERROR_MAX = 500
TOOL_OUTPUT_MAX = 300
# Space kept free for the spinner line below the streamed text.
_SPINNER_RESERVE = 20


def fold_event(render: RenderState, event: StreamEvent) -> None:
    """Apply one event to *render*."""
    if isinstance(event, Text):
        render.text += event.content
    elif isinstance(event, ToolUse):
        summary = format_tool_input(event.name, event.input)
        logger.info("Tool use: %s", summary)
        render.text += f"\n\n⚙️ {summary}\n"
    elif isinstance(event, ToolResult):
        if event.is_error:
            shown = truncate_str(event.content, TOOL_ERROR_MAX)
            if "\n" in shown:
                render.text += f"\n❌\n```\n{shown}\n```\n"
            else:
                render.text += f"\n❌ `{shown}`\n\n"
        elif event.content:
            shown = truncate_str(event.content, TOOL_OUTPUT_MAX)
            if "\n" in shown:
                render.text += f"\n```\n{shown}\n```\n"
            else:
                render.text += f"\n✅ `{shown}`\n\n"
    elif isinstance(event, TaskNotification):
        if event.summary:
            render.text += f"\n[Task: {event.summary}]\n"
    elif isinstance(event, Init):
        render.session_id = event.session_id
    elif isinstance(event, Done):
        if event.result and not render.text:
            render.text = event.result
        if event.session_id:
            render.session_id = event.session_id
        render.done = True
    elif isinstance(event, Error):
        render.text = f"Error: {event.message}"
        render.errored = True
        render.done = True


class StreamRenderer:
    """Drive one request's placeholder message to its final state."""

    def __init__(
        self,
        *,
        chat_id: int,
        message_id: int,
        user_text: str,
        channel: EventChannel,
        token: CancelToken,
        state: SharedState,
        outbound: Outbound,
        limiter: RateLimiter,
        store: SessionStore | None = None,
        generation: int = 0,
        poll_interval: float = 3.0,
        message_limit: int = TELEGRAM_MESSAGE_LIMIT,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.chat_id = chat_id
        self.message_id = message_id
        self.user_text = user_text
        self.channel = channel
        self.token = token
        self.render = RenderState()
        self._state = state
        self._outbound = outbound
        self._limiter = limiter
        self._store = store
        self._generation = generation
        self._poll_interval = poll_interval
        self._limit = message_limit
        self._sleep = sleep
        self._finalized = False

    # ── Loop ──

    async def run(self) -> LoopState:
        render = self.render
        try:
            while not render.done:
                if self.token.cancelled:
                    render.cancelled = True
                    break
                await self._sleep(self._poll_interval)
                if self.token.cancelled:
                    render.cancelled = True
                    break
                self.drain()
                if render.done:
                    break
                await self._render_progress()
        except Exception as exc:
            logger.exception("Renderer loop for chat %s failed", self.chat_id)
            fold_event(render, Error(str(exc) or type(exc).__name__))
        finally:
            self.channel.drop()
        await self.finalize()
        return render.state

    def drain(self) -> None:
        """Fold every queued event; stop early on a terminal one."""
        render = self.render
        while not render.done:
            try:
                event = self.channel.try_recv()
            except ChannelEmpty:
                return
            except ChannelDisconnected:
                render.done = True
                return
            fold_event(render, event)

    def display_text(self) -> str:
        render = self.render
        indicator = SPINNER_FRAMES[render.spinner_index % len(SPINNER_FRAMES)]
        render.spinner_index += 1
        if not render.text:
            return indicator
        body = truncate_str(
            normalize_empty_lines(render.text), self._limit - _SPINNER_RESERVE
        )
        return f"{body}\n\n{indicator}"

    async def _render_progress(self) -> None:
        display = self.display_text()
        if display != self.render.last_rendered:
            await self._limiter.wait(self.chat_id)
            try:
                await self._outbound.edit_message(
                    self.chat_id, self.message_id, markdown_to_html(display), html=True
                )
            except OutboundError as exc:
                logger.debug("Progress edit failed for chat %s: %s", self.chat_id, exc)
            self.render.last_rendered = display
        else:
            await self._limiter.wait(self.chat_id)
            try:
                await self._outbound.send_typing(self.chat_id)
            except OutboundError as exc:
                logger.debug("Typing action failed for chat %s: %s", self.chat_id, exc)

    # ── Finalization ──

    async def finalize(self) -> bool:
        """Render the terminal message and record history, once.

        Returns False when the request was already finalized.
        """
        if self._finalized:
            return False
        self._finalized = True

        render = self.render
        if render.cancelled and not render.done:
            target = LoopState.CANCELLING
        elif render.errored:
            target = LoopState.ERRORING
        else:
            target = LoopState.COMPLETING
        self._transition(target)

        stop_message_id = await self._state.finish(self.chat_id, self.token)

        if target is LoopState.CANCELLING:
            self.token.kill_child()
            partial = normalize_empty_lines(render.text)
            final_text = (
                f"{partial}\n\n{STOPPED_MARKER}" if partial.strip() else STOPPED_MARKER
            )
        else:
            final_text = normalize_empty_lines(render.text) or NO_RESPONSE

        await self._deliver_final(final_text)
        if stop_message_id is not None:
            await self._delete_quietly(stop_message_id)

        await self._record_history(final_text)
        self._transition(LoopState.FINALIZED)
        logger.info(
            "Request for chat %s finished as %s (%d chars)",
            self.chat_id, target.value, len(final_text),
        )
        return True

    def _transition(self, target: LoopState) -> None:
        validate_transition(self.render.state, target)
        self.render.state = target

    async def _deliver_final(self, text: str) -> None:
        html = markdown_to_html(text)
        if len(html) <= self._limit:
            await self._limiter.wait(self.chat_id)
            try:
                await self._outbound.edit_message(
                    self.chat_id, self.message_id, html, html=True
                )
                return
            except OutboundError as exc:
                logger.warning("Final HTML edit failed, retrying plain: %s", exc)
            if len(text) <= self._limit:
                await self._limiter.wait(self.chat_id)
                try:
                    await self._outbound.edit_message(
                        self.chat_id, self.message_id, text
                    )
                    return
                except OutboundError as exc:
                    logger.warning("Final plain edit failed: %s", exc)
        else:
            try:
                await send_long_message(
                    self._outbound,
                    self.chat_id,
                    text,
                    limit=self._limit,
                    html=True,
                    limiter=self._limiter,
                )
            except OutboundError as exc:
                logger.warning("Split delivery failed: %s", exc)
            else:
                await self._delete_quietly(self.message_id)
                return

        await self._limiter.wait(self.chat_id)
        try:
            await self._outbound.edit_message(
                self.chat_id, self.message_id, truncate_str(text, self._limit)
            )
        except OutboundError as exc:
            logger.error(
                "Could not render final message for chat %s: %s", self.chat_id, exc
            )

    async def _delete_quietly(self, message_id: int) -> None:
        await self._limiter.wait(self.chat_id)
        try:
            await self._outbound.delete_message(self.chat_id, message_id)
        except OutboundError as exc:
            logger.debug("Delete of message %s failed: %s", message_id, exc)

    async def _record_history(self, final_text: str) -> None:
        superseded: str | None = None
        async with self._state.lock:
            session = self._state.sessions.get(self.chat_id)
            if session is None or session.generation != self._generation:
                logger.info(
                    "Chat %s was reset during the request; skipping history",
                    self.chat_id,
                )
                return
            new_id = self.render.session_id
            if new_id and new_id != session.session_id:
                superseded = session.session_id
                session.session_id = new_id
            session.add_user(self.user_text)
            session.add_assistant(final_text)
            snapshot = ChatSession.from_dict(session.to_dict())

        if self._store is None:
            return
        try:
            if superseded:
                self._store.delete(superseded)
            self._store.save(snapshot)
        except (OSError, BridgeError) as exc:
            logger.warning("Failed to persist session for chat %s: %s", self.chat_id, exc)
