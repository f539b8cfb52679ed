"""Per-chat request orchestration.

The Bridge accepts prompts, enforces one in-flight request per chat,
and wires a StreamRunner producer to a StreamRenderer consumer. /stop
and /clear go through it as well so they can see the in-flight token.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING

from .cancel import CancelToken, cancel
from .config import BridgeConfig
from .errors import OutboundError
from .models import ChatSession, RequestContext
from .outbound import Outbound
from .rate_limit import RateLimiter
from .renderer import StreamRenderer
from .runner import StreamRunner
from .state import SharedState

if TYPE_CHECKING:
    from chatbridge.shared.services.persistence import SessionStore

logger = logging.getLogger(__name__)

BUSY_MESSAGE = "AI request in progress. Use /stop to cancel."
NO_SESSION_MESSAGE = "No active session. Use /start <path> first."
NOTHING_TO_STOP_MESSAGE = "No active request to stop."
STOPPING_MESSAGE = "Stopping..."
CLEARED_MESSAGE = "Session cleared."
PLACEHOLDER = "..."


class Bridge:
    def __init__(
        self,
        config: BridgeConfig,
        outbound: Outbound,
        *,
        store: SessionStore | None = None,
        runner: StreamRunner | None = None,
        state: SharedState | None = None,
        limiter: RateLimiter | None = None,
    ) -> None:
        self.config = config
        self.outbound = outbound
        self.store = store
        self.runner = runner or StreamRunner(config)
        self.state = state or SharedState()
        self.limiter = limiter or RateLimiter(
            config.rate_limit_gap_seconds,
            lock=self.state.lock,
            timestamps=self.state.api_timestamps,
        )
        self._tasks: dict[int, set[asyncio.Task]] = {}

    async def reply(self, chat_id: int, text: str, *, html: bool = False) -> int | None:
        """Send a short rate-limited message, logging delivery failures."""
        await self.limiter.wait(chat_id)
        try:
            return await self.outbound.send_message(chat_id, text, html=html)
        except OutboundError as exc:
            logger.warning("Reply to chat %s failed: %s", chat_id, exc)
            return None

    # ── Sessions ──

    async def session_for(self, chat_id: int) -> ChatSession | None:
        async with self.state.lock:
            return self.state.sessions.get(chat_id)

    async def open_session(self, chat_id: int, path: str) -> tuple[ChatSession, bool]:
        """Bind *chat_id* to *path*, restoring a stored session if one exists.

        Returns the session and whether it was restored.
        """
        restored = self.store.load_for_path(path) if self.store else None
        async with self.state.lock:
            session = self.state.sessions.get(chat_id)
            if session is None:
                session = ChatSession(current_path=path)
                self.state.sessions[chat_id] = session
            session.current_path = path
            session.generation += 1
            if restored is not None:
                session.session_id = restored.session_id
                session.history = list(restored.history)
            else:
                session.session_id = None
                session.history.clear()
        return session, restored is not None

    async def change_directory(self, chat_id: int, path: str) -> bool:
        """Move the chat's working directory, keeping its conversation."""
        async with self.state.lock:
            session = self.state.sessions.get(chat_id)
            if session is None:
                return False
            session.current_path = path
            return True

    async def add_upload(self, chat_id: int, note: str) -> bool:
        """Queue *note* to be prepended to the chat's next prompt."""
        async with self.state.lock:
            session = self.state.sessions.get(chat_id)
            if session is None:
                return False
            session.pending_uploads.append(note)
            return True

    # ── Requests ──

    async def is_busy(self, chat_id: int) -> bool:
        return await self.state.is_busy(chat_id)

    async def submit(
        self,
        chat_id: int,
        prompt: str,
        *,
        user_text: str | None = None,
        system_prompt: str | None = None,
        allowed_tools: Sequence[str] | None = None,
    ) -> bool:
        """Start a request for *chat_id*. Returns False if it was rejected."""
        token = CancelToken()
        if not await self.state.try_begin(chat_id, token):
            await self.reply(chat_id, BUSY_MESSAGE)
            return False

        async with self.state.lock:
            session = self.state.sessions.get(chat_id)
            if session is not None:
                generation = session.generation
                resume_id = session.session_id
                working_dir = session.current_path
                uploads = list(session.pending_uploads)
                session.pending_uploads.clear()

        if session is None:
            await self.state.finish(chat_id, token)
            await self.reply(chat_id, NO_SESSION_MESSAGE)
            return False

        placeholder_id = await self.reply(chat_id, PLACEHOLDER)
        if placeholder_id is None:
            await self.state.finish(chat_id, token)
            return False

        if uploads:
            prompt = "\n".join(uploads) + "\n\n" + prompt
        tools = allowed_tools if allowed_tools is not None else self.config.allowed_tools
        context = RequestContext(
            prompt=prompt,
            working_dir=working_dir,
            session_id=resume_id,
            system_prompt=system_prompt,
            allowed_tools=tuple(tools) if tools else None,
        )
        channel = self.runner.start(context, token)
        renderer = StreamRenderer(
            chat_id=chat_id,
            message_id=placeholder_id,
            user_text=user_text if user_text is not None else prompt,
            channel=channel,
            token=token,
            state=self.state,
            outbound=self.outbound,
            limiter=self.limiter,
            store=self.store,
            generation=generation,
            poll_interval=self.config.poll_interval_seconds,
            message_limit=self.config.message_limit,
        )
        task = asyncio.create_task(renderer.run())
        self._tasks.setdefault(chat_id, set()).add(task)
        task.add_done_callback(lambda t, cid=chat_id: self._forget_task(cid, t))
        logger.info(
            "Started request for chat %s in %s (resume=%s)",
            chat_id, working_dir, resume_id or "-",
        )
        return True

    def _forget_task(self, chat_id: int, task: asyncio.Task) -> None:
        tasks = self._tasks.get(chat_id)
        if tasks is not None:
            tasks.discard(task)
            if not tasks:
                del self._tasks[chat_id]
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "Renderer for chat %s crashed", chat_id, exc_info=task.exception()
            )

    async def wait_idle(self, chat_id: int) -> None:
        """Wait for every renderer task of the chat to finish."""
        tasks = list(self._tasks.get(chat_id, ()))
        if tasks:
            await asyncio.shield(asyncio.gather(*tasks))

    async def stop(self, chat_id: int) -> bool:
        """Cancel the chat's in-flight request. Returns True if one was signalled."""
        token = await self.state.token_for(chat_id)
        if token is None:
            await self.reply(chat_id, NOTHING_TO_STOP_MESSAGE)
            return False
        if token.cancelled:
            return False

        message_id = await self.reply(chat_id, STOPPING_MESSAGE)
        if message_id is not None and not await self.state.attach_stop_message(
            chat_id, token, message_id
        ):
            # The request finished while we were replying.
            await self.limiter.wait(chat_id)
            try:
                await self.outbound.delete_message(chat_id, message_id)
            except OutboundError as exc:
                logger.debug("Could not delete stale stop message: %s", exc)
        cancel(token)
        logger.info("Cancel requested for chat %s", chat_id)
        return True

    async def clear(self, chat_id: int) -> None:
        """Reset the conversation, cancelling any in-flight request."""
        async with self.state.lock:
            token = self.state.cancel_tokens.pop(chat_id, None)
            self.state.stop_message_ids.pop(chat_id, None)
            session = self.state.sessions.get(chat_id)
            if session is not None:
                session.reset()
        if token is not None:
            cancel(token)
            logger.info("Cancelled in-flight request for chat %s on clear", chat_id)
        await self.reply(chat_id, CLEARED_MESSAGE)

    async def shutdown(self) -> None:
        """Cancel every in-flight request and wait for renderers to finish."""
        async with self.state.lock:
            tokens = list(self.state.cancel_tokens.values())
        for token in tokens:
            cancel(token)
        tasks = [task for group in self._tasks.values() for task in group]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
