"""Producer side of the bridge.

``StreamRunner.start()`` launches the assistant in a background task and
returns the EventChannel it feeds. The task reads stdout line by line,
normalizes each line, and forwards the events. It owns the stale-session
retry: a resume the CLI no longer recognizes is relaunched once without
``--resume``.

Every run ends in exactly one of:
  - Done (possibly preceded by Error) followed by channel close
  - Error followed by channel close, for launch failures
  - a bare channel close, when the request was cancelled
"""
from __future__ import annotations

import asyncio
import logging
import os

from .binary import binary_path
from .cancel import CancelToken, cancel as cancel_token
from .channel import EventChannel
from .config import BridgeConfig
from .continuity import build_ai_args, is_stale_session_error
from .errors import BridgeError, ProcessError, SpawnError, StaleSession
from .events import Done, Error, Init, Text
from .launcher import ProcessHandle, launch
from .models import BridgeResponse, RequestContext
from .normalizer import parse_stream_line

logger = logging.getLogger(__name__)

DISPLAY_NAME = "Claude"


async def read_line_unbounded(stream: asyncio.StreamReader) -> bytes:
    """Read a full line from *stream* with no size limit.

    A single JSONL event (a tool result with a large listing, say) can
    exceed the StreamReader buffer. On overrun, drain what is buffered
    and keep accumulating until the newline or EOF.
    """
    chunks: list[bytes] = []
    while True:
        try:
            chunk = await stream.readuntil(b"\n")
            chunks.append(chunk)
            return b"".join(chunks)
        except asyncio.LimitOverrunError as exc:
            chunk = await stream.read(exc.consumed)
            chunks.append(chunk)
        except asyncio.IncompleteReadError as exc:
            chunks.append(exc.partial)
            return b"".join(chunks)


async def _stop(handle: ProcessHandle) -> None:
    """Kill the process and reap it."""
    handle.kill()
    try:
        await asyncio.wait_for(handle.wait(), timeout=5)
    except asyncio.TimeoutError:
        logger.warning("pid %d did not exit after kill", handle.pid)


class StreamRunner:
    """Runs the assistant CLI for one request at a time per call."""

    def __init__(self, config: BridgeConfig | None = None) -> None:
        self._config = config or BridgeConfig()
        self._tasks: set[asyncio.Task] = set()

    def resolve_binary(self) -> str:
        path = binary_path(self._config.binary)
        if not path:
            raise SpawnError(
                self._config.binary or DISPLAY_NAME.lower(),
                f"{DISPLAY_NAME} CLI not found. Is {DISPLAY_NAME} CLI installed?",
            )
        return path

    def is_available(self) -> bool:
        return os.name == "posix" and binary_path(self._config.binary) is not None

    # ── Producer ──

    async def run_streaming(
        self,
        context: RequestContext,
        channel: EventChannel,
        token: CancelToken | None = None,
    ) -> None:
        """Run the request to completion, sending events into *channel*.

        Raises SpawnError, WriteError or InvalidSessionId for fatal launch
        failures. Does not close the channel.
        """
        binary = self.resolve_binary()
        session_id = context.session_id
        retried = False

        while True:
            if token is not None and token.cancelled:
                logger.info("Request cancelled before launch")
                return

            args = build_ai_args(
                session_id, bypass_permissions=self._config.bypass_permissions
            )
            run_context = context if session_id else context.without_session()
            handle = await launch(binary, args, run_context, token)
            try:
                outcome = await self._pump(handle, channel, token)
            finally:
                handle.kill()

            if outcome is None:
                return
            returncode, stderr, done_sent, last_session_id = outcome

            if returncode != 0:
                if session_id and not retried and is_stale_session_error(stderr):
                    stale = StaleSession(session_id, stderr)
                    logger.warning("%s; retrying without --resume", stale)
                    session_id = None
                    retried = True
                    continue
                error = ProcessError(DISPLAY_NAME, returncode, stderr)
                logger.warning(
                    "%s exited with code %d: %.500s",
                    DISPLAY_NAME, returncode, stderr.strip() or "<no stderr>",
                )
                channel.send(Error(str(error)))

            if not done_sent:
                channel.send(Done("", last_session_id))
            return

    async def _pump(
        self,
        handle: ProcessHandle,
        channel: EventChannel,
        token: CancelToken | None,
    ) -> tuple[int, str, bool, str | None] | None:
        """Forward one process run's stdout into *channel*.

        Returns ``(returncode, stderr, done_sent, last_session_id)``, or
        None when the run was cancelled or the receiver went away.
        """
        stderr_task = asyncio.create_task(handle.stderr.read())
        done_sent = False
        last_session_id: str | None = None
        try:
            while True:
                line = await read_line_unbounded(handle.stdout)
                if not line:
                    break
                if token is not None and token.cancelled:
                    logger.info("Cancel observed; killing pid %d", handle.pid)
                    await _stop(handle)
                    return None
                if self._config.debug_stream:
                    logger.debug("stream pid=%d: %.500s", handle.pid, line.rstrip())

                for event in parse_stream_line(line):
                    if isinstance(event, Init):
                        last_session_id = event.session_id
                    elif isinstance(event, Done):
                        if event.session_id is None:
                            event.session_id = last_session_id
                        done_sent = True
                    if not channel.send(event):
                        logger.info("Receiver dropped; stopping pid %d", handle.pid)
                        await _stop(handle)
                        return None

            if token is not None and token.cancelled:
                logger.info("Cancel observed after EOF; killing pid %d", handle.pid)
                await _stop(handle)
                return None

            returncode = await handle.wait()
            stderr = (await stderr_task).decode("utf-8", errors="replace")
            return returncode, stderr, done_sent, last_session_id
        finally:
            if not stderr_task.done():
                stderr_task.cancel()

    async def _produce(
        self,
        context: RequestContext,
        channel: EventChannel,
        token: CancelToken | None,
    ) -> None:
        try:
            await self.run_streaming(context, channel, token)
        except BridgeError as exc:
            logger.error("Request failed before streaming: %s", exc)
            channel.send(Error(str(exc)))
        except Exception as exc:
            logger.exception("Producer crashed")
            channel.send(Error(f"Internal error: {exc}"))
        finally:
            channel.close()

    # ── Public API ──

    def start(
        self, context: RequestContext, token: CancelToken | None = None
    ) -> EventChannel:
        """Begin a request and return immediately with its channel.

        Must be called from a running event loop.
        """
        channel = EventChannel()
        task = asyncio.create_task(self._produce(context, channel, token))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return channel

    @staticmethod
    def cancel(token: CancelToken) -> None:
        cancel_token(token)

    async def execute_command(
        self,
        prompt: str,
        session_id: str | None,
        working_dir: str,
        allowed_tools: list[str] | tuple[str, ...] | None = None,
        system_prompt: str | None = None,
    ) -> BridgeResponse:
        """Run a prompt to completion and collect the text response."""
        context = RequestContext(
            prompt=prompt,
            working_dir=working_dir,
            session_id=session_id,
            system_prompt=system_prompt,
            allowed_tools=tuple(allowed_tools) if allowed_tools else None,
        )
        channel = EventChannel()
        try:
            await self.run_streaming(context, channel)
        except BridgeError as exc:
            return BridgeResponse(success=False, error=str(exc))

        parts: list[str] = []
        final_session_id = session_id
        error: str | None = None
        for event in channel.drain():
            if isinstance(event, Init):
                final_session_id = event.session_id
            elif isinstance(event, Text):
                parts.append(event.content)
            elif isinstance(event, Done):
                if event.result.strip() and not "\n".join(parts).strip():
                    parts = [event.result]
                if event.session_id:
                    final_session_id = event.session_id
            elif isinstance(event, Error):
                error = event.message

        response = "\n".join(parts)
        if error is not None:
            return BridgeResponse(
                success=False,
                response=response if response.strip() else "",
                session_id=final_session_id,
                error=error,
            )
        return BridgeResponse(
            success=True, response=response.strip(), session_id=final_session_id
        )
