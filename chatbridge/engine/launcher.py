"""Start the assistant CLI and hand back its pipes."""
from __future__ import annotations

import asyncio
import logging
import os

from .cancel import CancelToken
from .continuity import build_full_prompt
from .errors import SpawnError, WriteError
from .models import RequestContext

logger = logging.getLogger(__name__)

# Set by the CLI in its own children; unset it so a bridge running inside
# a CLI session does not trip nested-session detection.
_NESTED_SESSION_ENV = "CLAUDECODE"


class ProcessHandle:
    """A running assistant process: stdout/stderr readers, wait and kill."""

    def __init__(self, proc: asyncio.subprocess.Process) -> None:
        self._proc = proc

    @property
    def pid(self) -> int:
        return self._proc.pid

    @property
    def stdout(self) -> asyncio.StreamReader:
        assert self._proc.stdout is not None
        return self._proc.stdout

    @property
    def stderr(self) -> asyncio.StreamReader:
        assert self._proc.stderr is not None
        return self._proc.stderr

    @property
    def returncode(self) -> int | None:
        return self._proc.returncode

    async def wait(self) -> int:
        return await self._proc.wait()

    def kill(self) -> None:
        """Kill the process. A process that already exited is ignored."""
        if self._proc.returncode is not None:
            return
        try:
            self._proc.kill()
        except ProcessLookupError:
            pass


def build_env() -> dict[str, str]:
    env = os.environ.copy()
    env.pop(_NESTED_SESSION_ENV, None)
    return env


async def launch(
    binary: str,
    args: list[str],
    context: RequestContext,
    token: CancelToken | None = None,
) -> ProcessHandle:
    """Spawn *binary* in the request's working directory and send the prompt.

    Raises SpawnError if the process cannot be started and WriteError if
    the prompt cannot be written to its stdin.
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            binary,
            *args,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=context.working_dir,
            env=build_env(),
            start_new_session=True,
            limit=1024 * 1024,
        )
    except OSError as exc:
        raise SpawnError(binary, str(exc)) from exc

    handle = ProcessHandle(proc)
    if token is not None:
        token.set_child_pid(proc.pid)
    logger.info(
        "Launched %s pid=%d cwd=%s resume=%s",
        os.path.basename(binary), proc.pid, context.working_dir,
        context.session_id or "-",
    )

    full_prompt = build_full_prompt(
        context.prompt, context.system_prompt, context.allowed_tools
    )
    assert proc.stdin is not None
    try:
        proc.stdin.write(full_prompt.encode("utf-8"))
        await proc.stdin.drain()
        proc.stdin.close()
    except (BrokenPipeError, ConnectionResetError) as exc:
        handle.kill()
        raise WriteError(proc.pid, str(exc)) from exc
    return handle
