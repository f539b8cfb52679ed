"""Cooperative cancellation with a forceful kill.

A CancelToken is shared by the producer, which publishes the child pid,
and whoever wants the request stopped. The flag is checked between
lines; SIGTERM to the child unblocks a pending read with EOF.
"""
from __future__ import annotations

import logging
import os
import signal
import threading

logger = logging.getLogger(__name__)


def terminate(pid: int) -> bool:
    """Send SIGTERM to *pid*.

    Returns False when the process is already gone. Raises
    NotImplementedError on hosts without POSIX signals.
    """
    if os.name != "posix":
        raise NotImplementedError(
            f"terminate(pid) is not supported on platform {os.name!r}"
        )
    try:
        os.kill(pid, signal.SIGTERM)
    except ProcessLookupError:
        return False
    except PermissionError:
        logger.warning("Not permitted to signal pid %d", pid)
        return False
    return True


class CancelToken:
    """Cancellation flag plus the pid of the process to kill."""

    def __init__(self) -> None:
        self._cancelled = threading.Event()
        self._pid_lock = threading.Lock()
        self._child_pid: int | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def child_pid(self) -> int | None:
        with self._pid_lock:
            return self._child_pid

    def set_child_pid(self, pid: int | None) -> None:
        with self._pid_lock:
            self._child_pid = pid

    def mark_cancelled(self) -> None:
        self._cancelled.set()

    def kill_child(self) -> bool:
        """SIGTERM the recorded child, if any. Safe to call repeatedly."""
        pid = self.child_pid
        if pid is None:
            return False
        try:
            return terminate(pid)
        except NotImplementedError as exc:
            logger.warning("Cannot signal pid %d: %s", pid, exc)
            return False

    def __repr__(self) -> str:
        return f"CancelToken(cancelled={self.cancelled}, child_pid={self.child_pid})"


def cancel(token: CancelToken) -> None:
    """Request cooperative termination of the request owning *token*."""
    token.mark_cancelled()
    if token.kill_child():
        logger.info("Sent SIGTERM to pid %s", token.child_pid)
