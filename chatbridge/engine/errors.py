"""Exception hierarchy for the streaming bridge.

Fatal launch failures (spawn, prompt delivery, bad resume id) abort a
turn. Everything else is folded into the event stream as an Error
event followed by Done.
"""
from __future__ import annotations


class BridgeError(Exception):
    """Base exception for all bridge errors."""


class SpawnError(BridgeError):
    """The assistant binary could not be resolved or started."""
    def __init__(self, binary: str, reason: str):
        self.binary = binary
        self.reason = reason
        super().__init__(f"Failed to start {binary}: {reason}")


class WriteError(BridgeError):
    """The prompt could not be delivered to the process stdin."""
    def __init__(self, pid: int | None, reason: str):
        self.pid = pid
        self.reason = reason
        super().__init__(f"Failed to write prompt to pid {pid}: {reason}")


class InvalidSessionId(BridgeError):
    """A resume session id failed format validation."""
    def __init__(self, session_id: str):
        self.session_id = session_id
        shown = session_id if len(session_id) <= 80 else session_id[:80] + "..."
        super().__init__(f"Invalid session ID format: {shown!r}")


class StaleSession(BridgeError):
    """The assistant no longer knows the session we tried to resume."""
    def __init__(self, session_id: str, stderr: str):
        self.session_id = session_id
        self.stderr = stderr
        super().__init__(f"Session {session_id} is no longer available")


class ProcessError(BridgeError):
    """The assistant process exited with a non-zero status."""
    def __init__(self, binary: str, returncode: int, stderr: str = ""):
        self.binary = binary
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(
            stderr.strip() or f"{binary} exited with code {returncode}"
        )


class OutboundError(BridgeError):
    """An outbound render call (send/edit/delete) failed."""
    def __init__(self, method: str, reason: str, status: int | None = None):
        self.method = method
        self.reason = reason
        self.status = status
        super().__init__(f"{method} failed: {reason}")


class ChannelEmpty(BridgeError):
    """No event is currently queued."""


class ChannelDisconnected(BridgeError):
    """The producer closed the channel and every event was drained."""
