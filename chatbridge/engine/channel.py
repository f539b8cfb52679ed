"""Unbounded single-producer single-consumer event channel.

The producer never waits on the consumer; the renderer drains whatever
is queued on each poll. Closing the sender marks the stream finished
once the queue is empty; dropping the receiver makes further sends
report failure so the producer can stop early.
"""
from __future__ import annotations

import queue

from .errors import ChannelDisconnected, ChannelEmpty
from .events import StreamEvent


class EventChannel:
    def __init__(self) -> None:
        self._queue: queue.SimpleQueue[StreamEvent] = queue.SimpleQueue()
        self._sender_closed = False
        self._receiver_dropped = False

    def send(self, event: StreamEvent) -> bool:
        """Queue *event*. Returns False once the receiver has gone away."""
        if self._receiver_dropped or self._sender_closed:
            return False
        self._queue.put(event)
        return True

    def close(self) -> None:
        """Sender side: no more events will follow."""
        self._sender_closed = True

    def drop(self) -> None:
        """Receiver side: stop accepting events."""
        self._receiver_dropped = True

    @property
    def closed(self) -> bool:
        return self._sender_closed

    @property
    def dropped(self) -> bool:
        return self._receiver_dropped

    def try_recv(self) -> StreamEvent:
        """Return the next event without waiting.

        Raises ChannelEmpty when nothing is queued yet, and
        ChannelDisconnected when the sender closed and the queue is empty.
        """
        try:
            return self._queue.get_nowait()
        except queue.Empty:
            if not self._sender_closed:
                raise ChannelEmpty() from None
        # The sender closes only after its last put, so a second look
        # after observing the close is authoritative.
        try:
            return self._queue.get_nowait()
        except queue.Empty:
            raise ChannelDisconnected() from None

    def drain(self) -> list[StreamEvent]:
        """Return every queued event without waiting."""
        events: list[StreamEvent] = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except queue.Empty:
                return events
