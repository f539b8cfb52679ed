"""Per-chat mutable state shared by every request.

One asyncio.Lock guards all of it. Callers hold the lock only for short
synchronous sections and never across an outbound call or a sleep.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

from .cancel import CancelToken
from .models import ChatSession


@dataclass
class SharedState:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    sessions: dict[int, ChatSession] = field(default_factory=dict)
    cancel_tokens: dict[int, CancelToken] = field(default_factory=dict)
    stop_message_ids: dict[int, int] = field(default_factory=dict)
    api_timestamps: dict[int, float] = field(default_factory=dict)

    async def try_begin(self, chat_id: int, token: CancelToken) -> bool:
        """Register *token* as the chat's in-flight request.

        Returns False when the chat already has one.
        """
        async with self.lock:
            if chat_id in self.cancel_tokens:
                return False
            self.cancel_tokens[chat_id] = token
            return True

    async def finish(self, chat_id: int, token: CancelToken) -> int | None:
        """Drop *token* and return any pending "Stopping..." message id.

        A no-op when the chat's slot already belongs to another request.
        """
        async with self.lock:
            if self.cancel_tokens.get(chat_id) is not token:
                return None
            del self.cancel_tokens[chat_id]
            return self.stop_message_ids.pop(chat_id, None)

    async def token_for(self, chat_id: int) -> CancelToken | None:
        async with self.lock:
            return self.cancel_tokens.get(chat_id)

    async def is_busy(self, chat_id: int) -> bool:
        async with self.lock:
            return chat_id in self.cancel_tokens

    async def attach_stop_message(
        self, chat_id: int, token: CancelToken, message_id: int
    ) -> bool:
        """Remember the "Stopping..." message while *token* is in flight."""
        async with self.lock:
            if self.cancel_tokens.get(chat_id) is not token:
                return False
            self.stop_message_ids[chat_id] = message_id
            return True
