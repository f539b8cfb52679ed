"""Outbound rendering interface used by the renderer and bot.

Implementations deliver text to a chat and raise OutboundError on any
failure; callers decide how to fall back.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from chatbridge.shared.formatters.markup import markdown_to_html
from chatbridge.shared.formatters.text import split_message

from .errors import OutboundError
from .rate_limit import RateLimiter

logger = logging.getLogger(__name__)

# Leave room for the markup that escaping adds to each chunk.
_SPLIT_MARGIN = 200


class Outbound(ABC):
    """Deliver and edit messages in a remote chat."""

    @abstractmethod
    async def send_message(
        self, chat_id: int, text: str, *, html: bool = False
    ) -> int:
        """Send a new message and return its id."""

    @abstractmethod
    async def edit_message(
        self, chat_id: int, message_id: int, text: str, *, html: bool = False
    ) -> None: ...

    @abstractmethod
    async def delete_message(self, chat_id: int, message_id: int) -> None: ...

    @abstractmethod
    async def send_typing(self, chat_id: int) -> None: ...


async def send_long_message(
    outbound: Outbound,
    chat_id: int,
    text: str,
    *,
    limit: int,
    html: bool = True,
    limiter: RateLimiter | None = None,
) -> list[int]:
    """Send *text* as one or more messages no longer than *limit*.

    With ``html`` each chunk is sent as markup first and resent as plain
    text if the markup is rejected. Raises OutboundError when a chunk
    cannot be delivered either way.
    """
    chunk_limit = max(limit - _SPLIT_MARGIN, 1) if html else limit
    message_ids: list[int] = []
    for chunk in split_message(text, chunk_limit):
        if html:
            rendered = markdown_to_html(chunk)
            if len(rendered) <= limit:
                if limiter is not None:
                    await limiter.wait(chat_id)
                try:
                    message_ids.append(
                        await outbound.send_message(chat_id, rendered, html=True)
                    )
                    continue
                except OutboundError as exc:
                    logger.warning("HTML chunk rejected, resending plain: %s", exc)
        if limiter is not None:
            await limiter.wait(chat_id)
        message_ids.append(await outbound.send_message(chat_id, chunk[:limit]))
    return message_ids
