"""Shared fakes for renderer, bridge and bot tests."""
from __future__ import annotations

import asyncio

import pytest

from chatbridge.engine.channel import EventChannel
from chatbridge.engine.config import BridgeConfig
from chatbridge.engine.errors import OutboundError
from chatbridge.engine.outbound import Outbound


class FakeOutbound(Outbound):
    """Records every call. Add ``(method, html)`` to ``failures`` to make it raise."""

    def __init__(self) -> None:
        self.calls: list[tuple] = []
        self.failures: set[tuple[str, bool]] = set()
        self.commands: list[tuple[str, str]] | None = None
        self.files: dict[str, bytes] = {}
        self._next_id = 100

    def _check(self, method: str, html: bool = False) -> None:
        if (method, html) in self.failures:
            raise OutboundError(method, "Bad Request: rejected", 400)

    async def send_message(self, chat_id, text, *, html=False):
        self.calls.append(("send", chat_id, text, html))
        self._check("send", html)
        self._next_id += 1
        return self._next_id

    async def edit_message(self, chat_id, message_id, text, *, html=False):
        self.calls.append(("edit", chat_id, message_id, text, html))
        self._check("edit", html)

    async def delete_message(self, chat_id, message_id):
        self.calls.append(("delete", chat_id, message_id))
        self._check("delete")

    async def send_typing(self, chat_id):
        self.calls.append(("typing", chat_id))
        self._check("typing")

    async def set_my_commands(self, commands):
        self.commands = commands

    async def get_file_path(self, file_id):
        self.calls.append(("getFile", file_id))
        if file_id not in self.files:
            raise OutboundError("getFile", "Bad Request: invalid file_id", 400)
        return f"files/{file_id}"

    async def download_file(self, file_path, dest, *, max_bytes=None):
        body = self.files[file_path.split("/", 1)[1]]
        if max_bytes is not None and len(body) > max_bytes:
            raise OutboundError("download", f"file exceeds {max_bytes} bytes")
        dest.write_bytes(body)
        return len(body)

    def of(self, kind: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == kind]

    def sent_texts(self) -> list[str]:
        return [c[2] for c in self.of("send")]


class FakeRunner:
    """Stands in for StreamRunner; tests feed each request's channel by hand."""

    def __init__(self) -> None:
        self.contexts: list = []
        self.channels: list[EventChannel] = []
        self.tokens: list = []

    def start(self, context, token=None) -> EventChannel:
        channel = EventChannel()
        self.contexts.append(context)
        self.channels.append(channel)
        self.tokens.append(token)
        return channel


async def no_sleep(_delay: float) -> None:
    await asyncio.sleep(0)


@pytest.fixture
def outbound() -> FakeOutbound:
    return FakeOutbound()


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def config(tmp_path) -> BridgeConfig:
    return BridgeConfig(
        binary="claude",
        poll_interval_seconds=0.01,
        rate_limit_gap_seconds=0.0,
        sessions_dir=str(tmp_path / "sessions"),
    )
