"""Tests for per-chat request orchestration: busy rejection, /stop, /clear."""
from __future__ import annotations

import asyncio

import pytest

from chatbridge.engine.bridge import (
    BUSY_MESSAGE,
    CLEARED_MESSAGE,
    NO_SESSION_MESSAGE,
    NOTHING_TO_STOP_MESSAGE,
    PLACEHOLDER,
    STOPPING_MESSAGE,
    Bridge,
)
from chatbridge.engine.events import Done, Init, Text
from chatbridge.engine.models import ChatSession
from chatbridge.shared.services.persistence import SessionStore

CHAT = 7


@pytest.fixture
def bridge(config, outbound, runner):
    return Bridge(config, outbound, runner=runner)


class TestSessions:
    @pytest.mark.asyncio
    async def test_open_new_session(self, bridge):
        session, restored = await bridge.open_session(CHAT, "/work")
        assert not restored
        assert session.current_path == "/work"
        assert await bridge.session_for(CHAT) is session

    @pytest.mark.asyncio
    async def test_open_restores_stored_session(self, config, outbound, runner, tmp_path):
        store = SessionStore(tmp_path / "s")
        saved = ChatSession(current_path="/work", session_id="abc")
        saved.add_user("hi")
        saved.add_assistant("hello")
        store.save(saved)

        bridge = Bridge(config, outbound, runner=runner, store=store)
        session, restored = await bridge.open_session(CHAT, "/work")
        assert restored
        assert session.session_id == "abc"
        assert [h.content for h in session.history] == ["hi", "hello"]

    @pytest.mark.asyncio
    async def test_change_directory_keeps_conversation(self, bridge):
        session, _ = await bridge.open_session(CHAT, "/work")
        session.session_id = "keep"
        assert await bridge.change_directory(CHAT, "/other")
        assert session.current_path == "/other"
        assert session.session_id == "keep"
        assert not await bridge.change_directory(99, "/x")


class TestSubmit:
    @pytest.mark.asyncio
    async def test_requires_session(self, bridge, outbound):
        assert not await bridge.submit(CHAT, "hello")
        assert outbound.sent_texts() == [NO_SESSION_MESSAGE]
        assert not await bridge.is_busy(CHAT)

    @pytest.mark.asyncio
    async def test_full_request(self, bridge, outbound, runner):
        await bridge.open_session(CHAT, "/work")
        assert await bridge.submit(CHAT, "sanitized", user_text="raw")
        assert outbound.sent_texts() == [PLACEHOLDER]
        assert await bridge.is_busy(CHAT)

        context = runner.contexts[0]
        assert context.prompt == "sanitized"
        assert context.working_dir == "/work"
        assert context.session_id is None

        channel = runner.channels[0]
        channel.send(Init("s1"))
        channel.send(Text("answer"))
        channel.send(Done("", "s1"))
        channel.close()
        await bridge.wait_idle(CHAT)

        assert not await bridge.is_busy(CHAT)
        session = await bridge.session_for(CHAT)
        assert session.session_id == "s1"
        assert [h.content for h in session.history] == ["raw", "answer"]
        assert outbound.of("edit")[-1][3] == "answer"

    @pytest.mark.asyncio
    async def test_second_request_is_rejected_while_busy(self, bridge, outbound, runner):
        await bridge.open_session(CHAT, "/work")
        assert await bridge.submit(CHAT, "one")
        assert not await bridge.submit(CHAT, "two")
        assert outbound.sent_texts() == [PLACEHOLDER, BUSY_MESSAGE]
        assert len(runner.contexts) == 1

        runner.channels[0].close()
        await bridge.wait_idle(CHAT)
        assert await bridge.submit(CHAT, "three")
        assert len(runner.contexts) == 2
        runner.channels[1].close()
        await bridge.wait_idle(CHAT)

    @pytest.mark.asyncio
    async def test_resume_and_uploads(self, bridge, runner):
        session, _ = await bridge.open_session(CHAT, "/work")
        session.session_id = "prev"
        assert await bridge.add_upload(CHAT, "[File uploaded] /work/a.txt")
        assert not await bridge.add_upload(99, "[File uploaded] /x")

        await bridge.submit(CHAT, "look at it")
        context = runner.contexts[0]
        assert context.session_id == "prev"
        assert context.prompt == "[File uploaded] /work/a.txt\n\nlook at it"
        assert session.pending_uploads == []
        runner.channels[0].close()
        await bridge.wait_idle(CHAT)

    @pytest.mark.asyncio
    async def test_placeholder_failure_releases_slot(self, bridge, outbound):
        await bridge.open_session(CHAT, "/work")
        outbound.failures.add(("send", False))
        assert not await bridge.submit(CHAT, "hello")
        assert not await bridge.is_busy(CHAT)

    @pytest.mark.asyncio
    async def test_other_chats_are_independent(self, bridge, runner):
        await bridge.open_session(1, "/a")
        await bridge.open_session(2, "/b")
        assert await bridge.submit(1, "x")
        assert await bridge.submit(2, "y")
        for channel in runner.channels:
            channel.close()
        await bridge.wait_idle(1)
        await bridge.wait_idle(2)


class TestStop:
    @pytest.mark.asyncio
    async def test_nothing_to_stop(self, bridge, outbound):
        assert not await bridge.stop(CHAT)
        assert outbound.sent_texts() == [NOTHING_TO_STOP_MESSAGE]

    @pytest.mark.asyncio
    async def test_stop_in_flight_request(self, bridge, outbound, runner):
        await bridge.open_session(CHAT, "/work")
        await bridge.submit(CHAT, "long job")
        runner.channels[0].send(Text("working"))

        assert await bridge.stop(CHAT)
        assert runner.tokens[0].cancelled
        await bridge.wait_idle(CHAT)

        assert STOPPING_MESSAGE in outbound.sent_texts()
        final = outbound.of("edit")[-1][3]
        assert final.endswith("[Stopped]")
        # Placeholder is message 101, "Stopping..." is 102.
        assert outbound.of("delete") == [("delete", CHAT, 102)]
        assert not await bridge.is_busy(CHAT)

    @pytest.mark.asyncio
    async def test_second_stop_is_silent(self, bridge, outbound, runner):
        await bridge.open_session(CHAT, "/work")
        await bridge.submit(CHAT, "job")
        token = runner.tokens[0]
        token.mark_cancelled()
        assert not await bridge.stop(CHAT)
        assert STOPPING_MESSAGE not in outbound.sent_texts()
        await bridge.wait_idle(CHAT)


class TestClear:
    @pytest.mark.asyncio
    async def test_clear_idle_session(self, bridge, outbound):
        session, _ = await bridge.open_session(CHAT, "/work")
        session.session_id = "s1"
        session.add_user("hi")
        await bridge.clear(CHAT)
        assert session.session_id is None
        assert session.history == []
        assert outbound.sent_texts()[-1] == CLEARED_MESSAGE

    @pytest.mark.asyncio
    async def test_clear_during_request_wins_over_finalize(self, bridge, outbound, runner):
        session, _ = await bridge.open_session(CHAT, "/work")
        session.session_id = "before"
        await bridge.submit(CHAT, "job")
        runner.channels[0].send(Init("after"))

        await bridge.clear(CHAT)
        assert runner.tokens[0].cancelled
        assert not await bridge.is_busy(CHAT)
        await bridge.wait_idle(CHAT)

        assert session.session_id is None
        assert session.history == []

        # The next prompt starts a fresh conversation.
        assert await bridge.submit(CHAT, "again")
        assert runner.contexts[1].session_id is None
        runner.channels[1].send(Done("ok", "fresh"))
        runner.channels[1].close()
        await bridge.wait_idle(CHAT)
        assert session.session_id == "fresh"

    @pytest.mark.asyncio
    async def test_prompt_right_after_clear_keeps_old_turn_out(self, bridge, runner):
        session, _ = await bridge.open_session(CHAT, "/work")
        await bridge.submit(CHAT, "job")
        first = list(bridge._tasks[CHAT])
        runner.channels[0].send(Init("old"))

        await bridge.clear(CHAT)
        assert await bridge.submit(CHAT, "again")
        assert runner.contexts[1].session_id is None

        # Both renderers are live until the cleared one winds down.
        await asyncio.gather(*first)
        assert session.history == []
        assert session.session_id is None
        assert await bridge.is_busy(CHAT)

        runner.channels[1].send(Done("ok", "fresh"))
        runner.channels[1].close()
        await bridge.wait_idle(CHAT)
        assert session.session_id == "fresh"
        assert [h.content for h in session.history] == ["again", "ok"]


@pytest.mark.asyncio
async def test_shutdown_cancels_everything(bridge, runner):
    await bridge.open_session(1, "/a")
    await bridge.open_session(2, "/b")
    await bridge.submit(1, "x")
    await bridge.submit(2, "y")
    await asyncio.wait_for(bridge.shutdown(), timeout=5)
    assert all(token.cancelled for token in runner.tokens)
    assert not await bridge.is_busy(1)
    assert not await bridge.is_busy(2)
