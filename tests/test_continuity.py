"""Tests for session-id validation, CLI args and prompt assembly."""
from __future__ import annotations

import pytest

from chatbridge.engine.continuity import (
    DEFAULT_SYSTEM_PROMPT,
    build_ai_args,
    build_full_prompt,
    is_stale_session_error,
    is_valid_session_id,
    validate_session_id,
)
from chatbridge.engine.errors import InvalidSessionId


class TestSessionIdValidation:
    @pytest.mark.parametrize(
        "session_id",
        ["abc", "A-b_9", "0" * 64, "c1f0e2a4-8b7d-4c3e-9f2a-1d2e3f4a5b6c"],
    )
    def test_valid(self, session_id):
        assert is_valid_session_id(session_id)
        assert validate_session_id(session_id) == session_id

    @pytest.mark.parametrize(
        "session_id",
        ["", "0" * 65, "has space", "semi;colon", "../etc", "new\nline", "trailing\n", "ü"],
    )
    def test_invalid(self, session_id):
        assert not is_valid_session_id(session_id)
        with pytest.raises(InvalidSessionId):
            validate_session_id(session_id)


class TestBuildArgs:
    def test_fresh_run(self):
        assert build_ai_args(None) == [
            "-p", "--output-format", "stream-json", "--verbose",
            "--permission-mode", "default",
        ]

    def test_resume(self):
        args = build_ai_args("sess-1")
        assert args[-2:] == ["--resume", "sess-1"]

    def test_bypass_permissions(self):
        args = build_ai_args(None, bypass_permissions=True)
        assert "--dangerously-skip-permissions" in args
        assert "--permission-mode" not in args

    def test_invalid_resume_rejected_before_launch(self):
        with pytest.raises(InvalidSessionId, match="Invalid session ID format"):
            build_ai_args("bad id; rm -rf /")


class TestFullPrompt:
    def test_default_preamble(self):
        text = build_full_prompt("hello")
        assert text == f"SYSTEM:\n{DEFAULT_SYSTEM_PROMPT}\n\nhello"

    def test_custom_system_and_tools(self):
        text = build_full_prompt("do it", "Be brief.", ["Read", "Grep"])
        assert text == (
            "SYSTEM:\nBe brief.\n\n"
            "TOOL CONSTRAINT:\n"
            "Only use the following tools when needed: Read, Grep\n\n"
            "do it"
        )

    def test_empty_system_prompt_omits_section(self):
        assert build_full_prompt("bare", "") == "bare"

    def test_empty_tool_list_omits_constraint(self):
        assert "TOOL CONSTRAINT" not in build_full_prompt("x", "", [])


class TestStaleSession:
    def test_detects_cli_message(self):
        assert is_stale_session_error(
            "Error: No conversation found with session ID: abc-123\n"
        )

    def test_other_errors(self):
        assert not is_stale_session_error("Error: rate limited")
        assert not is_stale_session_error("")
