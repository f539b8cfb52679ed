"""Tests for chatbridge.shared.formatters: tool summaries, text helpers, markup."""

import json

import pytest

from chatbridge.shared.formatters.markup import markdown_to_html
from chatbridge.shared.formatters.text import (
    normalize_empty_lines,
    split_message,
    truncate_str,
)
from chatbridge.shared.formatters.tool_call import (
    _normalize_tool_name,
    format_tool_input,
    parse_args,
)


# ── parse_args tests ──


class TestParseArgs:
    def test_valid_json_dict(self):
        args = json.dumps({"file_path": "/foo/bar.py", "command": "ls"})
        assert parse_args(args) == {"file_path": "/foo/bar.py", "command": "ls"}

    def test_python_repr_dict(self):
        args = "{'file_path': '/foo/bar.py', 'old_string': 'hello'}"
        assert parse_args(args) == {"file_path": "/foo/bar.py", "old_string": "hello"}

    def test_garbage_input(self):
        assert parse_args("not valid at all {{{") == {"_raw": "not valid at all {{{"}

    def test_empty_string(self):
        assert parse_args("") == {}

    def test_json_array_falls_back(self):
        assert parse_args(json.dumps([1, 2, 3])) == {"_raw": "[1, 2, 3]"}


# ── Tool summaries ──


class TestFormatToolInput:
    def test_bash(self):
        assert format_tool_input("Bash", json.dumps({"command": "ls -la"})) == "Bash: ls -la"

    def test_bash_raw_command(self):
        # Codex command_execution items carry the command line itself.
        assert format_tool_input("Bash", "git status") == "Bash: git status"

    def test_bash_multiline_is_one_line(self):
        summary = format_tool_input("Bash", json.dumps({"command": "cd x\nmake"}))
        assert "\n" not in summary
        assert summary == "Bash: cd x make"

    def test_read_short_path_and_range(self):
        args = json.dumps(
            {"file_path": "/home/u/proj/src/app.py", "offset": 10, "limit": 20}
        )
        assert format_tool_input("Read", args) == "Read src/app.py (lines 10-30)"

    def test_edit_and_write(self):
        args = json.dumps({"file_path": "/a/b/c.txt", "old_string": "x"})
        assert format_tool_input("Edit", args) == "Edit b/c.txt"
        assert format_tool_input("Write", json.dumps({"file_path": "c.txt"})) == "Write c.txt"

    def test_grep_with_path(self):
        args = json.dumps({"pattern": "TODO", "path": "/repo/src/pkg"})
        assert format_tool_input("Grep", args) == 'Grep "TODO" in src/pkg'

    def test_glob(self):
        assert format_tool_input("Glob", json.dumps({"pattern": "**/*.py"})) == "Glob **/*.py"

    def test_web_tools(self):
        assert (
            format_tool_input("WebFetch", json.dumps({"url": "https://example.com"}))
            == "WebFetch https://example.com"
        )
        assert (
            format_tool_input("WebSearch", json.dumps({"query": "asyncio"}))
            == 'WebSearch "asyncio"'
        )

    def test_todo_write_counts(self):
        todos = [{"status": "completed"}, {"status": "pending"}, {"status": "completed"}]
        assert format_tool_input("TodoWrite", json.dumps({"todos": todos})) == (
            "TodoWrite: 2/3 done"
        )

    def test_mcp_prefixed_alias(self):
        args = json.dumps({"path": "/x/y/z.md"})
        assert format_tool_input("mcp__files__read_file", args) == "Read y/z.md"

    def test_unknown_tool(self):
        assert format_tool_input("Frobnicate", json.dumps({"x": 1})) == 'Frobnicate: {"x": 1}'
        assert format_tool_input("Frobnicate", "") == "Frobnicate"

    def test_summary_is_capped(self):
        summary = format_tool_input("Task", json.dumps({"description": "d" * 500}))
        assert len(summary) <= 200
        summary = format_tool_input("Mystery", "z" * 500)
        assert len(summary) <= 200

    @pytest.mark.parametrize(
        "name,expected",
        [
            ("bash", "Bash"),
            ("run_shell_command", "Bash"),
            ("mcp__srv__edit_file", "Edit"),
            ("CustomTool", "CustomTool"),
        ],
    )
    def test_normalize_tool_name(self, name, expected):
        assert _normalize_tool_name(name) == expected


# ── Text helpers ──


class TestTruncate:
    def test_short_text_untouched(self):
        assert truncate_str("hello", 10) == "hello"

    def test_cut_is_marked_and_bounded(self):
        assert truncate_str("hello world", 8) == "hello..."

    def test_tiny_limit(self):
        assert truncate_str("abcdef", 2) == "ab"


class TestNormalizeEmptyLines:
    def test_collapses_blank_runs(self):
        assert normalize_empty_lines("\n\na\n\n\n\nb\n\n") == "a\n\nb"

    def test_single_blank_line_kept(self):
        assert normalize_empty_lines("a\n\nb") == "a\n\nb"

    def test_whitespace_only_lines_count_as_blank(self):
        assert normalize_empty_lines("a\n  \n\t\n\nb") == "a\n\nb"


class TestSplitMessage:
    def test_short_text_is_one_chunk(self):
        assert split_message("hi", 10) == ["hi"]

    def test_breaks_on_lines(self):
        text = "\n".join(f"line {i}" for i in range(40))
        chunks = split_message(text, 50)
        assert len(chunks) > 1
        assert all(len(c) <= 50 for c in chunks)
        assert "\n".join(chunks) == text

    def test_hard_wraps_long_lines(self):
        text = "x" * 250
        chunks = split_message(text, 100)
        assert all(len(c) <= 100 for c in chunks)
        assert "".join(chunks) == text

    def test_code_fences_are_balanced_per_chunk(self):
        code = "\n".join(f"    statement_{i}()" for i in range(30))
        text = f"intro\n```python\n{code}\n```\nafter"
        chunks = split_message(text, 120)
        assert len(chunks) > 2
        for chunk in chunks:
            assert len(chunk) <= 120
            fences = [ln for ln in chunk.split("\n") if ln.strip().startswith("```")]
            assert len(fences) % 2 == 0
        assert chunks[1].startswith("```python")
        assert chunks[-1].endswith("after")


# ── Markup ──


class TestMarkdownToHtml:
    def test_escapes_html(self):
        assert markdown_to_html("a < b & c > d") == "a &lt; b &amp; c &gt; d"

    def test_inline_styles(self):
        assert markdown_to_html("**bold** and *it* and ~~gone~~") == (
            "<b>bold</b> and <i>it</i> and <s>gone</s>"
        )

    def test_inline_code_is_not_styled(self):
        assert markdown_to_html("run `a**b**<c>`") == "run <code>a**b**&lt;c&gt;</code>"

    def test_snake_case_is_not_italic(self):
        assert markdown_to_html("call snake_case_name()") == "call snake_case_name()"

    def test_link(self):
        assert markdown_to_html("[docs](https://x.io/a?b=1&c=2)") == (
            '<a href="https://x.io/a?b=1&amp;c=2">docs</a>'
        )

    def test_heading(self):
        assert markdown_to_html("## Summary") == "<b>Summary</b>"

    def test_fenced_code_with_language(self):
        text = "before\n```python\nif x < 1:\n    **y**\n```\nafter"
        assert markdown_to_html(text) == (
            "before\n"
            '<pre><code class="language-python">if x &lt; 1:\n    **y**</code></pre>\n'
            "after"
        )

    def test_unclosed_fence_runs_to_end(self):
        assert markdown_to_html("```\npartial <out>") == "<pre>partial &lt;out&gt;</pre>"
