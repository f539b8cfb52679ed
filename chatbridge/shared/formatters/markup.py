"""Convert assistant markdown into Telegram's HTML subset.

Telegram accepts only a handful of tags (b, i, s, code, pre, a) and
rejects messages with unbalanced markup, so every tag emitted here is
closed, and an unterminated code fence runs to the end of the text.
"""
from __future__ import annotations

import html
import re

_FENCE_RE = re.compile(r"^```[ \t]*([\w+#.-]*)[ \t]*$")
_INLINE_CODE_RE = re.compile(r"`([^`\n]+)`")
_LINK_RE = re.compile(r"\[([^\]\n]+)\]\((https?://[^)\s]+)\)")
_BOLD_RE = re.compile(r"\*\*(?=\S)(.+?)(?<=\S)\*\*|__(?=\S)(.+?)(?<=\S)__")
_ITALIC_RE = re.compile(
    r"(?<![\w*])\*(?=\S)([^*\n]+?)(?<=\S)\*(?![\w*])"
    r"|(?<![\w_])_(?=\S)([^_\n]+?)(?<=\S)_(?![\w_])"
)
_STRIKE_RE = re.compile(r"~~(?=\S)(.+?)(?<=\S)~~")
_HEADING_RE = re.compile(r"^#{1,6}\s+(.+?)\s*#*\s*$")
_PLACEHOLDER = "\x00{}\x00"
_PLACEHOLDER_RE = re.compile("\x00(\\d+)\x00")


def escape(text: str) -> str:
    return html.escape(text, quote=False)


def _inline(line: str) -> str:
    """Render inline markup for one line outside code blocks."""
    stash: list[str] = []

    def keep(fragment: str) -> str:
        stash.append(fragment)
        return _PLACEHOLDER.format(len(stash) - 1)

    line = _INLINE_CODE_RE.sub(
        lambda m: keep(f"<code>{escape(m.group(1))}</code>"), line
    )
    line = _LINK_RE.sub(
        lambda m: keep(
            f'<a href="{html.escape(m.group(2), quote=True)}">'
            f"{escape(m.group(1))}</a>"
        ),
        line,
    )
    line = escape(line)
    line = _BOLD_RE.sub(lambda m: f"<b>{m.group(1) or m.group(2)}</b>", line)
    line = _STRIKE_RE.sub(lambda m: f"<s>{m.group(1)}</s>", line)
    line = _ITALIC_RE.sub(lambda m: f"<i>{m.group(1) or m.group(2)}</i>", line)
    return _PLACEHOLDER_RE.sub(lambda m: stash[int(m.group(1))], line)


def markdown_to_html(text: str) -> str:
    out: list[str] = []
    code: list[str] | None = None
    language = ""

    for line in text.split("\n"):
        fence = _FENCE_RE.match(line.strip())
        if code is None:
            if fence:
                code = []
                language = fence.group(1)
                continue
            heading = _HEADING_RE.match(line)
            if heading:
                out.append(f"<b>{_inline(heading.group(1))}</b>")
            else:
                out.append(_inline(line))
        else:
            if fence and not fence.group(1):
                out.append(_pre(code, language))
                code = None
                continue
            code.append(line)

    if code is not None:
        out.append(_pre(code, language))
    return "\n".join(out)


def _pre(lines: list[str], language: str) -> str:
    body = escape("\n".join(lines))
    if language:
        return f'<pre><code class="language-{escape(language)}">{body}</code></pre>'
    return f"<pre>{body}</pre>"
