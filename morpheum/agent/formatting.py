"""Rendering helpers for room messages.

Command output is shown inline when small; large output is shown as a short
prefix followed by the full (capped) output so nothing is silently dropped.
"""

import html as _html
import re
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

# Room-send capability: send(text, html=None)
Sender = Callable[[str, Optional[str]], Awaitable[None]]

MAX_DIRECT_LINES = 50
MAX_DIRECT_CHARS = 5000
MAX_PREFIX_LINES = 15
MAX_PREFIX_CHARS = 1500
MAX_FULL_CHARS = 64000

TRUNCATION_NOTICE = "\n...(output truncated due to size limit)"
OUTPUT_HEADER = "📋 **Command output:**"


@dataclass(frozen=True)
class FormattedOutput:
    """The blocks a command's output is rendered into."""

    output: str
    direct: bool
    prefix: str = ""
    full: str = ""

    @property
    def truncated(self) -> bool:
        return len(self.output) > MAX_FULL_CHARS

    def render(self) -> str:
        if self.direct:
            return f"{OUTPUT_HEADER}\n\n```\n{self.output}\n```"
        notice = ""
        if len(self.prefix) < len(self.output):
            notice = f"\n...(showing first {len(self.prefix)} characters)"
        return (
            f"{OUTPUT_HEADER}\n\n"
            f"```\n{self.prefix}\n{notice}\n```\n\n"
            f"```\n{self.full}\n```"
        )


def _prefix_of(output: str, lines: list[str]) -> str:
    prefix = "\n".join(lines[:MAX_PREFIX_LINES])
    if len(prefix) > MAX_PREFIX_CHARS:
        prefix = output[:MAX_PREFIX_CHARS]
        last_newline = prefix.rfind("\n")
        # Only back up to a line boundary if little of the prefix is lost.
        if last_newline > MAX_PREFIX_CHARS * 0.8:
            prefix = prefix[:last_newline]
    return prefix


def split_command_output(output: str) -> FormattedOutput:
    lines = output.split("\n")
    if len(lines) < MAX_DIRECT_LINES and len(output) < MAX_DIRECT_CHARS:
        return FormattedOutput(output=output, direct=True)

    full = output
    if len(output) > MAX_FULL_CHARS:
        full = output[:MAX_FULL_CHARS] + TRUNCATION_NOTICE
    return FormattedOutput(output=output, direct=False, prefix=_prefix_of(output, lines), full=full)


def format_command_output(output: str) -> str:
    """Render raw command output as a markdown room message."""
    return split_command_output(output).render()


def format_command(command: str) -> str:
    """Render the command about to run, fenced when it spans lines."""
    if "\n" in command:
        return f"⚡ **Executing command:** \n```\n{command}\n```"
    return f"⚡ **Executing command:** `{command}`"


# ── Markdown ──

_MARKDOWN_PATTERNS = [
    re.compile(r"\[.+?\]\(https?://.+?\)"),  # links
    re.compile(r"```[\s\S]*?```"),  # code blocks
    re.compile(r"`[^`]+?`"),  # inline code
    re.compile(r"\*\*[^*]+?\*\*"),  # bold
    re.compile(r"__[^_]+?__"),
    re.compile(r"\*[^*]+?\*"),  # italic
    re.compile(r"_[^_]+?_"),
]


def has_markdown(text: str) -> bool:
    """Whether ``text`` uses any markdown worth rendering as HTML."""
    if re.match(r"^#{1,6}\s", text.strip()):
        return True
    return any(p.search(text) for p in _MARKDOWN_PATTERNS)


def markdown_to_html(text: str) -> str:
    """Convert chat markdown to Matrix-flavoured HTML.

    Code is pulled out into placeholders first so nothing inside it is
    reformatted; everything else is escaped before tags are added.
    """
    if not text:
        return ""

    code_blocks: list[str] = []

    def _extract_block(m: re.Match) -> str:
        code_blocks.append(m.group(1))
        return f"\x00CB{len(code_blocks) - 1}\x00"

    text = re.sub(r"```[\w-]*\n?([\s\S]*?)\n?```", _extract_block, text)

    inline: list[str] = []

    def _extract_inline(m: re.Match) -> str:
        inline.append(m.group(1))
        return f"\x00IC{len(inline) - 1}\x00"

    text = re.sub(r"`([^`\n]+)`", _extract_inline, text)
    text = _html.escape(text, quote=False)

    def _heading(m: re.Match) -> str:
        level = len(m.group(1))
        return f"<h{level}>{m.group(2)}</h{level}>"

    text = re.sub(r"^(#{1,6})\s+(.+)$", _heading, text, flags=re.MULTILINE)
    def _link(m: re.Match) -> str:
        # The URL was escaped with the rest of the text; only quotes are left.
        href = m.group(2).replace('"', "&quot;")
        return f'<a href="{href}">{m.group(1)}</a>'

    text = re.sub(r"\[([^\]]+)\]\(([^)\s]+)\)", _link, text)
    text = re.sub(r"\*\*(.+?)\*\*", r"<strong>\1</strong>", text)
    text = re.sub(r"__(.+?)__", r"<strong>\1</strong>", text)
    text = re.sub(r"(?<![\w*])\*([^*\n]+)\*(?![\w*])", r"<em>\1</em>", text)
    text = re.sub(r"(?<!\w)_([^_\n]+)_(?!\w)", r"<em>\1</em>", text)
    text = re.sub(r"~~(.+?)~~", r"<del>\1</del>", text)
    text = text.replace("\n", "<br>\n")

    for i, code in enumerate(inline):
        text = text.replace(f"\x00IC{i}\x00", f"<code>{_html.escape(code, quote=False)}</code>")
    for i, code in enumerate(code_blocks):
        text = text.replace(
            f"\x00CB{i}\x00", f"<pre><code>{_html.escape(code, quote=False)}</code></pre>"
        )
    return text


async def send_markdown(text: str, send: Sender) -> None:
    """Send ``text`` with an HTML rendering when it contains markdown."""
    if has_markdown(text):
        await send(text, markdown_to_html(text))
    else:
        await send(text, None)
