"""
IM command parser and message formatting.

Parses commands from operator messages:
- /y, /yes, /approve and /n, /no, /deny
- /select <N>
- /target <id> <text> (alias /pane)
- /prompt <text>
- /status, /screenshot, /sessions
- /help
Anything not starting with "/" is free text.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence, Tuple

from ...contracts.v1 import NotifyEvent
from ...kernel.targets import Target
from .adapters.base import MAX_MESSAGE_LENGTH, utf16_len

CONTEXT_MAX_LINES = 20
STATUS_CAPTURE_LINES = 50

EXPIRED_TEXT = "Message expired. Please send it again."
NOTHING_WAITING_TEXT = "Nothing is waiting for input."

# Inline keyboard callback data.
CB_SELECT = "sel"
CB_STATUS = "st"
CB_STATUS_ALL = "__all__"


class CommandType(str, Enum):
    # Replies to a waiting pane
    APPROVE = "approve"
    DENY = "deny"
    SELECT = "select"

    # Direct injection
    TARGET = "target"
    PROMPT = "prompt"

    # Views
    STATUS = "status"
    SCREENSHOT = "screenshot"
    SESSIONS = "sessions"

    # Help
    HELP = "help"

    # Slash command we don't know
    UNKNOWN = "unknown"

    # Not a command - free text
    MESSAGE = "message"


@dataclass
class ParsedCommand:
    """Result of parsing an IM message."""

    type: CommandType
    text: str  # Original text, or everything after the command name
    args: List[str] = field(default_factory=list)
    name: str = ""


_COMMANDS = {
    "y": CommandType.APPROVE,
    "yes": CommandType.APPROVE,
    "approve": CommandType.APPROVE,
    "n": CommandType.DENY,
    "no": CommandType.DENY,
    "deny": CommandType.DENY,
    "select": CommandType.SELECT,
    "target": CommandType.TARGET,
    "pane": CommandType.TARGET,
    "prompt": CommandType.PROMPT,
    "status": CommandType.STATUS,
    "screenshot": CommandType.SCREENSHOT,
    "sessions": CommandType.SESSIONS,
    "list-sessions": CommandType.SESSIONS,
    "list_sessions": CommandType.SESSIONS,
    "help": CommandType.HELP,
    "start": CommandType.HELP,
}

# Support "@BotName /command" and "/command@BotName".
_CMD_RE = re.compile(r"^(?:@\S+\s+)?/([\w-]+)(?:@\S+)?(?:\s+(.*))?$", re.IGNORECASE | re.DOTALL)


def parse_message(text: str) -> ParsedCommand:
    """
    Parse an IM message into a command or free text.

    Examples:
        "/y" -> CommandType.APPROVE
        "/select 2" -> CommandType.SELECT with args=["2"]
        "/target %3 run the tests" -> CommandType.TARGET with text="%3 run the tests"
        "looks good, continue" -> CommandType.MESSAGE
    """
    text = (text or "").strip()
    if not text:
        return ParsedCommand(type=CommandType.MESSAGE, text="")

    m = _CMD_RE.match(text)
    if m:
        name = m.group(1).lower()
        rest = (m.group(2) or "").strip()
        return ParsedCommand(
            type=_COMMANDS.get(name, CommandType.UNKNOWN),
            text=rest,
            args=rest.split() if rest else [],
            name=name,
        )
    if text.startswith("/"):
        return ParsedCommand(type=CommandType.UNKNOWN, text=text, name=text[1:].split(" ", 1)[0].lower())

    return ParsedCommand(type=CommandType.MESSAGE, text=text)


def split_target_args(text: str) -> Optional[Tuple[str, str]]:
    """"%3 some text" -> ("%3", "some text"); None when either part is missing."""
    target_id, _, rest = (text or "").strip().partition(" ")
    rest = rest.strip()
    if not target_id or not rest:
        return None
    return target_id, rest


def format_help() -> str:
    """Generate help text for IM commands."""
    return """Commands:
  /y or /yes - approve permission
  /n or /no - deny permission
  /select <N> - select numbered option
  /prompt <text> - send new prompt to Claude
  /target <id> <text> - send to a specific pane (alias /pane)
  /status - view terminal output
  /screenshot - terminal output as a file
  /sessions - list tmux sessions
  /help - show this help

Plain text answers the waiting prompt, or starts a new one."""


def format_unknown_command() -> str:
    return "Unknown command. Available commands:\n" + format_help().split("\n", 1)[1]


def escape_html(text: str) -> str:
    """Escape text for Telegram HTML parse mode."""
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def trim_context(context: str, max_lines: int = CONTEXT_MAX_LINES) -> str:
    lines = context.split("\n")
    return "\n".join(lines[-max_lines:]).strip()


_HEADERS = {
    "permission": "Permission Request",
    "question": "Claude is asking:",
    "stop": "Claude finished",
    "generic": "Claude Code Notification",
}

_HINTS = {
    "permission": "/y to approve | /n to deny",
    "question": "Reply /select N or type your answer",
    "stop": "Send next prompt or /status for full view",
}


def _render_event(event: NotifyEvent, context: str) -> str:
    category = event.category
    parts: List[str] = [f"<b>{_HEADERS[category]}</b>", ""]
    if event.title:
        parts.append(escape_html(event.title))
    if event.message:
        parts.append(escape_html(event.message))

    if context:
        parts.extend(["", "<pre>", escape_html(context), "</pre>"])

    hint = _HINTS.get(category)
    if hint:
        parts.extend(["", hint])

    meta: List[str] = []
    if event.project:
        meta.append(f"Project: {escape_html(event.project)}")
    if event.tmux_session:
        meta.append(f"Session: {escape_html(event.tmux_session)}")
    if event.tmux_pane:
        meta.append(f"Pane: {escape_html(event.tmux_pane)}")
    if meta:
        parts.extend(["", f"<i>{' | '.join(meta)}</i>"])

    return "\n".join(parts)


def format_event(event: NotifyEvent) -> str:
    """Render an event as a Telegram HTML message.

    Oldest context lines are dropped until the message fits in one Telegram
    message, so the `<pre>` block is never split.
    """
    context = trim_context(event.terminal_context or "")
    lines = context.split("\n") if context else []
    while True:
        text = _render_event(event, "\n".join(lines))
        if not lines or utf16_len(text) <= MAX_MESSAGE_LENGTH:
            return text
        lines = lines[1:]


def target_label(target: Target) -> str:
    if target.project:
        return f"{target.project} ({target.session}) [{target.target_id}]"
    return f"{target.session} [{target.target_id}]"


def pre_blocks(header: str, content: str, limit: int = MAX_MESSAGE_LENGTH) -> List[str]:
    """
    Render `header` + `<pre>content</pre>` as one or more complete HTML messages.

    The raw text is split by lines before escaping, so no tag or entity spans two
    messages and each message fits within `limit` UTF-16 units.
    """
    budget = max(1, limit - utf16_len(header) - len("\n<pre></pre>"))
    # escaping grows a character to at most 5 units ("&" -> "&amp;")
    piece_chars = max(1, budget // 5)

    bodies: List[str] = []
    current: List[str] = []
    size = 0
    for line in content.split("\n"):
        escaped = escape_html(line)
        if utf16_len(escaped) <= budget:
            pieces = [escaped]
        else:
            pieces = [escape_html(line[i : i + piece_chars]) for i in range(0, len(line), piece_chars)]
        for piece in pieces:
            added = utf16_len(piece) + (1 if current else 0)
            if current and size + added > budget:
                bodies.append("\n".join(current))
                current, size = [], 0
                added = utf16_len(piece)
            current.append(piece)
            size += added
    bodies.append("\n".join(current))
    return [f"{header}\n<pre>{body}</pre>" for body in bodies]


def format_pane_capture(target: Target, content: str) -> List[str]:
    label = target.project or target.session
    header = f"<b>{escape_html(label)} ({escape_html(target.session)}) [{escape_html(target.target_id)}]:</b>"
    return pre_blocks(header, content)


def format_sessions(raw: str) -> List[str]:
    return pre_blocks("<b>Active tmux sessions:</b>", raw)


def format_waiting_list(targets: Sequence[Target]) -> str:
    lines = ["Multiple panes are waiting for input:"]
    lines.extend(f"  {target_label(t)}" for t in targets)
    lines.append("")
    lines.append("Choose one below, or use /target <id> <text>.")
    return "\n".join(lines)


def no_sessions_text(prefix: str) -> str:
    return f"No {prefix}* tmux sessions found."


def select_callback(token: str, target_id: str) -> str:
    return f"{CB_SELECT}:{token}:{target_id}"


def status_callback(target_id: str) -> str:
    return f"{CB_STATUS}:{target_id}"


def parse_callback(data: str) -> Tuple[str, List[str]]:
    """"sel:ab12:%3" -> ("sel", ["ab12", "%3"])."""
    kind, _, rest = (data or "").partition(":")
    if kind == CB_SELECT:
        token, _, target_id = rest.partition(":")
        return kind, [token, target_id]
    return kind, [rest] if rest else []
