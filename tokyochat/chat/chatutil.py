"""Utilities for formatting chat messages and status information."""

__all__ = ["format_timestamp",
           "format_sender",
           "format_message_heading",
           "format_elapsed",
           "format_size",
           "format_preview",
           "format_markdown",
           "create_chat_message"]

import datetime
import re
from typing import Dict, Optional

from mcpyrate import colorizer

sender_labels = {"user": "USER>",
                 "assistant": "SYSTEM>",
                 "system": "SYSTEM>"}

def _yell_if_unsupported_markup(markup):
    if markup not in ("ansi", None):
        raise ValueError(f"unknown markup kind '{markup}'; valid values: 'ansi' (*nix terminal), and the special value `None`.")

def format_timestamp(d: Optional[datetime.datetime] = None) -> str:
    """Format a wall-clock time as '[HH:MM:SS]'. Default is now."""
    if d is None:
        d = datetime.datetime.now()
    return d.strftime("[%H:%M:%S]")

def format_sender(role: str, markup: Optional[str]) -> str:
    """Format the sender label for `role`, e.g. 'USER>'.

    `role`: "user", "assistant" or "system". The assistant and system notices share a label.
    `markup`: "ansi" for terminal colors, or `None` for plain text.
    """
    _yell_if_unsupported_markup(markup)
    out = sender_labels[role]
    if markup == "ansi":
        color = colorizer.Fore.CYAN if role == "user" else colorizer.Fore.RED
        out = colorizer.colorize(out, colorizer.Style.BRIGHT, color)
    return out

def format_message_heading(role: str,
                           markup: Optional[str],
                           d: Optional[datetime.datetime] = None) -> str:
    """Format a chat message heading, e.g. '[12:34:56] USER> ', including the final space."""
    _yell_if_unsupported_markup(markup)
    timestamp = format_timestamp(d)
    if markup == "ansi":
        timestamp = colorizer.colorize(timestamp, colorizer.Style.DIM)
    return f"{timestamp} {format_sender(role, markup)} "

def format_elapsed(seconds: float) -> str:
    """Format an elapsed time as 'm:ss', e.g. 75.3 -> '1:15'."""
    seconds = int(seconds)
    minutes, seconds = divmod(seconds, 60)
    return f"{minutes}:{seconds:02d}"

_size_units = ["Bytes", "KB", "MB", "GB", "TB"]
def format_size(n_bytes: int) -> str:
    """Human-readable size, base 1024, two decimals: 0 -> '0 Bytes', 1536 -> '1.50 KB'."""
    if n_bytes == 0:
        return "0 Bytes"
    value = float(n_bytes)
    unit = 0
    while value >= 1024 and unit < len(_size_units) - 1:
        value /= 1024
        unit += 1
    return f"{value:0.2f} {_size_units[unit]}"

def format_preview(text: str, max_chars: int) -> str:
    """Truncate `text` to `max_chars` characters, adding '...' if anything was cut."""
    if len(text) <= max_chars:
        return text
    return f"{text[:max_chars]}..."

_code_span = re.compile(r"(`[^`\n]+`)")
_heading = re.compile(r"^#{1,6}\s+(.*)$", re.MULTILINE)
_bold = re.compile(r"\*\*(?=\S)(.+?)(?<=\S)\*\*")
_italic = re.compile(r"(?<![*\w])\*(?=[^\s*])(.+?)(?<=[^\s*])\*(?![*\w])")
def format_markdown(text: str, markup: Optional[str]) -> str:
    """Show the inline Markdown emphasis of `text` in a terminal.

    `markup`: "ansi" to style `# headings`, `**bold**`, `*italic*` and `` `code` ``, removing the markers,
              or `None` to return `text` unchanged.

    This is for the terminal client. The GUI renders Markdown with `DearPyGui_Markdown`.
    """
    _yell_if_unsupported_markup(markup)
    if markup is None:
        return text
    def style_prose(s: str) -> str:
        s = _heading.sub(lambda m: colorizer.colorize(m.group(1), colorizer.Style.BRIGHT), s)
        s = _bold.sub(lambda m: colorizer.colorize(m.group(1), colorizer.Style.BRIGHT), s)
        s = _italic.sub(lambda m: colorizer.colorize(m.group(1), colorizer.Fore.CYAN), s)
        return s
    parts = _code_span.split(text)  # odd indices are the code spans, with their backticks
    return "".join(colorizer.colorize(part[1:-1], colorizer.Fore.YELLOW) if k % 2 else style_prose(part)
                   for k, part in enumerate(parts))

def create_chat_message(role: str, text: str) -> Dict:
    """Create a chat message in OpenAI format, as sent to the model."""
    if role not in ("user", "assistant"):
        raise ValueError(f"Unknown role '{role}'; valid values: 'user', 'assistant'.")
    return {"role": role, "content": text}
