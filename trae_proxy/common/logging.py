"""Utilities for structured, pretty logging of chat requests and completions."""

import os
import re
import uuid
from typing import Any, Dict

from flask import Request
from rich.console import Console, Group
from rich.markdown import Markdown
from rich.padding import Padding
from rich.panel import Panel

# Global console instance for consistent logging across modules
console = Console()
ROLE_COLORS = {
    "system": "yellow",
    "user": "cyan",
    "assistant": "light_green",
}
SENSITIVE_HEADERS = {
    "authorization",
    "proxy-authorization",
    "x-api-key",
    "api-key",
    "x-ide-token",
}


def should_redact() -> bool:
    """Return True if sensitive values should be redacted in logs."""
    # Set LOG_REDACT=false to disable redaction (default True)
    return os.environ.get("LOG_REDACT", "true").strip().lower() not in {
        "0",
        "false",
        "no",
    }


def redact_value(value: str) -> str:
    """Mask a potentially sensitive value for safer logging."""
    if not value:
        return value
    if len(value) <= 8:
        return "..."
    return value[:4] + "…" + value[-4:]


def redact_headers(headers: Dict[str, str]) -> Dict[str, str]:
    """Return a copy of headers with sensitive values redacted when enabled."""
    if not should_redact():
        return dict(headers)
    return {
        k: redact_value(v) if k.lower() in SENSITIVE_HEADERS else v
        for k, v in headers.items()
    }


def escape_tags(text: str) -> str:
    """Escapes xml-like tags in text so that they are visible when rendered as Markdown."""
    return re.sub(
        "(<[^<\n]+?)(>)", "\\1>`\n", re.sub("(<)([^>\n]+?>)", "\n`<\\2", text)
    ).replace(">`\n\n\n`<", ">`\n\n`<")


def _flatten_for_display(content: Any) -> str:
    if isinstance(content, list):
        return "\n".join(
            str(part.get("text", "")) if isinstance(part, dict) else str(part)
            for part in content
        )
    return str(content or "")


def create_message_panel(msg: Dict[str, Any], idx: int, total: int) -> Panel:
    """Create a Rich Panel for displaying a message.

    Args:
        msg: Message object with 'role' and 'content'
        idx: Current message index (1-based)
        total: Total number of messages

    Returns:
        A Rich Panel object ready to be printed
    """
    role = str(msg.get("role", ""))
    body = Padding(
        Markdown(escape_tags(_flatten_for_display(msg.get("content")))),
        (1, 0),
    )
    return Panel(
        Group(body),
        title=f"[italic]{idx}/{total}[/italic] [bold]<{role}>[/bold]",
        title_align="left",
        subtitle=f"[bold]</{role}>[/bold]",
        subtitle_align="right",
        border_style=ROLE_COLORS.get(role, "red"),
    )


def log_request(req: Request) -> str:
    """Pretty-print an inbound chat request and return its log id.

    Headers are redacted; each message gets its own panel.
    """
    request_id = uuid.uuid4().hex[:8]
    payload = req.get_json(silent=True)
    if not isinstance(payload, dict):
        payload = {}

    console.rule(f"[bold]Request #{request_id}[/bold] {req.method} {req.path}")
    console.print_json(
        data={k: v for k, v in payload.items() if k != "messages"}, indent=None
    )
    console.print_json(data=redact_headers(dict(req.headers.items())), indent=None)

    messages = [m for m in payload.get("messages") or [] if isinstance(m, dict)]
    for idx, msg in enumerate(messages, start=1):
        console.print(create_message_panel(msg, idx, len(messages)))

    return request_id
