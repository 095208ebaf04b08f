"""Classify bridge lines into typed protocol messages.

Parsing is pure and total: every input maps to exactly one
:class:`MessageKind` and nothing in here raises for malformed input. A
``~DEVICE`` report that does not carry an integration id, component and
action degrades to :attr:`MessageKind.OTHER`.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from .protocol_const import (
    COMMAND_PREFIXES,
    LOGIN_PROMPT,
    MONITOR_SIGIL,
    PASSWORD_PROMPT,
    READY_PROMPT,
)


class MessageKind(Enum):
    LOGIN_PROMPT = "login_prompt"
    PASSWORD_PROMPT = "password_prompt"
    READY_PROMPT = "ready_prompt"
    MONITOR = "monitor"
    COMMAND_ECHO = "command_echo"
    OTHER = "other"


@dataclass(frozen=True, slots=True)
class MonitorMessage:
    """A parsed ``~DEVICE`` report."""

    integration_id: str
    component: str
    action: str
    extra: Tuple[str, ...] = ()

    @property
    def args(self) -> List[str]:
        """Fields after the integration id, as handed to an accessory."""
        return [self.component, self.action, *self.extra]


@dataclass(frozen=True, slots=True)
class ParsedLine:
    kind: MessageKind
    text: str
    monitor: Optional[MonitorMessage] = field(default=None)


_PROMPTS = (
    (LOGIN_PROMPT, MessageKind.LOGIN_PROMPT),
    (PASSWORD_PROMPT, MessageKind.PASSWORD_PROMPT),
    (READY_PROMPT, MessageKind.READY_PROMPT),
)


def _parse_monitor(body: str) -> Optional[MonitorMessage]:
    parts = [p.strip() for p in body.split(",")]
    if len(parts) < 4 or parts[0] != MONITOR_SIGIL:
        return None
    integration_id, component, action = parts[1], parts[2], parts[3]
    if not integration_id.isdecimal() or not component or not action:
        return None
    # canonical str(int) form, same as registry keys
    return MonitorMessage(str(int(integration_id)), component, action, tuple(parts[4:]))


def is_prompt(text: str) -> bool:
    """True when an unterminated tail is one of the bridge prompts."""

    stripped = text.strip().lower()
    return any(stripped == prompt.lower() for prompt, _ in _PROMPTS)


def parse_line(line: str) -> ParsedLine:
    body = line.strip()

    # monitoring output may share a line with a trailing shell prompt
    while body.startswith(READY_PROMPT) and body != READY_PROMPT:
        body = body[len(READY_PROMPT):].lstrip()

    for prompt, kind in _PROMPTS:
        if body.lower() == prompt.lower():
            return ParsedLine(kind, line)

    if body.startswith(MONITOR_SIGIL):
        monitor = _parse_monitor(body)
        if monitor is not None:
            return ParsedLine(MessageKind.MONITOR, line, monitor)
        return ParsedLine(MessageKind.OTHER, line)

    if body.startswith(COMMAND_PREFIXES):
        return ParsedLine(MessageKind.COMMAND_ECHO, line)

    return ParsedLine(MessageKind.OTHER, line)


__all__ = [
    "MessageKind",
    "MonitorMessage",
    "ParsedLine",
    "is_prompt",
    "parse_line",
]
