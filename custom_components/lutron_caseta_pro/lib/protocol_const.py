"""Common protocol constants for the Lutron integration (telnet) protocol."""

from __future__ import annotations

from enum import Enum
from typing import Dict, Tuple

DEFAULT_PORT = 23
DEFAULT_USERNAME = "lutron"
DEFAULT_PASSWORD = "integration"

# Outbound lines are CRLF terminated; inbound lines end in LF (CR optional)
LINE_TERMINATOR = "\r\n"

# Prompts are sent without a terminator
LOGIN_PROMPT = "login:"
PASSWORD_PROMPT = "password:"
READY_PROMPT = "GNET>"

# ~DEVICE,<integration id>,<component>,<action>
MONITOR_SIGIL = "~DEVICE"
COMMAND_PREFIXES = ("#", "?")


class ButtonEvent(str, Enum):
    """Logical button actions raised on a remote's sub-component."""

    PRESS = "press"
    RELEASE = "release"
    HOLD = "hold"
    DOUBLE_TAP = "double_tap"


ACTION_PRESS = "3"
ACTION_RELEASE = "4"
ACTION_HOLD = "5"
ACTION_DOUBLE_TAP = "6"

BUTTON_EVENT_BY_ACTION: Dict[str, ButtonEvent] = {
    ACTION_PRESS: ButtonEvent.PRESS,
    ACTION_RELEASE: ButtonEvent.RELEASE,
    ACTION_HOLD: ButtonEvent.HOLD,
    ACTION_DOUBLE_TAP: ButtonEvent.DOUBLE_TAP,
}

# Pico component numbers per remote kind, in display order
KIND_PICO_REMOTE = "PICO-REMOTE"
KIND_PICO_2B = "PICO-2B"
KIND_PICO_2BRL = "PICO-2BRL"
KIND_PICO_3B = "PICO-3B"
KIND_PICO_3BRL = "PICO-3BRL"
KIND_PICO_4B = "PICO-4B"

BUTTON_LAYOUTS: Dict[str, Tuple[str, ...]] = {
    KIND_PICO_REMOTE: ("2", "4"),
    KIND_PICO_2B: ("2", "4"),
    KIND_PICO_2BRL: ("2", "4", "5", "6"),
    KIND_PICO_3B: ("2", "3", "4"),
    KIND_PICO_3BRL: ("2", "3", "4", "5", "6"),
    KIND_PICO_4B: ("8", "9", "10", "11"),
}

ACCESSORY_KINDS = tuple(BUTTON_LAYOUTS)


def service_name(component: str) -> str:
    return f"Switch {component}"


__all__ = [
    "ACCESSORY_KINDS",
    "ACTION_DOUBLE_TAP",
    "ACTION_HOLD",
    "ACTION_PRESS",
    "ACTION_RELEASE",
    "BUTTON_EVENT_BY_ACTION",
    "BUTTON_LAYOUTS",
    "ButtonEvent",
    "COMMAND_PREFIXES",
    "DEFAULT_PASSWORD",
    "DEFAULT_PORT",
    "DEFAULT_USERNAME",
    "KIND_PICO_2B",
    "KIND_PICO_2BRL",
    "KIND_PICO_3B",
    "KIND_PICO_3BRL",
    "KIND_PICO_4B",
    "KIND_PICO_REMOTE",
    "LINE_TERMINATOR",
    "LOGIN_PROMPT",
    "MONITOR_SIGIL",
    "PASSWORD_PROMPT",
    "READY_PROMPT",
    "service_name",
]
