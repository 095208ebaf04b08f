"""Diagnostics download for a Lutron bridge config entry.

While debug logging is enabled for at least one entry, the integration's
loggers feed a bounded in-memory buffer that ends up in the diagnostics
file. Credentials, the bridge address and anything that looks like an IPv4
address are scrubbed before export.
"""

from __future__ import annotations

import logging
import re
import socket
from collections import deque
from typing import Any

from homeassistant.config_entries import ConfigEntry
from homeassistant.core import HomeAssistant

from .const import CONF_HOST, CONF_PASSWORD, CONF_USERNAME, DOMAIN

_LOGGER = logging.getLogger(__name__)

_CAPTURE_KEY = "_debug_capture"
_CAPTURED_LOGGERS = ("custom_components.lutron_caseta_pro", "lutronpro")
_LINE_LIMIT = 5000
_CHAR_LIMIT = 512 * 1024

_IPV4 = re.compile(r"\b\d{1,3}(?:\.\d{1,3}){3}\b")
_IP_MASK = "[REDACTED_IP]"
_SECRET_MASK = "**REDACTED**"
_SECRET_FIELDS = frozenset({CONF_USERNAME, CONF_PASSWORD})
_HOST_FIELDS = frozenset({CONF_HOST})


class _RingBufferHandler(logging.Handler):
    """Formats records into a ring buffer capped by line and char count."""

    def __init__(self) -> None:
        super().__init__(logging.DEBUG)
        self.lines: deque[str] = deque()
        self.size = 0
        self.setFormatter(logging.Formatter("%(asctime)s %(name)s %(levelname)s: %(message)s"))

    def emit(self, record: logging.LogRecord) -> None:
        try:
            text = self.format(record)
        except Exception:  # noqa: BLE001
            self.handleError(record)
            return
        self.lines.append(text)
        self.size += len(text)
        while self.lines and (len(self.lines) > _LINE_LIMIT or self.size > _CHAR_LIMIT):
            self.size -= len(self.lines.popleft())


class _DebugLogCapture:
    """Attaches the ring buffer to our loggers while any entry wants it."""

    def __init__(self) -> None:
        self.handler = _RingBufferHandler()
        self.entries: set[str] = set()
        self._saved: dict[str, tuple[int, bool]] = {}

    def enable(self, entry_id: str) -> None:
        self.entries.add(entry_id)
        if self._saved:
            return
        for name in _CAPTURED_LOGGERS:
            logger = logging.getLogger(name)
            self._saved[name] = (logger.level, logger.propagate)
            logger.addHandler(self.handler)
            # already at debug: the user asked for it in the main log too
            if logger.getEffectiveLevel() > logging.DEBUG:
                logger.setLevel(logging.DEBUG)
                logger.propagate = False

    def disable(self, entry_id: str) -> None:
        self.entries.discard(entry_id)
        if not self.entries:
            self.release()

    def release(self) -> None:
        for name, (level, propagate) in self._saved.items():
            logger = logging.getLogger(name)
            logger.removeHandler(self.handler)
            logger.setLevel(level)
            logger.propagate = propagate
        self._saved.clear()


def _capture(hass: HomeAssistant) -> _DebugLogCapture:
    domain_data = hass.data.setdefault(DOMAIN, {})
    capture = domain_data.get(_CAPTURE_KEY)
    if capture is None:
        capture = domain_data[_CAPTURE_KEY] = _DebugLogCapture()
    return capture


def redact(data: Any) -> Any:
    """Mask credentials and the bridge host, and scrub IPs from strings."""

    if isinstance(data, dict):
        out: dict[Any, Any] = {}
        for key, value in data.items():
            field = str(key).lower()
            if field in _SECRET_FIELDS:
                out[key] = _SECRET_MASK
            elif field in _HOST_FIELDS:
                out[key] = _IP_MASK
            else:
                out[key] = redact(value)
        return out
    if isinstance(data, (list, tuple)):
        return type(data)(redact(item) for item in data)
    if isinstance(data, str):
        return _IPV4.sub(_IP_MASK, data)
    return data


def async_setup_diagnostics(hass: HomeAssistant) -> None:
    capture = _capture(hass)
    _LOGGER.debug("Diagnostics log capture ready (%d entries active)", len(capture.entries))


def async_enable_debug_capture(hass: HomeAssistant, entry_id: str) -> None:
    _capture(hass).enable(entry_id)


def async_disable_debug_capture(hass: HomeAssistant, entry_id: str) -> None:
    capture = hass.data.get(DOMAIN, {}).get(_CAPTURE_KEY)
    if capture is not None:
        capture.disable(entry_id)


def async_teardown_diagnostics(hass: HomeAssistant) -> None:
    """Restore logger settings once the last entry is gone."""

    capture = hass.data.get(DOMAIN, {}).pop(_CAPTURE_KEY, None)
    if capture is not None:
        capture.release()


def _scrub_log_lines(lines: list[str], host: Any) -> list[str]:
    replacements: list[tuple[re.Pattern[str], str]] = [(_IPV4, _IP_MASK)]
    if isinstance(host, str) and host:
        replacements.append((re.compile(re.escape(host), re.IGNORECASE), "[REDACTED_HOST]"))
    local_name = socket.gethostname()
    if local_name:
        replacements.append((re.compile(re.escape(local_name), re.IGNORECASE), "[REDACTED_HOSTNAME]"))

    scrubbed = []
    for line in lines:
        for pattern, mask in replacements:
            line = pattern.sub(mask, line)
        scrubbed.append(line)
    return scrubbed


def _hub_snapshot(hub: Any) -> dict[str, Any]:
    return {
        "name": hub.name,
        "host": hub.host,
        "port": hub.port,
        "debug": hub.debug,
        "connection_state": hub.connection_state.value,
        "logged_in": hub.logged_in,
        "accessories": [
            {
                "integration_id": accessory.integration_id,
                "name": accessory.name,
                "type": accessory.config.type,
                "services": [s.display_name for s in accessory.handle.services],
            }
            for accessory in hub.accessories
        ],
    }


async def async_get_config_entry_diagnostics(
    hass: HomeAssistant, entry: ConfigEntry
) -> dict[str, Any]:
    hub = hass.data.get(DOMAIN, {}).get(entry.entry_id)
    capture = _capture(hass)

    return {
        "entry": {
            "data": redact(dict(entry.data)),
            "options": redact(dict(entry.options)),
        },
        "hub": redact(_hub_snapshot(hub)) if hub is not None else {},
        "logs": _scrub_log_lines(list(capture.handler.lines), entry.data.get(CONF_HOST)),
    }
