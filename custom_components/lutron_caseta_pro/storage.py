from __future__ import annotations

import logging
from typing import Any, Iterable

from homeassistant.core import HomeAssistant
from homeassistant.helpers.storage import Store

from .const import DOMAIN
from .lib.accessory import AccessoryHandle

_LOGGER = logging.getLogger(__name__)

ACCESSORY_CACHE_STORE_VERSION = 1
ACCESSORY_CACHE_STORE_MINOR_VERSION = 1


class AccessoryCacheStore:
    """Persist accessory handles (context and services) per config entry."""

    def __init__(self, hass: HomeAssistant) -> None:
        self._store: Store[dict[str, Any]] = Store(
            hass,
            ACCESSORY_CACHE_STORE_VERSION,
            f"{DOMAIN}.accessories",
            minor_version=ACCESSORY_CACHE_STORE_MINOR_VERSION,
        )
        self._data: dict[str, Any] = {"entries": {}}

    async def async_load(self) -> None:
        loaded = await self._store.async_load()
        if isinstance(loaded, dict) and isinstance(loaded.get("entries"), dict):
            self._data = loaded

    def get_handles(self, entry_id: str) -> list[AccessoryHandle]:
        raw = self._data.setdefault("entries", {}).get(entry_id)
        if not isinstance(raw, list):
            return []

        handles: list[AccessoryHandle] = []
        for item in raw:
            if not isinstance(item, dict) or "uuid" not in item:
                _LOGGER.debug("Skipping malformed cached accessory: %s", item)
                continue
            handles.append(AccessoryHandle.from_dict(item))
        return handles

    async def async_save_handles(
        self, entry_id: str, handles: Iterable[AccessoryHandle]
    ) -> None:
        self._data.setdefault("entries", {})[entry_id] = [h.as_dict() for h in handles]
        await self._store.async_save(self._data)

    async def async_remove_entry(self, entry_id: str) -> None:
        if self._data.setdefault("entries", {}).pop(entry_id, None) is not None:
            await self._store.async_save(self._data)
