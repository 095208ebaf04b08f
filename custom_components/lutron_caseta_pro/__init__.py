from __future__ import annotations

import logging

import voluptuous as vol

from homeassistant.config_entries import ConfigEntry
from homeassistant.core import HomeAssistant, ServiceCall

from .const import (
    CONF_ACCESSORIES,
    CONF_DEBUG,
    CONF_HOST,
    CONF_NAME,
    CONF_PASSWORD,
    CONF_PORT,
    CONF_USERNAME,
    DOMAIN,
    PLATFORMS,
)
from .diagnostics import (
    async_disable_debug_capture,
    async_enable_debug_capture,
    async_setup_diagnostics,
    async_teardown_diagnostics,
)
from .hub import LutronCasetaHub
from .lib.protocol_const import DEFAULT_PASSWORD, DEFAULT_PORT, DEFAULT_USERNAME
from .storage import AccessoryCacheStore

_LOGGER = logging.getLogger(__name__)

SERVICE_SEND_COMMAND = "send_command"
SEND_COMMAND_SCHEMA = vol.Schema(
    {
        vol.Required("command"): vol.All(str, vol.Length(min=1)),
        vol.Optional("hub"): str,
    }
)

_CACHE_KEY = "_accessory_cache"


async def _async_get_cache(hass: HomeAssistant) -> AccessoryCacheStore:
    domain_data = hass.data.setdefault(DOMAIN, {})
    store: AccessoryCacheStore | None = domain_data.get(_CACHE_KEY)
    if store is None:
        store = AccessoryCacheStore(hass)
        await store.async_load()
        domain_data[_CACHE_KEY] = store
    return store


def _hubs(hass: HomeAssistant) -> dict[str, LutronCasetaHub]:
    return {
        key: value
        for key, value in hass.data.get(DOMAIN, {}).items()
        if isinstance(value, LutronCasetaHub)
    }


async def async_setup_entry(hass: HomeAssistant, entry: ConfigEntry) -> bool:
    data = entry.data
    opts = entry.options

    async_setup_diagnostics(hass)
    store = await _async_get_cache(hass)
    debug = opts.get(CONF_DEBUG, False)

    hub = LutronCasetaHub(
        hass=hass,
        entry_id=entry.entry_id,
        name=data[CONF_NAME],
        host=data[CONF_HOST],
        port=data.get(CONF_PORT, DEFAULT_PORT),
        username=data.get(CONF_USERNAME, DEFAULT_USERNAME),
        password=data.get(CONF_PASSWORD, DEFAULT_PASSWORD),
        accessories=opts.get(CONF_ACCESSORIES, []),
        debug=debug,
        store=store,
    )
    if debug:
        async_enable_debug_capture(hass, entry.entry_id)
    await hub.async_start()

    if not _hubs(hass):
        hass.services.async_register(
            DOMAIN, SERVICE_SEND_COMMAND, _async_handle_send_command, schema=SEND_COMMAND_SCHEMA
        )

    hass.data[DOMAIN][entry.entry_id] = hub

    entry.async_on_unload(
        entry.add_update_listener(async_update_options)
    )

    await hass.config_entries.async_forward_entry_setups(entry, PLATFORMS)
    return True


async def async_update_options(hass: HomeAssistant, entry: ConfigEntry) -> None:
    """Called when user changes options in the UI."""
    hub: LutronCasetaHub = hass.data[DOMAIN][entry.entry_id]

    debug = entry.options.get(CONF_DEBUG, False)
    if debug:
        async_enable_debug_capture(hass, entry.entry_id)
    else:
        async_disable_debug_capture(hass, entry.entry_id)

    await hub.async_apply_new_settings(
        host=entry.data.get(CONF_HOST, hub.host),
        port=entry.data.get(CONF_PORT, hub.port),
        username=entry.data.get(CONF_USERNAME, DEFAULT_USERNAME),
        password=entry.data.get(CONF_PASSWORD, DEFAULT_PASSWORD),
        debug=debug,
        accessories=entry.options.get(CONF_ACCESSORIES, []),
    )


async def async_unload_entry(hass: HomeAssistant, entry: ConfigEntry) -> bool:
    unload_ok = await hass.config_entries.async_unload_platforms(entry, PLATFORMS)
    if unload_ok:
        hub = hass.data[DOMAIN].pop(entry.entry_id, None)
        async_disable_debug_capture(hass, entry.entry_id)
        if not _hubs(hass):
            hass.services.async_remove(DOMAIN, SERVICE_SEND_COMMAND)
            async_teardown_diagnostics(hass)
            hass.data.pop(DOMAIN)
        if hub is not None:
            await hub.async_stop()
    return unload_ok


async def async_remove_entry(hass: HomeAssistant, entry: ConfigEntry) -> None:
    store = await _async_get_cache(hass)
    await store.async_remove_entry(entry.entry_id)


async def _async_handle_send_command(call: ServiceCall) -> None:
    hub = _resolve_hub_from_call(call.hass, call)
    if hub is None:
        raise ValueError("Could not resolve Lutron bridge from service call")

    await hub.async_send_command(call.data["command"])


def _resolve_hub_from_call(hass: HomeAssistant, call: ServiceCall) -> LutronCasetaHub | None:
    """Explicit hub (entry_id or host) → fallback to single hub."""
    hubs = _hubs(hass)

    hub_key = call.data.get("hub")
    if hub_key:
        if hub_key in hubs:
            return hubs[hub_key]
        for hub in hubs.values():
            if hub.host == hub_key:
                return hub
        return None

    # last resort: if there is only 1 hub, just use it
    if len(hubs) == 1:
        return next(iter(hubs.values()))

    return None
