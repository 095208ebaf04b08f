# custom_components/lutron_caseta_pro/binary_sensor.py
from __future__ import annotations

from typing import Any

from homeassistant.components.binary_sensor import (
    BinarySensorEntity,
    BinarySensorDeviceClass,
)
from homeassistant.config_entries import ConfigEntry
from homeassistant.core import HomeAssistant, callback
from homeassistant.helpers.dispatcher import async_dispatcher_connect
from homeassistant.helpers.entity import DeviceInfo, EntityCategory
from homeassistant.helpers.entity_platform import AddEntitiesCallback

from .const import (
    DOMAIN,
    CONF_NAME,
    signal_bridge,
)
from .hub import LutronCasetaHub


async def async_setup_entry(
    hass: HomeAssistant,
    entry: ConfigEntry,
    async_add_entities: AddEntitiesCallback,
) -> None:
    hub: LutronCasetaHub = hass.data[DOMAIN][entry.entry_id]
    async_add_entities([LutronBridgeConnectionSensor(hub, entry)])


class LutronBridgeConnectionSensor(BinarySensorEntity):
    """Are we logged in to the bridge?"""

    _attr_should_poll = False
    _attr_device_class = BinarySensorDeviceClass.CONNECTIVITY
    _attr_entity_category = EntityCategory.DIAGNOSTIC

    def __init__(self, hub: LutronCasetaHub, entry: ConfigEntry) -> None:
        self._hub = hub
        self._entry = entry
        self._attr_unique_id = f"{entry.entry_id}_bridge_connected"
        self._attr_name = f"{entry.data[CONF_NAME]} Bridge connected"

    @property
    def device_info(self) -> DeviceInfo:
        return DeviceInfo(
            identifiers={(DOMAIN, self._entry.entry_id)},
            name=self._entry.data[CONF_NAME],
            manufacturer="Lutron",
            model="Smart Bridge Pro",
        )

    async def async_added_to_hass(self) -> None:
        self.async_on_remove(
            async_dispatcher_connect(
                self.hass,
                signal_bridge(self._hub.entry_id),
                self._handle_bridge_state,
            )
        )

    @callback
    def _handle_bridge_state(self) -> None:
        self.async_write_ha_state()

    @property
    def is_on(self) -> bool:
        return self._hub.logged_in

    @property
    def extra_state_attributes(self) -> dict[str, Any]:
        return {"connection_state": self._hub.connection_state.value}
