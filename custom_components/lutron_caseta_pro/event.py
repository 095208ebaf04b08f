from __future__ import annotations

import logging

from homeassistant.components.event import EventDeviceClass, EventEntity
from homeassistant.config_entries import ConfigEntry
from homeassistant.core import HomeAssistant, callback
from homeassistant.helpers import device_registry as dr
from homeassistant.helpers import entity_registry as er
from homeassistant.helpers.dispatcher import async_dispatcher_connect
from homeassistant.helpers.entity import DeviceInfo
from homeassistant.helpers.entity_platform import AddEntitiesCallback

from .const import BUTTON_EVENT, DOMAIN, signal_accessories
from .hub import LutronCasetaHub
from .lib.accessory import ButtonService, LutronAccessory
from .lib.protocol_const import ButtonEvent

_LOGGER = logging.getLogger(__name__)


async def async_setup_entry(
    hass: HomeAssistant,
    entry: ConfigEntry,
    async_add_entities: AddEntitiesCallback,
) -> None:
    hub: LutronCasetaHub = hass.data[DOMAIN][entry.entry_id]
    entities: dict[tuple[str, str], LutronButtonEvent] = {}

    @callback
    def _sync_buttons() -> None:
        current: dict[tuple[str, str], tuple[LutronAccessory, ButtonService]] = {}
        for accessory in hub.accessories:
            for service in accessory.handle.services:
                current[(accessory.handle.uuid, service.subtype)] = (accessory, service)

        stale = [key for key in entities if key not in current]
        for key in stale:
            _LOGGER.debug("[%s] Removing button entity %s", entry.entry_id, key)
            _remove_entity(hass, entities.pop(key))
        live_devices = {uuid for uuid, _ in current}
        for uuid in {uuid for uuid, _ in stale} - live_devices:
            _remove_device(hass, uuid)

        added: list[LutronButtonEvent] = []
        for key, (accessory, service) in current.items():
            if key in entities:
                continue
            entities[key] = LutronButtonEvent(hub, entry, accessory, service)
            added.append(entities[key])
        if added:
            _LOGGER.debug("[%s] Adding %d button entities", entry.entry_id, len(added))
            async_add_entities(added)

    _sync_buttons()
    entry.async_on_unload(
        async_dispatcher_connect(hass, signal_accessories(entry.entry_id), _sync_buttons)
    )


@callback
def _remove_entity(hass: HomeAssistant, entity: LutronButtonEvent) -> None:
    ent_reg = er.async_get(hass)
    if entity.entity_id and ent_reg.async_get(entity.entity_id) is not None:
        # the registry removal also tears down the live entity
        ent_reg.async_remove(entity.entity_id)
    elif entity.hass is not None:
        hass.async_create_task(entity.async_remove(force_remove=True))


@callback
def _remove_device(hass: HomeAssistant, uuid: str) -> None:
    dev_reg = dr.async_get(hass)
    device = dev_reg.async_get_device(identifiers={(DOMAIN, uuid)})
    if device is not None:
        dev_reg.async_remove_device(device.id)


class LutronButtonEvent(EventEntity):
    """One Pico button; fires press/release/hold/double_tap."""

    _attr_should_poll = False
    _attr_has_entity_name = True
    _attr_device_class = EventDeviceClass.BUTTON
    _attr_event_types = [event.value for event in ButtonEvent]

    def __init__(
        self,
        hub: LutronCasetaHub,
        entry: ConfigEntry,
        accessory: LutronAccessory,
        service: ButtonService,
    ) -> None:
        self._hub = hub
        self._entry = entry
        self._integration_id = accessory.integration_id
        self._uuid = accessory.handle.uuid
        self._subtype = service.subtype
        self._attr_unique_id = f"{self._uuid}_{self._subtype}"
        self._attr_name = service.display_name

    @property
    def _accessory(self) -> LutronAccessory | None:
        # looked up each time; the hub may have rebuilt its platform
        return self._hub.get_accessory(self._integration_id)

    @property
    def device_info(self) -> DeviceInfo:
        accessory = self._accessory
        if accessory is None:
            return DeviceInfo(identifiers={(DOMAIN, self._uuid)})
        return DeviceInfo(
            identifiers={(DOMAIN, self._uuid)},
            name=accessory.handle.display_name,
            manufacturer="Lutron",
            model=accessory.config.type,
            via_device=(DOMAIN, self._entry.entry_id),
        )

    async def async_added_to_hass(self) -> None:
        accessory = self._accessory
        service = accessory.handle.get_service(self._subtype) if accessory else None
        if service is None:
            _LOGGER.debug("No button %s on accessory %s", self._subtype, self._integration_id)
            return
        self.async_on_remove(service.subscribe(self._handle_button_event))

    @callback
    def _handle_button_event(self, event: ButtonEvent) -> None:
        accessory = self._accessory
        data = {
            "integration_id": self._integration_id,
            "component": self._subtype,
        }
        self._trigger_event(event.value, data)
        self.async_write_ha_state()
        self.hass.bus.async_fire(
            BUTTON_EVENT,
            {
                **data,
                "device_name": accessory.handle.display_name if accessory else None,
                "button": self._attr_name,
                "action": event.value,
            },
        )
