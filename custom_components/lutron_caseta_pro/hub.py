from __future__ import annotations

import logging
from typing import Any, Iterable, Optional

from homeassistant.core import HomeAssistant
from homeassistant.helpers.dispatcher import async_dispatcher_send

from .const import (
    RECONNECT_INITIAL_DELAY,
    RECONNECT_MAX_DELAY,
    signal_accessories,
    signal_bridge,
)
from .lib.accessory import AccessoryConfig, AccessoryHandle, InvalidAccessoryConfig, LutronAccessory
from .lib.connection import (
    BridgeConnection,
    BridgeConnectionConfig,
    ConnectionState,
    ReconnectPolicy,
)
from .lib.platform import CasetaPlatform
from .storage import AccessoryCacheStore

_LOGGER = logging.getLogger(__name__)


def parse_accessory_configs(raw: Iterable[Any]) -> list[AccessoryConfig]:
    """Resolve stored option dicts, skipping (and logging) broken ones."""

    configs: list[AccessoryConfig] = []
    for item in raw or []:
        try:
            configs.append(AccessoryConfig.from_dict(item))
        except InvalidAccessoryConfig as err:
            _LOGGER.warning("Ignoring accessory %s: %s", item, err)
    return configs


class LutronCasetaHub:
    def __init__(
        self,
        hass: HomeAssistant,
        entry_id: str,
        name: str,
        host: str,
        port: int,
        username: str,
        password: str,
        accessories: Iterable[Any],
        debug: bool,
        store: AccessoryCacheStore,
    ) -> None:
        self.hass = hass
        self.entry_id = entry_id
        self.name = name
        self.host = host
        self.port = port
        self.username = username
        self._password = password
        self.debug = debug
        self._store = store
        self._accessory_configs = parse_accessory_configs(accessories)

        self.connection_state: ConnectionState = ConnectionState.DISCONNECTED
        self.logged_in: bool = False

        _LOGGER.debug(
            "[%s] Creating bridge platform for %s (%s:%s)",
            self.entry_id,
            name,
            host,
            port,
        )
        self._platform = self._create_platform()

    def _create_platform(self) -> CasetaPlatform:
        platform = CasetaPlatform(
            BridgeConnectionConfig(
                host=self.host,
                port=int(self.port),
                username=self.username,
                password=self._password,
                debug=self.debug,
            ),
            self._accessory_configs,
            self._register_accessories,
            reconnect_policy=ReconnectPolicy(
                initial_delay=RECONNECT_INITIAL_DELAY,
                max_delay=RECONNECT_MAX_DELAY,
            ),
            call_soon=self.hass.loop.call_soon_threadsafe,
        )

        connection = platform.bridge_connection
        connection.on_state(lambda state: self._on_state_change(connection, state))
        connection.on_logged_in(self._on_logged_in)
        connection.on_close(self._on_close)
        return platform

    @property
    def platform(self) -> CasetaPlatform:
        return self._platform

    @property
    def accessories(self) -> list[LutronAccessory]:
        return list(self._platform.registry)

    def get_accessory(self, integration_id: object) -> Optional[LutronAccessory]:
        return self._platform.registry.get(integration_id)

    async def async_start(self, handles: Optional[list[AccessoryHandle]] = None) -> None:
        if handles is None:
            handles = self._store.get_handles(self.entry_id)
        for handle in handles:
            self._platform.configure_accessory(handle)
        self._platform.did_finish_launching()
        await self._async_save_cache()

        _LOGGER.debug("[%s] Starting bridge connection", self.entry_id)
        await self.hass.async_add_executor_job(self._platform.start)

    async def async_stop(self) -> None:
        _LOGGER.debug("[%s] Stopping bridge connection", self.entry_id)
        await self.hass.async_add_executor_job(self._platform.destroy)
        self.connection_state = ConnectionState.CLOSED
        self.logged_in = False

    async def async_send_command(self, command: str) -> None:
        if not self.logged_in:
            _LOGGER.info("[%s] Bridge not logged in yet, queueing %r", self.entry_id, command)
        self._platform.send_command(command)

    async def async_apply_new_settings(
        self,
        *,
        host: str,
        port: int | str,
        username: str,
        password: str,
        debug: bool,
        accessories: Iterable[Any],
    ) -> None:
        self._accessory_configs = parse_accessory_configs(accessories)
        self._prune_unconfigured()

        changed = (
            str(host) != str(self.host)
            or str(port) != str(self.port)
            or username != self.username
            or password != self._password
            or bool(debug) != self.debug
        )
        if changed:
            _LOGGER.debug(
                "[%s] Updating bridge settings to %s:%s (debug=%s)",
                self.entry_id,
                host,
                port,
                debug,
            )
            handles = [a.handle for a in self.accessories]
            await self.async_stop()

            self.host = host
            self.port = port
            self.username = username
            self._password = password
            self.debug = bool(debug)
            self._platform = self._create_platform()
            await self.async_start(handles)
        else:
            self._platform.set_accessory_configs(self._accessory_configs)
            self._platform.did_finish_launching()
            await self._async_save_cache()
        async_dispatcher_send(self.hass, signal_accessories(self.entry_id))

    def _prune_unconfigured(self) -> None:
        """Drop accessories the user removed from the options."""

        configured = {config.key for config in self._accessory_configs}
        for accessory in self.accessories:
            if accessory.integration_id in configured:
                continue
            self._platform.remove_accessory(accessory.integration_id)
            _LOGGER.info(
                "[%s] Removed accessory %s (%s)",
                self.entry_id,
                accessory.integration_id,
                accessory.name,
            )

    async def _async_save_cache(self) -> None:
        await self._store.async_save_handles(
            self.entry_id, [a.handle for a in self.accessories]
        )

    # ------------------------------------------------------------------
    # platform → HA
    # ------------------------------------------------------------------
    def _register_accessories(self, handles: list[AccessoryHandle]) -> None:
        # reconciliation runs on the event loop
        _LOGGER.info(
            "[%s] Registering %d new accessories: %s",
            self.entry_id,
            len(handles),
            ", ".join(h.display_name for h in handles),
        )
        async_dispatcher_send(self.hass, signal_accessories(self.entry_id))

    def _on_state_change(self, connection: BridgeConnection, state: ConnectionState) -> None:
        def _inner() -> None:
            if connection.destroyed:
                return
            _LOGGER.debug("[%s] Bridge connection state: %s", self.entry_id, state.value)
            self.connection_state = state
            self.logged_in = state is ConnectionState.LOGGED_IN
            async_dispatcher_send(self.hass, signal_bridge(self.entry_id))

        self.hass.loop.call_soon_threadsafe(_inner)

    def _on_logged_in(self) -> None:
        _LOGGER.info("[%s] Logged in to bridge %s", self.entry_id, self.host)

    def _on_close(self, err: Optional[BaseException]) -> None:
        if err is not None:
            _LOGGER.warning("[%s] Bridge connection lost: %s", self.entry_id, err)
        else:
            _LOGGER.warning("[%s] Bridge closed the connection", self.entry_id)
