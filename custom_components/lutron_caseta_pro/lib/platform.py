from __future__ import annotations

import logging
import uuid
from typing import Any, Callable, Dict, Iterable, List, Optional

from .accessory import AccessoryConfig, AccessoryHandle, LutronAccessory
from .connection import BridgeConnection, BridgeConnectionConfig, ReconnectPolicy
from .message_parser import MonitorMessage
from .registry import AccessoryRegistry, RegisterCallback

log = logging.getLogger("lutronpro.platform")

_UUID_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_DNS, "lutron-caseta-pro.local")


def accessory_uuid(integration_id: object) -> str:
    return str(uuid.uuid5(_UUID_NAMESPACE, f"integration:{integration_id}"))


def create_handle(config: AccessoryConfig) -> AccessoryHandle:
    return AccessoryHandle(config.name, accessory_uuid(config.integration_id))


class CasetaPlatform:
    """One bridge connection plus the accessories it feeds."""

    def __init__(
        self,
        connection_config: BridgeConnectionConfig,
        accessory_configs: Iterable[AccessoryConfig],
        register_accessories: RegisterCallback,
        *,
        reconnect_policy: Optional[ReconnectPolicy] = None,
        connection_factory: Callable[..., BridgeConnection] = BridgeConnection,
        call_soon: Optional[Callable[..., Any]] = None,
    ) -> None:
        """``call_soon(fn, *args)`` moves dispatch onto the registry owner's
        thread; without it messages are dispatched on the bridge worker."""
        self.accessory_configs: List[AccessoryConfig] = list(accessory_configs)
        self._call_soon = call_soon
        self.registry = AccessoryRegistry(create_handle, register_accessories)
        self.bridge_connection = connection_factory(
            connection_config, reconnect_policy=reconnect_policy
        )
        # registered first so routing runs before any other monitor listener
        self.bridge_connection.on_monitor_message(self._handle_monitor_message)

    @property
    def accessories_by_integration_id(self) -> Dict[str, LutronAccessory]:
        return self.registry.accessories_by_integration_id

    def configure_accessory(self, handle: AccessoryHandle) -> Optional[LutronAccessory]:
        return self.registry.configure_accessory(handle)

    def did_finish_launching(self) -> List[LutronAccessory]:
        return self.registry.reconcile(self.accessory_configs)

    def remove_accessory(self, integration_id: object) -> Optional[LutronAccessory]:
        return self.registry.remove(integration_id)

    def set_accessory_configs(self, configs: Iterable[AccessoryConfig]) -> None:
        self.accessory_configs = list(configs)

    def start(self) -> None:
        self.bridge_connection.start()

    def destroy(self) -> None:
        self.bridge_connection.destroy()

    def send_command(self, command: str) -> None:
        self.bridge_connection.send_command(command)

    def _handle_monitor_message(self, message: MonitorMessage) -> None:
        if self._call_soon is not None:
            self._call_soon(self._dispatch_unless_destroyed, message)
            return
        self.registry.dispatch(message)

    def _dispatch_unless_destroyed(self, message: MonitorMessage) -> None:
        if self.bridge_connection.destroyed:
            return
        self.registry.dispatch(message)
