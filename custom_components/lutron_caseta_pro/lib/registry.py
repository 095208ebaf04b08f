from __future__ import annotations

import logging
from typing import Callable, Dict, Iterable, Iterator, List, Optional

from .accessory import AccessoryConfig, AccessoryHandle, InvalidAccessoryConfig, LutronAccessory
from .message_parser import MonitorMessage

log = logging.getLogger("lutronpro.registry")

RegisterCallback = Callable[[List[AccessoryHandle]], None]
HandleFactory = Callable[[AccessoryConfig], AccessoryHandle]


class AccessoryRegistry:
    """Integration id → accessory map, fed from the cache then from config.

    Cached handles are ingested first with :meth:`configure_accessory`.
    :meth:`reconcile` then treats configuration as authoritative: known ids
    are updated in place, unknown ids are created and handed to the host in
    one batched ``register_accessories`` call. Cached ids that are missing
    from configuration are kept as they are.
    """

    def __init__(
        self,
        handle_factory: HandleFactory,
        register_accessories: RegisterCallback,
    ) -> None:
        self._handle_factory = handle_factory
        self._register_accessories = register_accessories
        self.accessories_by_integration_id: Dict[str, LutronAccessory] = {}

    def __len__(self) -> int:
        return len(self.accessories_by_integration_id)

    def __contains__(self, integration_id: object) -> bool:
        return str(integration_id) in self.accessories_by_integration_id

    def __iter__(self) -> Iterator[LutronAccessory]:
        return iter(list(self.accessories_by_integration_id.values()))

    def get(self, integration_id: object) -> Optional[LutronAccessory]:
        return self.accessories_by_integration_id.get(str(integration_id))

    def configure_accessory(self, handle: AccessoryHandle) -> Optional[LutronAccessory]:
        """Track a handle restored from the host's accessory cache."""

        raw = handle.context.get("config")
        try:
            config = AccessoryConfig.from_dict(raw)
        except InvalidAccessoryConfig as err:
            log.warning("ignoring cached accessory %r: %s", handle, err)
            return None

        accessory = LutronAccessory(handle, config)
        if config.key in self.accessories_by_integration_id:
            log.warning("cached accessory %r replaces an earlier one for id %s", handle, config.key)
        self.accessories_by_integration_id[config.key] = accessory
        log.debug("restored %r from cache", accessory)
        return accessory

    def reconcile(self, configs: Iterable[AccessoryConfig]) -> List[LutronAccessory]:
        """Merge configuration into the registry; returns newly created accessories."""

        created: Dict[str, LutronAccessory] = {}
        updated = 0
        for config in configs:
            existing = self.accessories_by_integration_id.get(config.key)
            if existing is not None:
                existing.update_config(config)
                if config.key not in created:
                    updated += 1
                continue

            handle = self._handle_factory(config)
            accessory = LutronAccessory(handle, config)
            accessory.update_config(config)
            self.accessories_by_integration_id[config.key] = accessory
            created[config.key] = accessory

        new_accessories = list(created.values())
        log.info(
            "reconciled accessories: %d new, %d updated, %d total",
            len(new_accessories),
            updated,
            len(self.accessories_by_integration_id),
        )
        if new_accessories:
            self._register_accessories([a.handle for a in new_accessories])
        return new_accessories

    def remove(self, integration_id: object) -> Optional[LutronAccessory]:
        """Forget an accessory; the owner decides when something is stale."""

        accessory = self.accessories_by_integration_id.pop(str(integration_id), None)
        if accessory is not None:
            log.info("removed %r", accessory)
        return accessory

    def dispatch(self, message: MonitorMessage) -> bool:
        accessory = self.accessories_by_integration_id.get(message.integration_id)
        if accessory is None:
            log.debug("no accessory for integration id %s", message.integration_id)
            return False
        accessory.dispatch_monitor_message(message.args)
        return True
