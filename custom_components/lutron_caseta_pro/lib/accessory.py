"""Accessory model and per-accessory monitor message dispatch."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from .protocol_const import BUTTON_EVENT_BY_ACTION, BUTTON_LAYOUTS, ButtonEvent, service_name

log = logging.getLogger("lutronpro.accessory")

_KNOWN_KEYS = {"type", "integration_id", "integrationID", "name"}


class InvalidAccessoryConfig(ValueError):
    """Raised when an accessory description cannot be resolved."""


@dataclass(frozen=True)
class AccessoryConfig:
    type: str
    integration_id: int
    name: str
    extra: Mapping[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @property
    def key(self) -> str:
        return str(self.integration_id)

    @property
    def layout(self) -> Tuple[str, ...]:
        return BUTTON_LAYOUTS[self.type]

    @classmethod
    def from_dict(cls, raw: Any) -> "AccessoryConfig":
        if isinstance(raw, AccessoryConfig):
            return raw
        if not isinstance(raw, Mapping):
            raise InvalidAccessoryConfig(f"accessory config must be a mapping, got {type(raw).__name__}")

        kind = str(raw.get("type") or "").strip().upper()
        if kind not in BUTTON_LAYOUTS:
            raise InvalidAccessoryConfig(f"unknown accessory type {raw.get('type')!r}")

        ident = raw.get("integration_id", raw.get("integrationID"))
        try:
            integration_id = int(str(ident).strip())
        except (TypeError, ValueError):
            raise InvalidAccessoryConfig(f"invalid integration id {ident!r}") from None
        if integration_id < 0:
            raise InvalidAccessoryConfig(f"invalid integration id {ident!r}")

        name = str(raw.get("name") or f"Pico {integration_id}").strip()
        extra = {k: v for k, v in raw.items() if k not in _KNOWN_KEYS}
        return cls(kind, integration_id, name, extra)

    def as_dict(self) -> Dict[str, Any]:
        return {
            **self.extra,
            "type": self.type,
            "integration_id": self.integration_id,
            "name": self.name,
        }


class ButtonService:
    """One programmable button (a component number) of a remote."""

    def __init__(self, subtype: str, display_name: str) -> None:
        self.subtype = subtype
        self.display_name = display_name
        self.last_event: Optional[ButtonEvent] = None
        self._listeners: List[Callable[[ButtonEvent], None]] = []

    def subscribe(self, cb: Callable[[ButtonEvent], None]) -> Callable[[], None]:
        self._listeners.append(cb)

        def _unsubscribe() -> None:
            if cb in self._listeners:
                self._listeners.remove(cb)

        return _unsubscribe

    def trigger(self, event: ButtonEvent) -> None:
        self.last_event = event
        for cb in list(self._listeners):
            try:
                cb(event)
            except Exception:
                log.exception("button listener failed for %s", self.display_name)

    def __repr__(self) -> str:
        return f"ButtonService({self.subtype!r}, {self.display_name!r})"


class AccessoryHandle:
    """Host-visible accessory: identity, persisted context and services."""

    def __init__(
        self,
        display_name: str,
        uuid: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.display_name = display_name
        self.uuid = uuid
        self.context: Dict[str, Any] = context if context is not None else {}
        self.services: List[ButtonService] = []

    def add_service(self, service: ButtonService) -> ButtonService:
        self.services.append(service)
        return service

    def remove_service(self, service: ButtonService) -> None:
        if service in self.services:
            self.services.remove(service)

    def get_service(self, subtype: str) -> Optional[ButtonService]:
        return next((s for s in self.services if s.subtype == subtype), None)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "uuid": self.uuid,
            "display_name": self.display_name,
            "context": dict(self.context),
            "services": [
                {"subtype": s.subtype, "display_name": s.display_name}
                for s in self.services
            ],
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "AccessoryHandle":
        handle = cls(
            str(raw.get("display_name", "")),
            str(raw["uuid"]),
            dict(raw.get("context") or {}),
        )
        for item in raw.get("services") or []:
            if isinstance(item, Mapping) and "subtype" in item:
                handle.add_service(
                    ButtonService(str(item["subtype"]), str(item.get("display_name", "")))
                )
        return handle

    def __repr__(self) -> str:
        return f"AccessoryHandle({self.display_name!r}, {self.uuid!r})"


class LutronAccessory:
    """Turns monitor messages for one integration id into button events."""

    def __init__(self, handle: AccessoryHandle, config: AccessoryConfig) -> None:
        self.handle = handle
        self.config = config

    @property
    def integration_id(self) -> str:
        return self.config.key

    @property
    def name(self) -> str:
        return self.config.name

    def update_config(self, config: AccessoryConfig) -> None:
        """Apply configuration as the source of truth and repair services."""
        if config.key != self.config.key:
            raise InvalidAccessoryConfig(
                f"cannot move accessory {self.config.key} to integration id {config.key}"
            )
        self.config = config
        self.handle.display_name = config.name
        self.handle.context["config"] = config.as_dict()
        self.sync_services()

    def sync_services(self) -> None:
        layout = self.config.layout
        existing: Dict[str, ButtonService] = {}
        for service in list(self.handle.services):
            if service.subtype not in layout or service.subtype in existing:
                log.debug("[%s] dropping stale service %r", self.integration_id, service)
                continue
            existing[service.subtype] = service

        services: List[ButtonService] = []
        for component in layout:
            wanted = service_name(component)
            service = existing.get(component)
            if service is None:
                service = ButtonService(component, wanted)
            elif service.display_name != wanted:
                log.debug(
                    "[%s] renaming service %r to %r",
                    self.integration_id,
                    service.display_name,
                    wanted,
                )
                service.display_name = wanted
            services.append(service)
        self.handle.services = services

    def dispatch_monitor_message(self, args: Sequence[str]) -> bool:
        if len(args) < 2:
            return False
        component, action = args[0], args[1]

        service = self.handle.get_service(component)
        if service is None:
            log.debug("[%s] no button for component %s", self.integration_id, component)
            return False
        event = BUTTON_EVENT_BY_ACTION.get(action)
        if event is None:
            log.debug("[%s] ignoring action %s on component %s", self.integration_id, action, component)
            return False

        log.debug("[%s] %s %s", self.integration_id, service.display_name, event.value)
        service.trigger(event)
        return True

    def __repr__(self) -> str:
        return f"LutronAccessory({self.integration_id!r}, {self.name!r})"


__all__ = [
    "AccessoryConfig",
    "AccessoryHandle",
    "ButtonService",
    "InvalidAccessoryConfig",
    "LutronAccessory",
]
