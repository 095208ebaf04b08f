import asyncio

import pytest

from custom_components.lutron_caseta_pro import hub as hub_module
from custom_components.lutron_caseta_pro.hub import LutronCasetaHub, parse_accessory_configs
from custom_components.lutron_caseta_pro.lib.accessory import AccessoryHandle, ButtonService
from custom_components.lutron_caseta_pro.lib.connection import ConnectionState
from custom_components.lutron_caseta_pro.lib.platform import CasetaPlatform, accessory_uuid


class FakeLoop:
    def call_soon_threadsafe(self, func, *args):
        func(*args)


class DeferredLoop:
    def __init__(self) -> None:
        self.pending = []

    def call_soon_threadsafe(self, func, *args):
        self.pending.append((func, args))

    def run_pending(self) -> None:
        pending, self.pending = self.pending, []
        for func, args in pending:
            func(*args)


class FakeHass:
    def __init__(self) -> None:
        self.loop = FakeLoop()
        self.data = {}

    async def async_add_executor_job(self, func, *args):
        return func(*args)


class FakeStore:
    def __init__(self, handles=None) -> None:
        self.handles = handles or []
        self.saved = {}

    def get_handles(self, entry_id):
        return list(self.handles)

    async def async_save_handles(self, entry_id, handles):
        self.saved[entry_id] = [h.as_dict() for h in handles]


@pytest.fixture
def signals(monkeypatch):
    sent = []
    monkeypatch.setattr(hub_module, "async_dispatcher_send", lambda _hass, signal: sent.append(signal))
    monkeypatch.setattr(CasetaPlatform, "start", lambda self: None)
    return sent


def _hub(store: FakeStore, accessories=None, hass=None) -> LutronCasetaHub:
    return LutronCasetaHub(
        hass or FakeHass(),
        "entry-1",
        "Bridge",
        "192.168.1.20",
        23,
        "lutron",
        "integration",
        accessories if accessories is not None else [
            {"type": "PICO-REMOTE", "integration_id": 2, "name": "Hall"},
        ],
        False,
        store,  # type: ignore[arg-type]
    )


def test_parse_accessory_configs_skips_invalid() -> None:
    configs = parse_accessory_configs([
        {"type": "PICO-REMOTE", "integration_id": 2},
        {"type": "LAMP", "integration_id": 3},
        "garbage",
    ])

    assert [c.key for c in configs] == ["2"]


def test_start_registers_and_caches_accessories(signals) -> None:
    store = FakeStore()
    hub = _hub(store)

    asyncio.run(hub.async_start())

    assert [a.name for a in hub.accessories] == ["Hall"]
    assert "lutron_caseta_pro_entry-1_accessories" in signals
    saved = store.saved["entry-1"]
    assert saved[0]["uuid"] == accessory_uuid(2)
    assert [s["display_name"] for s in saved[0]["services"]] == ["Switch 2", "Switch 4"]


def test_start_restores_cached_handles(signals) -> None:
    cached = AccessoryHandle(
        "old",
        accessory_uuid(2),
        {"config": {"type": "PICO-REMOTE", "integration_id": 2, "name": "old"}},
    )
    cached.add_service(ButtonService("2", "Switch bogus"))
    hub = _hub(FakeStore([cached]))

    asyncio.run(hub.async_start())

    assert hub.accessories[0].handle is cached
    assert cached.display_name == "Hall"
    assert "lutron_caseta_pro_entry-1_accessories" not in signals


def test_state_changes_are_published(signals) -> None:
    hub = _hub(FakeStore())
    conn = hub.platform.bridge_connection

    conn._set_state(ConnectionState.LOGGED_IN)

    assert hub.logged_in
    assert hub.connection_state is ConnectionState.LOGGED_IN
    assert signals[-1] == "lutron_caseta_pro_entry-1_bridge"


def test_accessory_only_change_keeps_connection(signals) -> None:
    hub = _hub(FakeStore())
    asyncio.run(hub.async_start())
    platform = hub.platform
    hall = hub.accessories[0]

    asyncio.run(hub.async_apply_new_settings(
        host="192.168.1.20",
        port=23,
        username="lutron",
        password="integration",
        debug=False,
        accessories=[
            {"type": "PICO-REMOTE", "integration_id": 2, "name": "Hallway"},
            {"type": "PICO-3BRL", "integration_id": 5, "name": "Kitchen"},
        ],
    ))

    assert hub.platform is platform
    assert hub.accessories[0] is hall
    assert hall.name == "Hallway"
    assert sorted(a.integration_id for a in hub.accessories) == ["2", "5"]


def test_connection_change_rebuilds_platform_with_same_handles(signals) -> None:
    hub = _hub(FakeStore())
    asyncio.run(hub.async_start())
    old_platform = hub.platform
    old_handle = hub.accessories[0].handle

    asyncio.run(hub.async_apply_new_settings(
        host="192.168.1.21",
        port=23,
        username="lutron",
        password="integration",
        debug=True,
        accessories=[{"type": "PICO-REMOTE", "integration_id": 2, "name": "Hall"}],
    ))

    assert hub.platform is not old_platform
    assert old_platform.bridge_connection.destroyed
    assert hub.platform.bridge_connection.config.host == "192.168.1.21"
    assert hub.accessories[0].handle is old_handle
    assert hub.debug is True


def test_removed_remote_is_dropped_everywhere(signals) -> None:
    store = FakeStore()
    hub = _hub(store, [
        {"type": "PICO-REMOTE", "integration_id": 2, "name": "Hall"},
        {"type": "PICO-REMOTE", "integration_id": 3, "name": "Porch"},
    ])
    asyncio.run(hub.async_start())
    signals.clear()

    asyncio.run(hub.async_apply_new_settings(
        host="192.168.1.20",
        port=23,
        username="lutron",
        password="integration",
        debug=False,
        accessories=[{"type": "PICO-REMOTE", "integration_id": 3, "name": "Porch"}],
    ))

    assert [a.integration_id for a in hub.accessories] == ["3"]
    assert hub.get_accessory(2) is None
    assert [h["context"]["config"]["integration_id"] for h in store.saved["entry-1"]] == [3]
    assert signals == ["lutron_caseta_pro_entry-1_accessories"]


def test_removing_the_last_remote_empties_the_cache(signals) -> None:
    store = FakeStore()
    hub = _hub(store)
    asyncio.run(hub.async_start())

    asyncio.run(hub.async_apply_new_settings(
        host="192.168.1.20",
        port=23,
        username="lutron",
        password="integration",
        debug=False,
        accessories=[],
    ))

    assert hub.accessories == []
    assert store.saved["entry-1"] == []


def test_rebuild_does_not_carry_removed_remotes(signals) -> None:
    store = FakeStore()
    hub = _hub(store)
    asyncio.run(hub.async_start())

    asyncio.run(hub.async_apply_new_settings(
        host="192.168.1.21",
        port=23,
        username="lutron",
        password="integration",
        debug=False,
        accessories=[],
    ))

    assert hub.accessories == []
    assert store.saved["entry-1"] == []
    assert signals[-1] == "lutron_caseta_pro_entry-1_accessories"


def test_state_updates_queued_before_stop_are_dropped(signals) -> None:
    hass = FakeHass()
    hass.loop = DeferredLoop()
    hub = _hub(FakeStore(), hass=hass)
    hass.loop.run_pending()
    signals.clear()

    hub.platform.bridge_connection._set_state(ConnectionState.LOGGED_IN)
    asyncio.run(hub.async_stop())
    hass.loop.run_pending()

    assert not hub.logged_in
    assert hub.connection_state is ConnectionState.CLOSED
    assert signals == []
