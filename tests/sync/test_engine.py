"""Tests for the GatewaySyncEngine.

The gateway, settings store and consumer are mock ports; the websocket
is a MagicMock. The real ResourceMapper derives the devices.
"""

import copy
from collections.abc import Mapping
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.deconz.api.exceptions import (
    AuthenticationError,
    ConnectionError,
    GatewayLockedError,
    UnauthorizedError,
)
from src.deconz.api.observers import (
    AddedEvent,
    ChangedEvent,
    ClosedObservation,
    DeletedEvent,
    ErrorObservation,
)
from src.deconz.sync.adapters.resource_mapper import ResourceMapper
from src.deconz.sync.domain.entities import Device
from src.deconz.sync.domain.ports import IDeviceConsumer, IGatewayAPI, ISettingsStore
from src.deconz.sync.engine import EngineState, GatewaySyncEngine, SyncOptions

GATEWAY_ID = "00212EFFFF00ABCD"
LIGHT_ID = "00212EFFFF001234"
MOTION_ID = "00212EFFFF005678"
DOOR_ID = "00212EFFFF009ABC"

LIGHTS = {
    "1": {
        "name": "Kitchen",
        "type": "Extended color light",
        "uniqueid": "00:21:2e:ff:ff:00:12:34-01",
        "state": {"on": False},
    },
}
SENSORS = {
    "2": {
        "name": "Hall motion",
        "type": "ZHAPresence",
        "uniqueid": "00:21:2e:ff:ff:00:56:78-02-0406",
        "state": {"presence": False},
    },
}
DOOR = {
    "name": "Front door",
    "type": "ZHAOpenClose",
    "uniqueid": "00:21:2e:ff:ff:00:9a:bc-01-0006",
    "state": {"open": False},
}


class MockGatewayAPI(IGatewayAPI):
    """Mock implementation of IGatewayAPI serving mutable collections."""

    def __init__(self, api_key: str | None = "0123456789", lock_failures: int = 0):
        self.api_key = api_key
        self.lock_failures = lock_failures
        self.create_calls = 0
        self.config = {"bridgeid": GATEWAY_ID, "UTC": "2024-01-01T12:00:00", "name": "Phoscon-GW"}
        self.collections: dict[str, dict[str, Any]] = {
            "lights": copy.deepcopy(LIGHTS),
            "sensors": copy.deepcopy(SENSORS),
            "groups": {},
            "schedules": {},
        }
        self.group_zero = {"name": "All lights", "type": "LightGroup"}
        self.fetched: list[str] = []
        self.raise_error: Exception | None = None
        self.on_config = None

    @property
    def gateway_id(self) -> str:
        return GATEWAY_ID

    def has_api_key(self) -> bool:
        return self.api_key is not None

    async def create_api_key(self, application: str) -> str:
        self.create_calls += 1
        if self.lock_failures > 0:
            self.lock_failures -= 1
            raise GatewayLockedError()
        self.api_key = "ABCDEF0123"
        return self.api_key

    async def get_config(self) -> dict[str, Any]:
        self.fetched.append("config")
        if self.on_config is not None:
            await self.on_config()
        if self.raise_error:
            raise self.raise_error
        return dict(self.config)

    async def get_collection(self, rtype: str) -> dict[str, Any]:
        self.fetched.append(rtype)
        return copy.deepcopy(self.collections[rtype])

    async def get_group_zero(self) -> dict[str, Any]:
        self.fetched.append("groups/0")
        return dict(self.group_zero)


class MockSettingsStore(ISettingsStore):
    """Mock implementation of ISettingsStore."""

    def __init__(self, blacklist: dict[str, bool] | None = None):
        self.saved: list[str] = []
        self._blacklist = blacklist or {}

    @property
    def api_key(self) -> str | None:
        return self.saved[-1] if self.saved else None

    async def save_api_key(self, api_key: str) -> None:
        self.saved.append(api_key)

    @property
    def blacklist(self) -> Mapping[str, bool]:
        return self._blacklist


class MockDeviceConsumer(IDeviceConsumer):
    """Mock implementation of IDeviceConsumer."""

    def __init__(self):
        self.added: list[str] = []
        self.removed: list[str] = []
        self.reexposed: list[str] = []
        self.polled: list[str] = []
        self.changed: list[tuple[str, dict[str, Any]]] = []

    async def device_added(self, device: Device) -> None:
        self.added.append(device.id)

    async def device_removed(self, device_id: str) -> None:
        self.removed.append(device_id)

    async def device_needs_reexpose(self, device_id: str) -> None:
        self.reexposed.append(device_id)

    async def device_polled(self, device_id: str, device: Device) -> None:
        self.polled.append(device_id)

    async def resource_changed(self, rpath: str, body: dict[str, Any]) -> None:
        self.changed.append((rpath, body))


def make_ws():
    ws = MagicMock()
    ws.listen = AsyncMock()
    ws.close = AsyncMock()
    return ws


@pytest.fixture
def gateway():
    return MockGatewayAPI()


@pytest.fixture
def settings():
    return MockSettingsStore()


@pytest.fixture
def consumer():
    return MockDeviceConsumer()


@pytest.fixture
def ws():
    return make_ws()


@pytest.fixture
def engine(gateway, settings, consumer, ws):
    return GatewaySyncEngine(
        gateway=gateway,
        mapper=ResourceMapper(GATEWAY_ID),
        consumer=consumer,
        settings=settings,
        ws=ws,
        options=SyncOptions(lock_retry_attempts=3, lock_retry_delay=15),
    )


# ============================================
# Connection
# ============================================

class TestConnect:
    """Tests for authentication and websocket start."""

    def test_subscribes_to_websocket(self, engine, ws):
        ws.subscribe.assert_called_once_with(engine.handle_event)

    @pytest.mark.asyncio
    async def test_connect_with_existing_key(self, engine, gateway, ws):
        await engine.connect()

        assert engine.state == EngineState.LISTENING
        assert gateway.create_calls == 0
        ws.listen.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_creates_key_after_gateway_unlocked(self, engine, gateway, settings):
        gateway.api_key = None
        gateway.lock_failures = 2

        with patch("asyncio.sleep", new=AsyncMock()) as mock_sleep:
            await engine.connect()

        assert gateway.create_calls == 3
        assert settings.saved == ["ABCDEF0123"]
        assert mock_sleep.await_count == 2
        mock_sleep.assert_awaited_with(15)
        assert engine.state == EngineState.LISTENING

    @pytest.mark.asyncio
    async def test_gives_up_while_locked(self, engine, gateway, settings, ws):
        gateway.api_key = None
        gateway.lock_failures = 100

        with patch("asyncio.sleep", new=AsyncMock()):
            with pytest.raises(AuthenticationError):
                await engine.connect()

        assert gateway.create_calls == 4
        assert settings.saved == []
        assert engine.state == EngineState.DISCONNECTED
        ws.listen.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unreachable_while_creating_key(self, engine, gateway, settings, ws):
        gateway.api_key = None
        gateway.create_api_key = AsyncMock(side_effect=ConnectionError("refused"))

        with pytest.raises(ConnectionError):
            await engine.connect()

        assert settings.saved == []
        assert engine.state == EngineState.DISCONNECTED
        ws.listen.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_close(self, engine, ws):
        await engine.connect()

        await engine.close()

        ws.close.assert_awaited_once()
        assert engine.state == EngineState.DISCONNECTED


# ============================================
# Polling
# ============================================

class TestPoll:
    """Tests for poll cycles and reconciliation."""

    @pytest.mark.asyncio
    async def test_first_poll_is_full(self, engine, gateway, consumer):
        result = await engine.poll()

        assert result.success
        assert result.full
        assert gateway.fetched == ["config", "lights", "sensors", "groups", "groups/0", "schedules"]
        assert consumer.added == [LIGHT_ID, MOTION_ID]
        assert result.reconcile.added == [LIGHT_ID, MOTION_ID]
        assert engine.exposed_ids == {LIGHT_ID, MOTION_ID}
        assert engine.monitored_rpaths == {"/lights/1", "/sensors/2"}
        assert engine.full_state.groups == {"0": gateway.group_zero}
        assert result.devices == 3
        assert result.resources == 3

    @pytest.mark.asyncio
    async def test_second_poll_is_partial_without_changes(self, engine, gateway, consumer):
        await engine.poll()
        gateway.fetched.clear()

        result = await engine.poll()

        assert result.success
        assert not result.full
        assert gateway.fetched == ["config", "lights", "sensors"]
        assert not result.reconcile.changed
        assert consumer.polled == [LIGHT_ID, MOTION_ID]
        assert consumer.added == [LIGHT_ID, MOTION_ID]

    @pytest.mark.asyncio
    async def test_partial_poll_fetches_known_groups(self, engine, gateway):
        gateway.collections["groups"] = {"3": {"name": "Living", "type": "Room"}}
        await engine.poll()
        gateway.fetched.clear()

        await engine.poll()

        assert gateway.fetched == ["config", "lights", "sensors", "groups", "groups/0"]

    @pytest.mark.asyncio
    async def test_exposed_groups(self, gateway, settings, consumer):
        engine = GatewaySyncEngine(
            gateway, ResourceMapper(GATEWAY_ID), consumer, settings,
            options=SyncOptions(expose=("groups",), schedules=True),
        )
        await engine.poll()
        gateway.fetched.clear()

        await engine.poll()

        assert consumer.added == [f"{GATEWAY_ID}-G0"]
        assert gateway.fetched == [
            "config", "lights", "sensors", "groups", "groups/0", "schedules",
        ]

    @pytest.mark.asyncio
    async def test_blacklisted_device_not_added(self, gateway, consumer):
        engine = GatewaySyncEngine(
            gateway, ResourceMapper(GATEWAY_ID), consumer,
            MockSettingsStore(blacklist={MOTION_ID: True}),
        )

        await engine.poll()

        assert consumer.added == [LIGHT_ID]

    @pytest.mark.asyncio
    async def test_failure_keeps_previous_snapshot(self, engine, gateway):
        await engine.poll()
        snapshot = engine.full_state
        directory = engine.directory
        gateway.raise_error = ConnectionError("refused", host="gateway")

        result = await engine.poll()

        assert not result.success
        assert not result.full
        assert "refused" in result.error_details[0]
        assert engine.full_state is snapshot
        assert engine.directory is directory
        assert not engine.stale

    @pytest.mark.asyncio
    async def test_failed_full_poll_stays_stale(self, engine, gateway):
        await engine.poll()
        await engine.handle_event(AddedEvent("sensors", 9))
        gateway.raise_error = ConnectionError("refused")

        result = await engine.poll()

        assert result.full
        assert engine.stale

        gateway.raise_error = None
        result = await engine.poll()
        assert result.full
        assert not engine.stale

    @pytest.mark.asyncio
    async def test_poll_during_poll_runs_once_more(self, engine, gateway):
        nested = []

        async def on_config():
            if gateway.fetched.count("config") == 1:
                nested.append(await engine.poll())
                engine.request_poll()

        gateway.on_config = on_config

        result = await engine.poll()

        assert nested == [None]
        assert gateway.fetched.count("config") == 2
        assert result.success
        assert not result.full

    @pytest.mark.asyncio
    async def test_revoked_key(self, engine, gateway, ws):
        """A config without UTC means the API key is no longer valid."""
        await engine.connect()
        del gateway.config["UTC"]

        with pytest.raises(AuthenticationError):
            await engine.poll()

        ws.close.assert_awaited_once()
        assert engine.state == EngineState.DISCONNECTED
        assert engine.full_state is None

    @pytest.mark.asyncio
    async def test_unauthorized_error(self, engine, gateway):
        gateway.raise_error = UnauthorizedError()

        with pytest.raises(AuthenticationError) as exc_info:
            await engine.poll()

        assert isinstance(exc_info.value.cause, UnauthorizedError)
        assert engine.state == EngineState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_other_gateway_config_is_not_revocation(self, engine, gateway):
        gateway.config = {"bridgeid": "00212EFFFF00FFFF"}

        result = await engine.poll()

        assert result.success


# ============================================
# Push Events
# ============================================

class TestPushEvents:
    """Tests for websocket event handling."""

    @pytest.mark.asyncio
    async def test_changed_event_forwarded_for_exposed_resource(self, engine, consumer):
        await engine.poll()

        await engine.handle_event(ChangedEvent("lights", 1, "/lights/1/state", {"on": True}))
        await engine.handle_event(ChangedEvent("sensors", 2, "/sensors/2", {"name": "Hall"}))

        assert consumer.changed == [
            ("/lights/1", {"state": {"on": True}}),
            ("/sensors/2", {"name": "Hall"}),
        ]

    @pytest.mark.asyncio
    async def test_changed_event_ignored_for_unexposed_resource(self, engine, consumer):
        await engine.poll()

        await engine.handle_event(ChangedEvent("groups", 0, "/groups/0/state", {"all_on": True}))
        await engine.handle_event(ChangedEvent("lights", 9, "/lights/9/state", {"on": True}))

        assert consumer.changed == []
        assert not engine.stale

    @pytest.mark.asyncio
    async def test_consumer_error_is_contained(self, engine, consumer):
        await engine.poll()
        consumer.resource_changed = AsyncMock(side_effect=RuntimeError("boom"))

        await engine.handle_event(ChangedEvent("lights", 1, "/lights/1/state", {"on": True}))

        consumer.resource_changed.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_added_event_triggers_full_poll(self, engine, gateway, consumer):
        await engine.poll()
        gateway.collections["sensors"]["9"] = copy.deepcopy(DOOR)

        await engine.handle_event(AddedEvent("sensors", 9, DOOR))

        assert engine.stale
        result = await engine.poll()
        assert result.full
        assert result.reconcile.added == [DOOR_ID]
        assert "/sensors/9" in engine.monitored_rpaths

    @pytest.mark.asyncio
    async def test_deleted_event_removes_device(self, engine, gateway, consumer):
        await engine.poll()
        del gateway.collections["lights"]["1"]

        await engine.handle_event(DeletedEvent("lights", 1))
        result = await engine.poll()

        assert result.full
        assert consumer.removed == [LIGHT_ID]
        assert LIGHT_ID not in engine.exposed_ids
        assert "/lights/1" not in engine.monitored_rpaths

    @pytest.mark.asyncio
    async def test_new_resource_on_exposed_device_reexposes(self, engine, gateway, consumer):
        await engine.poll()
        gateway.collections["sensors"]["3"] = {
            "type": "ZHATemperature",
            "uniqueid": "00:21:2e:ff:ff:00:56:78-02-0402",
        }

        await engine.handle_event(AddedEvent("sensors", 3))
        result = await engine.poll()

        assert result.reconcile.reexposed == [MOTION_ID]
        assert consumer.reexposed == [MOTION_ID]
        assert "/sensors/3" in engine.monitored_rpaths

    @pytest.mark.asyncio
    async def test_observations_are_only_logged(self, engine):
        await engine.handle_event(ErrorObservation(ConnectionError("lost")))
        await engine.handle_event(ClosedObservation("ws://gateway:443", 15))

        assert not engine.stale


# ============================================
# Main Loop
# ============================================

class TestRun:
    """Tests for the run loop."""

    @pytest.mark.asyncio
    async def test_run_until_stopped(self, engine, gateway, ws, consumer):
        async def on_config():
            engine.stop()

        gateway.on_config = on_config

        await engine.run()

        assert gateway.fetched.count("config") == 1
        assert consumer.added == [LIGHT_ID, MOTION_ID]
        ws.listen.assert_awaited_once()
        ws.close.assert_awaited()
        assert engine.state == EngineState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_run_ends_on_revoked_key(self, engine, gateway, ws):
        del gateway.config["UTC"]

        await engine.run()

        assert engine.state == EngineState.DISCONNECTED
        ws.close.assert_awaited()
