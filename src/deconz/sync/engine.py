#!/usr/bin/env python3
"""Gateway Synchronization Engine.

This module keeps a local device directory consistent with a deCONZ
gateway. It combines periodic polling of the REST API with the live
websocket push stream:

    - connect: obtain an API key (retrying while the gateway is locked),
      open the websocket and request a first poll
    - poll: fetch the gateway state (full or partial), derive devices,
      reconcile them against what the consumer exposes, and install the
      new snapshot and directory together
    - push: forward ``changed`` events of exposed resources straight to
      the consumer; ``added`` and ``deleted`` events mark the snapshot
      stale and request a full poll

State machine:
    DISCONNECTED -> AUTHENTICATING -> POLLING <-> LISTENING -> DISCONNECTED

Usage:
    engine = GatewaySyncEngine(gateway, mapper, consumer, settings, ws=ws)
    await engine.run()          # until engine.stop()

Author: deCONZ Sync Team
"""
import asyncio
import logging
from collections.abc import Collection
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any

from ..api.exceptions import (
    AuthenticationError,
    GatewayLockedError,
    UnauthorizedError,
)
from ..api.observers import (
    AddedEvent,
    ChangedEvent,
    ClosedObservation,
    DeletedEvent,
    ErrorObservation,
    ListeningObservation,
)
from .domain.entities import DeviceDirectory, FullState, PollResult
from .domain.ports import IDeviceConsumer, IGatewayAPI, IResourceMapper, ISettingsStore
from .use_cases.reconcile_devices import ReconcileDevicesUseCase, Shape

if TYPE_CHECKING:
    from ..api.websocket import WsClient

logger = logging.getLogger(__name__)


class EngineState(str, Enum):
    DISCONNECTED = "disconnected"
    AUTHENTICATING = "authenticating"
    POLLING = "polling"
    LISTENING = "listening"


@dataclass
class SyncOptions:
    """Tunables for GatewaySyncEngine.

    Attributes:
        heartrate: Seconds between polls
        expose: Resource types whose devices are exposed
        schedules: Fetch schedules on partial polls too
        application: Application name sent when creating an API key
        lock_retry_attempts: Retries while the gateway is locked
        lock_retry_delay: Seconds between those retries
    """

    heartrate: float = 30
    expose: Collection[str] = ("lights", "sensors")
    schedules: bool = False
    application: str = "deconz-sync"
    lock_retry_attempts: int = 8
    lock_retry_delay: float = 15


class GatewaySyncEngine:
    """Reconciles a gateway's resources into devices for a consumer.

    At most one poll cycle runs at a time. A poll requested while a cycle
    runs makes that cycle run once more; requests never queue up.
    """

    def __init__(
        self,
        gateway: IGatewayAPI,
        mapper: IResourceMapper,
        consumer: IDeviceConsumer,
        settings: ISettingsStore,
        ws: "WsClient | None" = None,
        options: SyncOptions | None = None,
    ):
        self.gateway = gateway
        self.mapper = mapper
        self.consumer = consumer
        self.settings = settings
        self.ws = ws
        self.options = options or SyncOptions()
        self.reconciler = ReconcileDevicesUseCase(consumer)

        self._state = EngineState.DISCONNECTED
        self._connected = False
        self._full_state: FullState | None = None
        self._directory = DeviceDirectory()
        self._exposed: dict[str, Shape] = {}
        self._monitored: frozenset[str] = frozenset()
        self._stale = False

        self._polling = False
        self._poll_next = False
        self._wakeup = asyncio.Event()
        self._stopping = False

        if ws is not None:
            ws.subscribe(self.handle_event)

    # ----------------------------------------
    # Read Accessors
    # ----------------------------------------

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def full_state(self) -> FullState | None:
        return self._full_state

    @property
    def directory(self) -> DeviceDirectory:
        return self._directory

    @property
    def exposed_ids(self) -> frozenset[str]:
        return frozenset(self._exposed)

    @property
    def monitored_rpaths(self) -> frozenset[str]:
        return self._monitored

    @property
    def stale(self) -> bool:
        return self._stale

    # ----------------------------------------
    # Connection
    # ----------------------------------------

    async def connect(self) -> None:
        """Authenticate, start listening and request a first poll.

        Raises:
            AuthenticationError: If no API key could be obtained
        """
        self._state = EngineState.AUTHENTICATING
        try:
            if not self.gateway.has_api_key():
                api_key = await self._create_api_key()
                await self.settings.save_api_key(api_key)
            if self.ws is not None:
                await self.ws.listen()
        except Exception:
            self._state = EngineState.DISCONNECTED
            raise

        self._connected = True
        self._state = EngineState.LISTENING
        logger.info(f"{self.gateway.gateway_id}: connected")
        self.request_poll()

    async def _create_api_key(self) -> str:
        attempts = self.options.lock_retry_attempts
        delay = self.options.lock_retry_delay
        retry = 0
        while True:
            try:
                return await self.gateway.create_api_key(self.options.application)
            except GatewayLockedError as e:
                if retry >= attempts:
                    raise AuthenticationError(
                        f"{self.gateway.gateway_id}: gateway still locked after "
                        f"{attempts} retries",
                        cause=e,
                    )
                retry += 1
                logger.warning(
                    f"{self.gateway.gateway_id}: unlock gateway to obtain an API key, "
                    f"retry {retry}/{attempts} in {delay}s"
                )
                await asyncio.sleep(delay)

    async def close(self) -> None:
        """Close the websocket; an in-flight poll is left to finish."""
        self._connected = False
        if self.ws is not None:
            await self.ws.close()
        self._state = EngineState.DISCONNECTED

    # ----------------------------------------
    # Polling
    # ----------------------------------------

    def request_poll(self) -> None:
        """Ask for a poll as soon as possible."""
        if self._polling:
            self._poll_next = True
        self._wakeup.set()

    async def poll(self) -> PollResult | None:
        """Run a poll cycle, or flag another one if a cycle is running.

        Returns:
            PollResult of the last cycle run, None when coalesced

        Raises:
            AuthenticationError: If the API key is no longer valid
        """
        if self._polling:
            self._poll_next = True
            return None

        self._polling = True
        try:
            while True:
                self._poll_next = False
                result = await self._poll_once()
                if not self._poll_next:
                    return result
        finally:
            self._polling = False

    async def _poll_once(self) -> PollResult:
        self._wakeup.clear()
        full = self._full_state is None or self._stale
        self._stale = False
        self._state = EngineState.POLLING
        polled_at = datetime.now(timezone.utc)

        logger.debug(f"{self.gateway.gateway_id}: {'full' if full else 'partial'} poll")

        try:
            full_state = await self._fetch(full)
            directory = self.mapper.build_directory(full_state)
            reconcile, exposed = await self.reconciler.execute(
                directory,
                self._exposed,
                self.settings.blacklist,
                self.options.expose,
            )
        except (AuthenticationError, UnauthorizedError) as e:
            self._stale = self._stale or full
            logger.error(f"{self.gateway.gateway_id}: API key no longer valid: {e}")
            await self.close()
            if isinstance(e, AuthenticationError):
                raise
            raise AuthenticationError(
                f"{self.gateway.gateway_id}: API key no longer valid", cause=e
            )
        except Exception as e:
            self._stale = self._stale or full
            self._state = self._idle_state
            logger.error(
                f"{self.gateway.gateway_id}: poll failed: {type(e).__name__}: {e}",
                exc_info=True,
            )
            return PollResult(
                success=False,
                full=full,
                polled_at=polled_at,
                error_details=[f"{type(e).__name__}: {e}"],
            )

        self._full_state = full_state
        self._directory = directory
        self._exposed = exposed
        self._monitored = frozenset(
            rpath
            for device_id in exposed
            for rpath in directory.device_by_id[device_id].rpaths
        )
        self._state = self._idle_state

        error_details = []
        if directory.errors.has_errors():
            error = directory.errors.to_exception(succeeded=directory.resource_count)
            logger.warning(f"{self.gateway.gateway_id}: {error}")
            error_details = [str(e) for e, _ in directory.errors.get_errors()]

        return PollResult(
            success=True,
            full=full,
            polled_at=polled_at,
            reconcile=reconcile,
            devices=directory.device_count,
            resources=directory.resource_count,
            rejected=directory.errors.count(),
            error_details=error_details,
        )

    @property
    def _idle_state(self) -> EngineState:
        return EngineState.LISTENING if self._connected else EngineState.DISCONNECTED

    async def _fetch(self, full: bool) -> FullState:
        cached = self._full_state
        config = await self.gateway.get_config()
        self._check_api_key(config)

        lights = await self.gateway.get_collection("lights")
        sensors = await self.gateway.get_collection("sensors")

        # Group 0 is always cached, so only other groups make the collection non-empty
        has_groups = any(gid != "0" for gid in cached.groups) if cached else False
        if full or "groups" in self.options.expose or has_groups:
            groups = await self.gateway.get_collection("groups")
            groups["0"] = await self.gateway.get_group_zero()
        else:
            groups = cached.groups

        if full or self.options.schedules:
            schedules = await self.gateway.get_collection("schedules")
        else:
            schedules = cached.schedules

        return FullState(
            config=config,
            lights=lights,
            sensors=sensors,
            groups=groups,
            schedules=schedules,
            fetched_at=datetime.now(timezone.utc),
            full=full,
        )

    def _check_api_key(self, config: dict[str, Any]) -> None:
        # Without a valid key the gateway serves only the public config
        bridgeid = str(config.get("bridgeid", "")).upper()
        if bridgeid == self.gateway.gateway_id and "UTC" not in config:
            raise AuthenticationError(f"{self.gateway.gateway_id}: API key no longer valid")

    # ----------------------------------------
    # Push Events
    # ----------------------------------------

    async def handle_event(self, event: Any) -> None:
        """Websocket subscriber: route push events and lifecycle observations."""
        if isinstance(event, ChangedEvent):
            if event.rpath not in self._monitored:
                return
            body = {event.scope: event.body} if event.scope else event.body
            try:
                await self.consumer.resource_changed(event.rpath, body)
            except Exception as e:
                logger.error(f"{event.rpath}: resource_changed failed: {e}", exc_info=True)
            return

        if isinstance(event, (AddedEvent, DeletedEvent)):
            verb = "added" if isinstance(event, AddedEvent) else "deleted"
            logger.info(f"/{event.rtype}/{event.rid}: {verb}")
            self._stale = True
            self.request_poll()
            return

        if isinstance(event, ErrorObservation):
            logger.warning(f"{self.gateway.gateway_id}: websocket error: {event.error}")
        elif isinstance(event, ListeningObservation):
            logger.debug(f"{event.url}: websocket listening")
        elif isinstance(event, ClosedObservation):
            logger.debug(f"{event.url}: websocket closed, retry in {event.retry_time}s")
        else:
            logger.debug(f"{self.gateway.gateway_id}: {type(event).__name__}: {event}")

    # ----------------------------------------
    # Main Loop
    # ----------------------------------------

    async def run(self) -> None:
        """Connect, then poll every heartrate seconds until ``stop()``."""
        self._stopping = False
        await self.connect()
        try:
            while not self._stopping:
                try:
                    await self.poll()
                except AuthenticationError as e:
                    logger.error(f"Stopping sync: {e}")
                    break

                try:
                    await asyncio.wait_for(
                        self._wakeup.wait(),
                        timeout=self.options.heartrate,
                    )
                except asyncio.TimeoutError:
                    pass
        finally:
            await self.close()

    def stop(self) -> None:
        self._stopping = True
        self._wakeup.set()
