"""Port interfaces for gateway synchronization.

Ports define the contracts between the domain/use cases and the infrastructure.
These are abstract base classes that adapters must implement.

Following the Hexagonal Architecture (Ports and Adapters) pattern:
- Ports are interfaces defined in the domain layer
- Adapters implement these ports in the adapters layer
- Use cases and the engine depend only on ports, not concrete implementations
"""

from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any

from .entities import Device, DeviceDirectory, FullState, Resource


class IGatewayAPI(ABC):
    """Port for reading the gateway's state.

    Implementations wrap the REST client; errors propagate as the
    client's typed exceptions.
    """

    @property
    @abstractmethod
    def gateway_id(self) -> str:
        """Bridge id of the gateway, upper case."""
        ...

    @abstractmethod
    def has_api_key(self) -> bool:
        ...

    @abstractmethod
    async def create_api_key(self, application: str) -> str:
        """Obtain a new API key.

        Raises:
            GatewayLockedError: If the gateway is not unlocked
        """
        ...

    @abstractmethod
    async def get_config(self) -> dict[str, Any]:
        """Fetch the authenticated ``/config`` body."""
        ...

    @abstractmethod
    async def get_collection(self, rtype: str) -> dict[str, Any]:
        """Fetch ``/lights``, ``/sensors``, ``/groups`` or ``/schedules``."""
        ...

    @abstractmethod
    async def get_group_zero(self) -> dict[str, Any]:
        """Fetch ``/groups/0``, which the groups collection omits."""
        ...


class IResourceMapper(ABC):
    """Port for deriving resources and directories from raw bodies."""

    @abstractmethod
    def map_to_resource(self, rtype: str, rid: int, body: dict[str, Any]) -> Resource:
        """Derive device id, subtype, kind and physicality.

        Raises:
            MalformedResourceError: If a physical resource has no usable uniqueid
        """
        ...

    @abstractmethod
    def build_directory(self, full_state: FullState) -> DeviceDirectory:
        """Derive every device of a snapshot, collecting per-resource errors."""
        ...


class IDeviceConsumer(ABC):
    """Port for the presentation layer that exposes devices.

    The engine calls these as it reconciles. Implementations should not
    block; any exception is logged by the engine.
    """

    @abstractmethod
    async def device_added(self, device: Device) -> None:
        ...

    @abstractmethod
    async def device_removed(self, device_id: str) -> None:
        ...

    @abstractmethod
    async def device_needs_reexpose(self, device_id: str) -> None:
        """The device's resources or primary changed since it was exposed."""
        ...

    @abstractmethod
    async def device_polled(self, device_id: str, device: Device) -> None:
        """Fresh resource bodies for an exposed device."""
        ...

    @abstractmethod
    async def resource_changed(self, rpath: str, body: dict[str, Any]) -> None:
        """Live update from the push stream, e.g. ``{"state": {...}}``."""
        ...


class ISettingsStore(ABC):
    """Port for per-gateway settings owned by the host application."""

    @property
    @abstractmethod
    def api_key(self) -> str | None:
        ...

    @abstractmethod
    async def save_api_key(self, api_key: str) -> None:
        ...

    @property
    @abstractmethod
    def blacklist(self) -> Mapping[str, bool]:
        """Device ids that must not be exposed."""
        ...


__all__ = [
    "IDeviceConsumer",
    "IGatewayAPI",
    "IResourceMapper",
    "ISettingsStore",
]
