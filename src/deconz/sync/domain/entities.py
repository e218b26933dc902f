"""Domain entities for gateway synchronization.

These are pure data structures with no infrastructure dependencies.
A Resource is one gateway object (a light, sensor or group); a Device
groups the resources that share a derived identity and designates one of
them as primary.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from ...api.exceptions import (
    DuplicateResourceError,
    ErrorCollector,
    ResourceMismatchError,
)


class ResourceType(str, Enum):
    """Resource types that are turned into devices."""

    LIGHTS = "lights"
    SENSORS = "sensors"
    GROUPS = "groups"


class ServiceKind(str, Enum):
    """What a resource is, derived from its resource type and body ``type``.

    UNSUPPORTED marks known types that are deliberately not exposed;
    UNKNOWN marks types without a mapping. Both are dropped.
    """

    LIGHT = "Light"
    OUTLET = "Outlet"
    WINDOW_COVERING = "WindowCovering"
    WARNING_DEVICE = "WarningDevice"
    AIR_PRESSURE = "AirPressure"
    AIR_PURIFIER = "AirPurifier"
    AIR_QUALITY = "AirQuality"
    ALARM = "Alarm"
    BATTERY = "Battery"
    CARBON_MONOXIDE = "CarbonMonoxide"
    CONSUMPTION = "Consumption"
    CONTACT = "Contact"
    DAYLIGHT = "Daylight"
    FLAG = "Flag"
    HUMIDITY = "Humidity"
    LEAK = "Leak"
    LIGHT_LEVEL = "LightLevel"
    MOTION = "Motion"
    POWER = "Power"
    SMOKE = "Smoke"
    STATUS = "Status"
    SWITCH = "Switch"
    TEMPERATURE = "Temperature"
    THERMOSTAT = "Thermostat"
    UNSUPPORTED = "Unsupported"
    UNKNOWN = "Unknown"

    @property
    def supported(self) -> bool:
        return self not in (ServiceKind.UNSUPPORTED, ServiceKind.UNKNOWN)

    @property
    def priority(self) -> int:
        """Weight when choosing the primary resource of a device."""
        return SERVICE_PRIORITY.get(self, 0)


# Lowest to highest; kinds not listed have priority 0
SERVICE_PRIORITY = {
    ServiceKind.POWER: 1,
    ServiceKind.CONSUMPTION: 2,
    ServiceKind.TEMPERATURE: 3,
    ServiceKind.LIGHT_LEVEL: 4,
    ServiceKind.MOTION: 5,
    ServiceKind.CONTACT: 6,
    ServiceKind.AIR_PURIFIER: 7,
    ServiceKind.THERMOSTAT: 8,
    ServiceKind.FLAG: 9,
}


@dataclass(frozen=True)
class ResourceAttributes:
    """Attributes derived from a resource's type and body."""

    device_id: str
    subtype: str
    kind: ServiceKind
    physical: bool

    @property
    def priority(self) -> int:
        return self.kind.priority


@dataclass
class Resource:
    """One gateway object, e.g. ``/sensors/12``, with its raw body."""

    rtype: str
    rid: int
    body: dict[str, Any]
    attrs: ResourceAttributes

    @property
    def rpath(self) -> str:
        return f"/{self.rtype}/{self.rid}"

    @property
    def device_id(self) -> str:
        return self.attrs.device_id

    @property
    def subtype(self) -> str:
        return self.attrs.subtype

    @property
    def kind(self) -> ServiceKind:
        return self.attrs.kind

    @property
    def priority(self) -> int:
        return self.attrs.priority

    @property
    def physical(self) -> bool:
        return self.attrs.physical


@dataclass
class Device:
    """Resources sharing one device id, with one designated primary.

    Devices are rebuilt from scratch on every poll; they hold no state
    that outlives a directory.
    """

    id: str
    physical: bool
    resource_by_subtype: dict[str, Resource] = field(default_factory=dict)
    primary_subtype: str | None = None

    @classmethod
    def from_resource(cls, resource: Resource) -> "Device":
        device = cls(id=resource.device_id, physical=resource.physical)
        device.add_resource(resource)
        return device

    def add_resource(self, resource: Resource) -> None:
        """Add a resource and re-evaluate the primary.

        A new resource becomes primary when there is no primary yet, or
        when it has the same resource type as the current primary and a
        strictly higher priority.

        Raises:
            DuplicateResourceError: If the subtype is already present
            ResourceMismatchError: If the resource belongs to another device
        """
        if resource.subtype in self.resource_by_subtype:
            raise DuplicateResourceError(self.id, resource.subtype, rpath=resource.rpath)
        if resource.physical != self.physical:
            raise ResourceMismatchError(
                self.id, "cannot combine physical and virtual resources", rpath=resource.rpath
            )
        if resource.physical and resource.device_id != self.id:
            raise ResourceMismatchError(
                self.id, f"cannot combine with {resource.device_id}", rpath=resource.rpath
            )

        self.resource_by_subtype[resource.subtype] = resource

        primary = self.resource
        if primary is None or (
            resource.rtype == primary.rtype and resource.priority > primary.priority
        ):
            self.primary_subtype = resource.subtype

    @property
    def resource(self) -> Resource | None:
        """The primary resource."""
        if self.primary_subtype is None:
            return None
        return self.resource_by_subtype.get(self.primary_subtype)

    @property
    def resources(self) -> list[Resource]:
        return list(self.resource_by_subtype.values())

    @property
    def rpaths(self) -> list[str]:
        return [resource.rpath for resource in self.resource_by_subtype.values()]

    @property
    def rtype(self) -> str | None:
        primary = self.resource
        return primary.rtype if primary else None

    @property
    def rid(self) -> int | None:
        primary = self.resource
        return primary.rid if primary else None

    @property
    def kind(self) -> ServiceKind | None:
        primary = self.resource
        return primary.kind if primary else None

    @property
    def name(self) -> str | None:
        primary = self.resource
        return primary.body.get("name") if primary else None

    @property
    def shape(self) -> tuple[frozenset[str], str | None]:
        """Resource paths and primary subtype; a change means re-expose."""
        return frozenset(self.rpaths), self.primary_subtype


@dataclass
class FullState:
    """Cached copy of the gateway's configuration and collections."""

    config: dict[str, Any] = field(default_factory=dict)
    lights: dict[str, Any] = field(default_factory=dict)
    sensors: dict[str, Any] = field(default_factory=dict)
    groups: dict[str, Any] = field(default_factory=dict)
    schedules: dict[str, Any] = field(default_factory=dict)
    fetched_at: datetime | None = None
    full: bool = True

    def collection(self, rtype: str) -> dict[str, Any]:
        return getattr(self, rtype)


@dataclass
class DeviceDirectory:
    """Devices derived from one snapshot, indexed for lookups."""

    device_by_id: dict[str, Device] = field(default_factory=dict)
    resource_by_rpath: dict[str, Resource] = field(default_factory=dict)
    errors: ErrorCollector = field(default_factory=ErrorCollector)
    ignored: int = 0

    @property
    def device_by_rid_by_rtype(self) -> dict[str, dict[int, Device]]:
        """Devices indexed by the resource type and id of their primary."""
        index: dict[str, dict[int, Device]] = {}
        for device in self.device_by_id.values():
            primary = device.resource
            if primary is not None:
                index.setdefault(primary.rtype, {})[primary.rid] = device
        return index

    @property
    def device_count(self) -> int:
        return len(self.device_by_id)

    @property
    def resource_count(self) -> int:
        return len(self.resource_by_rpath)

    def add(self, resource: Resource) -> Device:
        """Insert a resource, creating its device on first sight."""
        device = self.device_by_id.get(resource.device_id)
        if device is None:
            device = Device.from_resource(resource)
            self.device_by_id[device.id] = device
        else:
            device.add_resource(resource)
        self.resource_by_rpath[resource.rpath] = resource
        return device


@dataclass
class ReconcileResult:
    """Lifecycle decisions of one reconciliation pass."""

    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    reexposed: list[str] = field(default_factory=list)
    polled: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.added or self.removed or self.reexposed)


@dataclass
class PollResult:
    """Result of one poll cycle.

    Contains the reconciliation outcome and any errors encountered.
    """

    success: bool
    full: bool
    polled_at: datetime
    reconcile: ReconcileResult | None = None
    devices: int = 0
    resources: int = 0
    rejected: int = 0
    error_details: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "full": self.full,
            "devices": self.devices,
            "resources": self.resources,
            "rejected": self.rejected,
            "added": len(self.reconcile.added) if self.reconcile else 0,
            "removed": len(self.reconcile.removed) if self.reconcile else 0,
            "reexposed": len(self.reconcile.reexposed) if self.reconcile else 0,
            "polled_at": self.polled_at.isoformat(),
        }
