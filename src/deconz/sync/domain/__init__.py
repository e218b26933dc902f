"""Domain layer - Pure domain entities and port interfaces.

This layer contains:
- Entities: Resources, devices, snapshots and directories
- Ports: Abstract interfaces for the gateway, the consumer and settings

No infrastructure dependencies allowed in this layer.
"""

from .entities import (
    SERVICE_PRIORITY,
    Device,
    DeviceDirectory,
    FullState,
    PollResult,
    ReconcileResult,
    Resource,
    ResourceAttributes,
    ResourceType,
    ServiceKind,
)
from .ports import IDeviceConsumer, IGatewayAPI, IResourceMapper, ISettingsStore

__all__ = [
    # Entities
    "Device",
    "DeviceDirectory",
    "FullState",
    "Resource",
    "ResourceAttributes",
    "ResourceType",
    "SERVICE_PRIORITY",
    "ServiceKind",
    # Results
    "PollResult",
    "ReconcileResult",
    # Ports
    "IDeviceConsumer",
    "IGatewayAPI",
    "IResourceMapper",
    "ISettingsStore",
]
