"""Sync module - Clean Architecture implementation of gateway synchronization.

This module turns a deCONZ gateway's lights, sensors and groups into
devices and keeps them reconciled with the gateway through polling and
the websocket push stream.

Architecture:
    domain/     - Pure domain entities and port interfaces
    use_cases/  - Reconciliation of a fresh directory against exposure
    adapters/   - Infrastructure implementations (REST, mapper, settings)
    engine.py   - Poll loop, push integration and state machine
"""

from .domain.entities import (
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
from .domain.ports import IDeviceConsumer, IGatewayAPI, IResourceMapper, ISettingsStore
from .engine import EngineState, GatewaySyncEngine, SyncOptions

__all__ = [
    # Entities
    "Device",
    "DeviceDirectory",
    "FullState",
    "Resource",
    "ResourceAttributes",
    "ResourceType",
    "ServiceKind",
    # Results
    "PollResult",
    "ReconcileResult",
    # Ports
    "IDeviceConsumer",
    "IGatewayAPI",
    "IResourceMapper",
    "ISettingsStore",
    # Engine
    "EngineState",
    "GatewaySyncEngine",
    "SyncOptions",
]
