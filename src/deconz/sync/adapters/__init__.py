"""Adapters layer - Infrastructure implementations for sync operations.

This layer contains concrete implementations of the ports defined in the domain layer:
- DeconzGatewayAPI: deCONZ REST implementation of IGatewayAPI
- ResourceMapper: Resource derivation implementation of IResourceMapper
- MemorySettingsStore: In-memory implementation of ISettingsStore
- LoggingDeviceConsumer: Logging implementation of IDeviceConsumer
"""

from .gateway_api_adapter import DeconzGatewayAPI
from .logging_consumer import LoggingDeviceConsumer
from .memory_settings import MemorySettingsStore
from .resource_mapper import ResourceMapper, parse_uniqueid

__all__ = [
    "DeconzGatewayAPI",
    "LoggingDeviceConsumer",
    "MemorySettingsStore",
    "ResourceMapper",
    "parse_uniqueid",
]
