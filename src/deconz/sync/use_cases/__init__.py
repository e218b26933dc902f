"""Use cases layer - Business logic orchestration for sync operations.

This layer contains use case classes that orchestrate the sync workflow:
- Diff a freshly derived directory against the devices already exposed
- Notify the consumer (via IDeviceConsumer port) of every decision

Use cases depend only on ports, not concrete implementations.
"""

from .reconcile_devices import ReconcileDevicesUseCase

__all__ = [
    "ReconcileDevicesUseCase",
]
