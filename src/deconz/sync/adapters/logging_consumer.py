"""Device consumer that logs lifecycle decisions.

Used by the scheduler when no presentation layer is attached. It keeps
the devices it was handed so the current exposure can be inspected.
"""

import logging
from typing import Any

from ..domain.entities import Device
from ..domain.ports import IDeviceConsumer

logger = logging.getLogger(__name__)


class LoggingDeviceConsumer(IDeviceConsumer):
    """IDeviceConsumer that records devices and logs every callback."""

    def __init__(self):
        self.devices: dict[str, Device] = {}

    async def device_added(self, device: Device) -> None:
        self.devices[device.id] = device
        primary = device.resource
        logger.info(
            f"{device.id}: added {primary.kind.value if primary else '?'} "
            f"{device.name!r} ({', '.join(device.rpaths)})"
        )

    async def device_removed(self, device_id: str) -> None:
        self.devices.pop(device_id, None)
        logger.info(f"{device_id}: removed")

    async def device_needs_reexpose(self, device_id: str) -> None:
        # Still exposed under the new shape; the next poll refreshes the entry
        logger.info(f"{device_id}: resources changed, re-exposing")

    async def device_polled(self, device_id: str, device: Device) -> None:
        self.devices[device_id] = device
        logger.debug(f"{device_id}: polled")

    async def resource_changed(self, rpath: str, body: dict[str, Any]) -> None:
        logger.info(f"{rpath}: changed {body}")
