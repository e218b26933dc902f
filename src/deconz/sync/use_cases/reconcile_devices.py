"""Reconcile Devices Use Case - Diffs a fresh directory against exposure.

This use case decides, after every poll, which devices the consumer
must add, remove, re-expose or refresh. It depends on the consumer port
only, so it runs without a gateway.

Workflow:
1. Remove exposed devices that disappeared, were blacklisted, or whose
   primary resource type is no longer exposed
2. Re-expose devices whose resource paths or primary changed
3. Refresh the remaining exposed devices with their new bodies
4. Add eligible devices that are not exposed yet, by resource type and id
5. Return the decisions and the new exposure
"""

import logging
from collections.abc import Collection, Mapping

from ..domain.entities import Device, DeviceDirectory, ReconcileResult, ResourceType
from ..domain.ports import IDeviceConsumer

logger = logging.getLogger(__name__)

# Exposure record per device: resource paths and primary subtype
Shape = tuple[frozenset[str], str | None]

RTYPE_ORDER = {rtype.value: index for index, rtype in enumerate(ResourceType)}


class ReconcileDevicesUseCase:
    """Orchestrates the add/remove/re-expose decisions of a poll cycle.

    Example:
        use_case = ReconcileDevicesUseCase(consumer=LoggingDeviceConsumer())
        result, exposed = await use_case.execute(
            directory, exposed, blacklist={}, enabled_rtypes={"lights"}
        )
    """

    def __init__(self, consumer: IDeviceConsumer):
        """Initialize the use case with its dependencies.

        Args:
            consumer: Port for the presentation layer
        """
        self.consumer = consumer

    @staticmethod
    def is_eligible(
        device: Device,
        blacklist: Mapping[str, bool],
        enabled_rtypes: Collection[str],
    ) -> bool:
        """A device is exposed when its primary type is enabled and it is not blacklisted."""
        return device.rtype in enabled_rtypes and not blacklist.get(device.id, False)

    async def execute(
        self,
        directory: DeviceDirectory,
        exposed: Mapping[str, Shape],
        blacklist: Mapping[str, bool],
        enabled_rtypes: Collection[str],
    ) -> tuple[ReconcileResult, dict[str, Shape]]:
        """Execute the reconciliation.

        Args:
            directory: Devices derived from the fresh snapshot
            exposed: Shapes of the devices the consumer holds
            blacklist: Device ids that must not be exposed
            enabled_rtypes: Resource types whose devices are exposed

        Returns:
            The decisions taken and the exposure after applying them
        """
        result = ReconcileResult()
        new_exposed: dict[str, Shape] = {}

        for device_id, shape in exposed.items():
            device = directory.device_by_id.get(device_id)
            if device is None or not self.is_eligible(device, blacklist, enabled_rtypes):
                result.removed.append(device_id)
                await self._notify("device_removed", device_id)
                continue

            new_exposed[device_id] = device.shape
            if device.shape != shape:
                result.reexposed.append(device_id)
                await self._notify("device_needs_reexpose", device_id)
            else:
                result.polled.append(device_id)
                await self._notify("device_polled", device_id, device)

        candidates = sorted(
            (
                device for device in directory.device_by_id.values()
                if device.id not in exposed
                and self.is_eligible(device, blacklist, enabled_rtypes)
            ),
            key=lambda device: (RTYPE_ORDER.get(device.rtype, len(RTYPE_ORDER)), device.rid),
        )
        for device in candidates:
            new_exposed[device.id] = device.shape
            result.added.append(device.id)
            await self._notify("device_added", device)

        if result.changed:
            logger.info(
                f"Reconciled: {len(result.added)} added, {len(result.removed)} removed, "
                f"{len(result.reexposed)} re-exposed, {len(result.polled)} polled"
            )
        else:
            logger.debug(f"Reconciled: {len(result.polled)} polled, no changes")

        return result, new_exposed

    async def _notify(self, callback: str, *args) -> None:
        try:
            await getattr(self.consumer, callback)(*args)
        except Exception as e:
            device_id = args[0].id if isinstance(args[0], Device) else args[0]
            logger.error(f"{device_id}: {callback} failed: {e}", exc_info=True)
