"""Resource mapper adapter for turning raw gateway bodies into devices.

This adapter implements IResourceMapper and encapsulates all derivation
logic: service kind from resource type and body ``type``, device id and
subtype from ``uniqueid`` (physical resources) or from the resource path
(virtual resources), and the grouping of resources into a directory.
"""

import logging
from typing import Any

from ...api.exceptions import MalformedResourceError, ModelError
from ..domain.entities import (
    DeviceDirectory,
    FullState,
    Resource,
    ResourceAttributes,
    ResourceType,
    ServiceKind,
)
from ..domain.ports import IResourceMapper

logger = logging.getLogger(__name__)


# Light body types, lower case
LIGHT_KINDS: dict[str, ServiceKind] = {
    "color light": ServiceKind.LIGHT,
    "color temperature light": ServiceKind.LIGHT,
    "dimmable light": ServiceKind.LIGHT,
    "dimmable plug-in unit": ServiceKind.LIGHT,
    "extended color light": ServiceKind.LIGHT,
    "on/off light": ServiceKind.LIGHT,
    "on/off output": ServiceKind.OUTLET,
    "on/off plug-in unit": ServiceKind.OUTLET,
    "smart plug": ServiceKind.OUTLET,
    "window covering controller": ServiceKind.WINDOW_COVERING,
    "window covering device": ServiceKind.WINDOW_COVERING,
    "warning device": ServiceKind.WARNING_DEVICE,
    "configuration tool": ServiceKind.UNSUPPORTED,
    "range extender": ServiceKind.UNSUPPORTED,
    "zgp proxy": ServiceKind.UNSUPPORTED,
}

# Sensor body types without the ZHA/CLIP prefix
SENSOR_KINDS: dict[str, ServiceKind] = {
    "AirPurifier": ServiceKind.AIR_PURIFIER,
    "AirQuality": ServiceKind.AIR_QUALITY,
    "Alarm": ServiceKind.ALARM,
    "Battery": ServiceKind.BATTERY,
    "CarbonMonoxide": ServiceKind.CARBON_MONOXIDE,
    "Consumption": ServiceKind.CONSUMPTION,
    "Daylight": ServiceKind.DAYLIGHT,
    "Fire": ServiceKind.SMOKE,
    "GenericFlag": ServiceKind.FLAG,
    "GenericStatus": ServiceKind.STATUS,
    "Humidity": ServiceKind.HUMIDITY,
    "LightLevel": ServiceKind.LIGHT_LEVEL,
    "OpenClose": ServiceKind.CONTACT,
    "Power": ServiceKind.POWER,
    "Presence": ServiceKind.MOTION,
    "Pressure": ServiceKind.AIR_PRESSURE,
    "RelativeRotary": ServiceKind.SWITCH,
    "Switch": ServiceKind.SWITCH,
    "Temperature": ServiceKind.TEMPERATURE,
    "Thermostat": ServiceKind.THERMOSTAT,
    "Vibration": ServiceKind.MOTION,
    "Water": ServiceKind.LEAK,
    "AncillaryControl": ServiceKind.UNSUPPORTED,
    "Time": ServiceKind.UNSUPPORTED,
}

GROUP_KINDS: dict[str, ServiceKind] = {
    "LightGroup": ServiceKind.LIGHT,
    "Room": ServiceKind.LIGHT,
    "Zone": ServiceKind.LIGHT,
    "Entertainment": ServiceKind.UNSUPPORTED,
}


def parse_uniqueid(uniqueid: str) -> tuple[str, str, str | None]:
    """Split ``aa:bb:...:11-01-0402`` into address, endpoint and cluster.

    Raises:
        MalformedResourceError: If the address or endpoint is missing
    """
    parts = uniqueid.replace(":", "").upper().split("-")
    if len(parts) < 2 or not parts[0] or not parts[1]:
        raise MalformedResourceError(f"{uniqueid}: invalid uniqueid")
    cluster = parts[2] if len(parts) > 2 and parts[2] else None
    return parts[0], parts[1], cluster


class ResourceMapper(IResourceMapper):
    """Maps gateway resource bodies to Resources and DeviceDirectories.

    This class handles:
    - Service kind lookup per resource type
    - Physical versus virtual classification
    - Device id and subtype derivation
    - Skipping the gateway's own resources and unsupported kinds
    """

    def __init__(self, gateway_id: str):
        self.gateway_id = gateway_id.upper()

    def kind_of(self, rtype: str, body: dict[str, Any]) -> ServiceKind:
        body_type = str(body.get("type", ""))
        if rtype == ResourceType.LIGHTS:
            return LIGHT_KINDS.get(body_type.lower(), ServiceKind.UNKNOWN)
        if rtype == ResourceType.SENSORS:
            for prefix in ("ZHA", "CLIP"):
                if body_type.startswith(prefix):
                    body_type = body_type[len(prefix):]
                    break
            return SENSOR_KINDS.get(body_type, ServiceKind.UNKNOWN)
        if rtype == ResourceType.GROUPS:
            return GROUP_KINDS.get(body_type, ServiceKind.UNKNOWN)
        return ServiceKind.UNKNOWN

    @staticmethod
    def is_physical(rtype: str, body: dict[str, Any]) -> bool:
        if rtype == ResourceType.LIGHTS:
            return True
        if rtype == ResourceType.SENSORS:
            return str(body.get("type", "")).startswith("ZHA")
        return False

    def map_to_resource(self, rtype: str, rid: int, body: dict[str, Any]) -> Resource:
        """Transform a raw resource body to a Resource.

        Args:
            rtype: Resource type, "lights", "sensors" or "groups"
            rid: Numeric resource id
            body: Resource body as returned by the gateway

        Returns:
            Resource with derived attributes
        """
        rpath = f"/{rtype}/{rid}"
        if not isinstance(body, dict):
            raise MalformedResourceError(f"{rpath}: body is not an object", rpath=rpath)

        physical = self.is_physical(rtype, body)
        if physical:
            uniqueid = body.get("uniqueid")
            if not isinstance(uniqueid, str):
                raise MalformedResourceError(f"{rpath}: missing uniqueid", rpath=rpath)
            try:
                device_id, endpoint, cluster = parse_uniqueid(uniqueid)
            except MalformedResourceError as e:
                raise MalformedResourceError(f"{rpath}: {e.message}", rpath=rpath, cause=e)
            subtype = f"{endpoint}-{cluster}" if cluster else endpoint
        else:
            subtype = f"{rtype[0].upper()}{rid}"
            device_id = f"{self.gateway_id}-{subtype}"

        return Resource(
            rtype=rtype,
            rid=rid,
            body=body,
            attrs=ResourceAttributes(
                device_id=device_id,
                subtype=subtype,
                kind=self.kind_of(rtype, body),
                physical=physical,
            ),
        )

    def build_directory(self, full_state: FullState) -> DeviceDirectory:
        """Derive all devices from a snapshot.

        Lights, sensors and groups are visited in that order, and ids in
        snapshot order. Structural errors reject only the offending
        resource; they are collected on the directory.
        """
        directory = DeviceDirectory()
        for rtype in (ResourceType.LIGHTS, ResourceType.SENSORS, ResourceType.GROUPS):
            for key, body in full_state.collection(rtype.value).items():
                rpath = f"/{rtype.value}/{key}"
                try:
                    rid = int(key)
                except (TypeError, ValueError):
                    directory.errors.add(
                        MalformedResourceError(f"{rpath}: invalid resource id", rpath=rpath),
                        context={"rpath": rpath},
                    )
                    continue
                try:
                    resource = self.map_to_resource(rtype.value, rid, body)
                    if resource.device_id == self.gateway_id:
                        logger.debug(f"{rpath}: ignoring gateway resource")
                        directory.ignored += 1
                        continue
                    if not resource.kind.supported:
                        logger.debug(
                            f"{rpath}: ignoring {resource.kind.value.lower()} "
                            f"type {body.get('type')!r}"
                        )
                        directory.ignored += 1
                        continue
                    directory.add(resource)
                except ModelError as e:
                    logger.warning(f"{rpath}: {e.message}")
                    directory.errors.add(e, context={"rpath": rpath})

        logger.debug(
            f"directory: {directory.device_count} devices, "
            f"{directory.resource_count} resources, {directory.ignored} ignored, "
            f"{directory.errors.count()} rejected"
        )
        return directory
