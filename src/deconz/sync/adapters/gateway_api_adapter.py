"""Gateway API adapter for reading state from a deCONZ gateway.

This adapter implements IGatewayAPI and wraps the existing ApiClient
to provide the fetch operations the sync engine needs.
"""

from typing import TYPE_CHECKING, Any

from ...api.exceptions import ProtocolError
from ..domain.ports import IGatewayAPI

if TYPE_CHECKING:
    from ...api.client import ApiClient


class DeconzGatewayAPI(IGatewayAPI):
    """deCONZ REST adapter for state reads and key creation.

    Wraps ApiClient; every collection must decode to a JSON object.
    """

    COLLECTIONS = ("lights", "sensors", "groups", "schedules")

    def __init__(self, client: "ApiClient", gateway_id: str):
        """Initialize the API adapter.

        Args:
            client: ApiClient inside its async context
            gateway_id: Bridge id from the public gateway configuration
        """
        self.client = client
        self._gateway_id = gateway_id.upper()

    @property
    def gateway_id(self) -> str:
        return self._gateway_id

    def has_api_key(self) -> bool:
        return bool(self.client.api_key)

    async def create_api_key(self, application: str) -> str:
        return await self.client.create_api_key(application)

    async def get_config(self) -> dict[str, Any]:
        return self._expect_object("/config", await self.client.get("/config"))

    async def get_collection(self, rtype: str) -> dict[str, Any]:
        if rtype not in self.COLLECTIONS:
            raise ValueError(f"{rtype}: not a resource collection")
        path = f"/{rtype}"
        return self._expect_object(path, await self.client.get(path))

    async def get_group_zero(self) -> dict[str, Any]:
        return self._expect_object("/groups/0", await self.client.get("/groups/0"))

    @staticmethod
    def _expect_object(path: str, body: Any) -> dict[str, Any]:
        if not isinstance(body, dict):
            raise ProtocolError(f"GET {path}: expected an object, got {type(body).__name__}")
        return body
