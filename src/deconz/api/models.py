"""Pydantic schemas for gateway responses."""

from typing import Optional

from pydantic import BaseModel, Field


class GatewayConfig(BaseModel):
    """Public gateway configuration, as returned by ``GET /api/config``.

    The same fields are part of the authenticated ``/config`` body, which
    additionally carries ``UTC`` when the API key is valid.
    """

    bridgeid: str = Field(..., min_length=1)
    name: Optional[str] = None
    devicename: Optional[str] = None
    modelid: Optional[str] = None
    apiversion: Optional[str] = None
    swversion: Optional[str] = None
    websocketport: int = 443

    class Config:
        extra = "allow"

    @property
    def gateway_id(self) -> str:
        """Bridge id in upper case, the prefix for virtual device ids."""
        return self.bridgeid.upper()


__all__ = ["GatewayConfig"]
