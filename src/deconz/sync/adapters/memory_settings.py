"""In-memory settings store.

Holds the API key and device blacklist for one gateway. The host
application seeds it from its own configuration; a key created during
``connect()`` is kept here and logged so it can be persisted.
"""

import logging
from collections.abc import Iterable, Mapping
from types import MappingProxyType

from ..domain.ports import ISettingsStore

logger = logging.getLogger(__name__)


class MemorySettingsStore(ISettingsStore):
    """ISettingsStore kept in process memory."""

    def __init__(self, api_key: str | None = None, blacklist: Iterable[str] = ()):
        self._api_key = api_key
        self._blacklist = {device_id.upper(): True for device_id in blacklist}

    @property
    def api_key(self) -> str | None:
        return self._api_key

    async def save_api_key(self, api_key: str) -> None:
        self._api_key = api_key
        logger.info("Stored new API key; set DECONZ_API_KEY to reuse it")

    @property
    def blacklist(self) -> Mapping[str, bool]:
        return MappingProxyType(self._blacklist)
