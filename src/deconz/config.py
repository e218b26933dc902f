"""Configuration loaded from environment variables.

Environment Variables:
    DECONZ_HOST: Gateway host, optionally with ":port" (required)
    DECONZ_API_KEY: API key; one is created on first connect when unset
    DECONZ_HEARTRATE: Seconds between polls (default: 30)
    DECONZ_RETRY_TIME: Seconds before reconnecting the websocket (default: 15, 0..120)
    DECONZ_TIMEOUT: REST request timeout in seconds (default: 5, 1..60)
    DECONZ_PARALLEL_REQUESTS: Concurrent REST connections (default: 10, 1..20)
    DECONZ_WAIT_TIME_PUT: Milliseconds per radio message (default: 50, 0..50)
    DECONZ_WAIT_TIME_PUT_GROUP: Milliseconds per group message (default: 1000, 0..1000)
    DECONZ_WAIT_TIME_RESEND: Milliseconds before a resend (default: 300, 0..1000)
    DECONZ_EXPOSE: Resource types to expose (default: "lights,sensors")
    DECONZ_SCHEDULES: Fetch schedules while polling (default: false)
    DECONZ_BLACKLIST: Comma separated device ids never to expose
    DECONZ_LOG_LEVEL: Logging level (default: INFO)
"""
import logging
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

from .api.client import ClientOptions
from .api.exceptions import ConfigurationError

load_dotenv()

logger = logging.getLogger(__name__)

RESOURCE_TYPES = ("lights", "sensors", "groups")


def _env_int(name: str, default: int, minimum: int, maximum: int | None = None) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigurationError(f"{name}={raw!r}: not an integer", details={"key": name})
    clamped = max(value, minimum)
    if maximum is not None:
        clamped = min(clamped, maximum)
    if clamped != value:
        logger.warning(f"{name}={value} out of range, using {clamped}")
    return clamped


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, str(default)).strip().lower() in ("1", "true", "yes")


def _env_list(name: str, default: str = "") -> list[str]:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


@dataclass
class SyncConfig:
    """Settings for one gateway connection."""

    host: str
    api_key: str | None = None
    heartrate: int = 30
    retry_time: int = 15
    timeout: int = 5
    parallel_requests: int = 10
    wait_time_put: int = 50
    wait_time_put_group: int = 1000
    wait_time_resend: int = 300
    expose: list[str] = field(default_factory=lambda: ["lights", "sensors"])
    schedules: bool = False
    blacklist: list[str] = field(default_factory=list)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "SyncConfig":
        """Build the configuration from the environment.

        Raises:
            ConfigurationError: If DECONZ_HOST is missing or a value is malformed
        """
        host = os.getenv("DECONZ_HOST", "").strip()
        if not host:
            raise ConfigurationError(
                "DECONZ_HOST is required", missing_keys=["DECONZ_HOST"]
            )

        expose = [rtype.lower() for rtype in _env_list("DECONZ_EXPOSE", "lights,sensors")]
        unknown = [rtype for rtype in expose if rtype not in RESOURCE_TYPES]
        if unknown:
            raise ConfigurationError(
                f"DECONZ_EXPOSE: unknown resource type(s) {', '.join(unknown)}",
                details={"allowed": list(RESOURCE_TYPES)},
            )

        return cls(
            host=host,
            api_key=os.getenv("DECONZ_API_KEY") or None,
            heartrate=_env_int("DECONZ_HEARTRATE", 30, 1),
            retry_time=_env_int("DECONZ_RETRY_TIME", 15, 0, 120),
            timeout=_env_int("DECONZ_TIMEOUT", 5, 1, 60),
            parallel_requests=_env_int("DECONZ_PARALLEL_REQUESTS", 10, 1, 20),
            wait_time_put=_env_int("DECONZ_WAIT_TIME_PUT", 50, 0, 50),
            wait_time_put_group=_env_int("DECONZ_WAIT_TIME_PUT_GROUP", 1000, 0, 1000),
            wait_time_resend=_env_int("DECONZ_WAIT_TIME_RESEND", 300, 0, 1000),
            expose=expose,
            schedules=_env_bool("DECONZ_SCHEDULES", False),
            blacklist=[device_id.upper() for device_id in _env_list("DECONZ_BLACKLIST")],
            log_level=os.getenv("DECONZ_LOG_LEVEL", "INFO").upper(),
        )

    @property
    def client_options(self) -> ClientOptions:
        return ClientOptions(
            timeout=self.timeout,
            parallel_requests=self.parallel_requests,
            wait_time_put=self.wait_time_put,
            wait_time_put_group=self.wait_time_put_group,
            wait_time_resend=self.wait_time_resend,
        )

    def __repr__(self):
        return (
            f"SyncConfig("
            f"host={self.host}, "
            f"api_key={'set' if self.api_key else 'unset'}, "
            f"heartrate={self.heartrate}s, "
            f"expose={','.join(self.expose)}, "
            f"blacklist={len(self.blacklist)})"
        )
