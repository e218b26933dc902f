#!/usr/bin/env python3
"""Long-running Sync Runner for a deCONZ gateway.

This module wires the sync engine to environment configuration and runs
it until SIGTERM/SIGINT. Designed to run as the main process in a Docker
container.

Architecture:
    - One ApiClient session and one websocket per gateway
    - GatewaySyncEngine polling every DECONZ_HEARTRATE seconds
    - Graceful shutdown on SIGTERM/SIGINT
    - Health check endpoint via optional HTTP server

Environment Variables:
    DECONZ_HOST: Gateway host (required)
    DECONZ_API_KEY: API key; created on first start when unset
    DECONZ_HEARTRATE: Seconds between polls (default: 30)
    DECONZ_EXPOSE: Resource types to expose (default: lights,sensors)
    HEALTH_CHECK_PORT: Port for health check endpoint (default: 8080, 0 to disable)

    See src/deconz/config.py for the full list.

Example:
    DECONZ_HOST=192.168.1.10 DECONZ_API_KEY=0123456789 python scheduler.py

Docker Usage:
    docker run -e DECONZ_HOST=192.168.1.10 -e DECONZ_API_KEY=... deconz-sync

Author: deCONZ Sync Team
"""
import asyncio
import logging
import os
import signal
import sys
from datetime import UTC, datetime

from dotenv import load_dotenv

load_dotenv()

# Local imports
from src.deconz.api import (
    ApiClient,
    ConfigurationError,
    DeconzError,
    WsClient,
    fetch_gateway_config,
)
from src.deconz.config import SyncConfig
from src.deconz.sync import EngineState, GatewaySyncEngine, SyncOptions
from src.deconz.sync.adapters import (
    DeconzGatewayAPI,
    LoggingDeviceConsumer,
    MemorySettingsStore,
    ResourceMapper,
)

# Initialize logger
logger = logging.getLogger(__name__)


# ============================================
# Health Check Server
# ============================================

class HealthState:
    """Shared state for health checks."""

    def __init__(self, engine: GatewaySyncEngine):
        self.engine = engine
        self.started_at: datetime = datetime.now(UTC)


async def health_check_handler(reader, writer, state: HealthState):
    """Handle HTTP health check requests."""
    await reader.read(1024)

    engine = state.engine
    uptime = (datetime.now(UTC) - state.started_at).total_seconds()
    healthy = engine.state in (EngineState.LISTENING, EngineState.POLLING)
    status = "healthy" if healthy else "unhealthy"
    fetched_at = engine.full_state.fetched_at if engine.full_state else None

    body = (
        f'{{"status": "{status}", '
        f'"state": "{engine.state.value}", '
        f'"uptime_seconds": {uptime:.0f}, '
        f'"devices": {len(engine.exposed_ids)}, '
        f'"last_poll_at": "{fetched_at.isoformat() if fetched_at else "never"}"}}'
    )

    http_status = 200 if healthy else 503
    response = (
        f"HTTP/1.1 {http_status} {'OK' if http_status == 200 else 'Service Unavailable'}\r\n"
        f"Content-Type: application/json\r\n"
        f"Content-Length: {len(body)}\r\n"
        f"Connection: close\r\n"
        f"\r\n"
        f"{body}"
    )

    writer.write(response.encode())
    await writer.drain()
    writer.close()
    await writer.wait_closed()


async def start_health_server(port: int, state: HealthState):
    """Start the health check HTTP server."""
    if port <= 0:
        return None

    async def handler(reader, writer):
        await health_check_handler(reader, writer, state)

    server = await asyncio.start_server(handler, "0.0.0.0", port)
    logger.info(f"Health check server listening on port {port}")
    return server


# ============================================
# Main Entry Point
# ============================================

async def run(config: SyncConfig, health_check_port: int) -> None:
    """Connect to the gateway and keep it in sync until shutdown."""
    gateway_config = await fetch_gateway_config(config.host, timeout=config.timeout)
    logger.info(
        f"Gateway {gateway_config.name or gateway_config.gateway_id} "
        f"({gateway_config.gateway_id}), api {gateway_config.apiversion}"
    )

    settings = MemorySettingsStore(api_key=config.api_key, blacklist=config.blacklist)

    async with ApiClient(
        config.host,
        api_key=settings.api_key,
        config=gateway_config,
        options=config.client_options,
    ) as client:
        ws = WsClient(
            config.host,
            port=gateway_config.websocketport,
            retry_time=config.retry_time,
        )
        engine = GatewaySyncEngine(
            gateway=DeconzGatewayAPI(client, gateway_config.gateway_id),
            mapper=ResourceMapper(gateway_config.gateway_id),
            consumer=LoggingDeviceConsumer(),
            settings=settings,
            ws=ws,
            options=SyncOptions(
                heartrate=config.heartrate,
                expose=tuple(config.expose),
                schedules=config.schedules,
            ),
        )

        # Signal handlers
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(signum, engine.stop)

        health_server = await start_health_server(health_check_port, HealthState(engine))
        try:
            await engine.run()
        finally:
            logger.info("Cleaning up...")
            if health_server:
                health_server.close()
                await health_server.wait_closed()


async def main():
    """Main entry point for the runner."""
    try:
        config = SyncConfig.from_env()
    except ConfigurationError as e:
        logging.basicConfig(level=logging.INFO)
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)

    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    logger.info(f"Config: {config}")

    try:
        await run(config, int(os.getenv("HEALTH_CHECK_PORT", "8080")))
    except DeconzError as e:
        logger.error(f"Sync stopped: {type(e).__name__}: {e}", exc_info=True)
        sys.exit(1)

    logger.info("Shutdown complete")


def cli():
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    cli()
