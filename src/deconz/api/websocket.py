#!/usr/bin/env python3
"""Websocket client for deCONZ push notifications.

The gateway pushes a JSON frame for every change it sees::

    {"t": "event", "e": "changed", "r": "lights", "id": "1",
     "state": {"on": true, "bri": 200}}

This module normalizes those frames into the typed events of
``observers`` and keeps the connection up, reconnecting ``retry_time``
seconds after every close until ``close()`` is called.

Usage:
    ws = WsClient("192.168.1.10", port=443, retry_time=15)
    ws.subscribe(on_event)
    await ws.listen()
    ...
    await ws.close()

Author: deCONZ Sync Team
"""
import asyncio
import json
import logging
from typing import Any, Optional

import aiohttp

from .exceptions import ConnectionError, NetworkError, ProtocolError
from .observers import (
    AddedEvent,
    ChangedEvent,
    ClosedObservation,
    DeletedEvent,
    ErrorObservation,
    ListeningObservation,
    NotificationEvent,
    Observable,
    PushEvent,
    SceneRecallEvent,
)

logger = logging.getLogger(__name__)

# Events for group 0 carry the Zigbee group id 0xFFF0 instead of the resource id
ALL_LIGHTS_GROUP_ID = str(0xFFF0)


def parse_frame(frame: Any, raw: bool = False) -> Optional[PushEvent]:
    """Turn a decoded push frame into a typed event.

    Returns None for ``changed`` frames that carry none of ``state``,
    ``config`` or ``attr``. Frames that are not recognised, and every
    frame in raw mode, become a NotificationEvent.
    """
    if not isinstance(frame, dict):
        return NotificationEvent(frame)

    if frame.get("r") == "groups" and str(frame.get("id")) == ALL_LIGHTS_GROUP_ID:
        frame = {**frame, "id": "0"}

    if raw or frame.get("t") != "event":
        return NotificationEvent(frame)

    event = frame.get("e")
    rtype = frame.get("r")

    if event == "scene-called":
        gid, scid = frame.get("gid"), frame.get("scid")
        if gid is not None and scid is not None:
            return SceneRecallEvent(f"/groups/{gid}/scenes/{scid}")
        return NotificationEvent(frame)

    try:
        rid = int(frame.get("id"))
    except (TypeError, ValueError):
        return NotificationEvent(frame)
    if not isinstance(rtype, str) or not rtype:
        return NotificationEvent(frame)

    if event == "changed":
        for scope in ("state", "config"):
            if frame.get(scope) is not None:
                return ChangedEvent(rtype, rid, f"/{rtype}/{rid}/{scope}", frame[scope])
        if frame.get("attr") is not None:
            return ChangedEvent(rtype, rid, f"/{rtype}/{rid}", frame["attr"])
        return None

    if event == "added":
        return AddedEvent(rtype, rid, frame.get(rtype[:-1]) or {})

    if event == "deleted":
        return DeletedEvent(rtype, rid)

    return NotificationEvent(frame)


class WsClient(Observable):
    """Persistent websocket connection to the gateway.

    Subscribers receive ListeningObservation, ClosedObservation and
    ErrorObservation for the connection lifecycle and the push events
    returned by ``parse_frame``.

    Attributes:
        url: Websocket URL, ``ws://<host>:<port>``
        retry_time: Seconds before reconnecting (0..120, 0 disables)
        raw: Pass every frame through as a NotificationEvent
    """

    def __init__(
        self,
        host: str,
        port: int = 443,
        retry_time: float = 15,
        raw: bool = False,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        super().__init__()
        hostname = host.rsplit(":", 1)[0] if ":" in host else host
        self.url = f"ws://{hostname}:{port}"
        self.retry_time = min(max(retry_time, 0), 120)
        self.raw = raw

        self._session = session
        self._own_session = session is None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._task: Optional[asyncio.Task] = None
        self._reconnect = False
        self._closing = asyncio.Event()

    @property
    def connected(self) -> bool:
        return self._ws is not None and not self._ws.closed

    @property
    def listening(self) -> bool:
        return self._task is not None and not self._task.done()

    async def listen(self) -> None:
        """Open the connection and start reading frames in the background."""
        if self.listening:
            return
        self._reconnect = True
        self._closing.clear()
        if self._session is None:
            self._session = aiohttp.ClientSession()
        connected = await self._connect()
        self._task = asyncio.create_task(self._run(connected))

    async def close(self) -> None:
        """Stop reconnecting, close the socket and wait for the reader."""
        self._reconnect = False
        self._closing.set()
        if self._ws is not None:
            await self._ws.close()
        if self._task is not None:
            await self._task
            self._task = None
        if self._own_session and self._session is not None:
            await self._session.close()
            self._session = None

    async def _connect(self) -> bool:
        try:
            self._ws = await self._session.ws_connect(self.url)
        except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as e:
            error = ConnectionError(
                f"{self.url}: cannot connect", host=self.url, cause=e
            )
            logger.warning(str(error))
            await self._emit(ErrorObservation(error))
            return False
        logger.info(f"{self.url}: listening")
        await self._emit(ListeningObservation(self.url))
        return True

    async def _run(self, connected: bool) -> None:
        while True:
            if connected and not self._reconnect:
                # close() ran while this connection was being opened
                ws, self._ws = self._ws, None
                await ws.close()
            elif connected:
                await self._receive()

            retry_time = self.retry_time if self._reconnect else 0
            await self._emit(ClosedObservation(self.url, retry_time))
            if retry_time <= 0:
                logger.info(f"{self.url}: closed")
                return

            logger.info(f"{self.url}: closed, reconnecting in {retry_time}s")
            try:
                await asyncio.wait_for(self._closing.wait(), timeout=retry_time)
                return
            except asyncio.TimeoutError:
                pass
            connected = await self._connect()

    async def _receive(self) -> None:
        ws = self._ws
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    await self._handle(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    await self._emit(ErrorObservation(
                        NetworkError(f"{self.url}: {ws.exception()}")
                    ))
                    break
        except (aiohttp.ClientError, ConnectionResetError) as e:
            error = ConnectionError(
                f"{self.url}: connection lost", host=self.url, reset=True, cause=e
            )
            logger.warning(str(error))
            await self._emit(ErrorObservation(error))
        finally:
            self._ws = None
            if not ws.closed:
                await ws.close()

    async def _handle(self, data: str) -> None:
        try:
            frame = json.loads(data)
        except ValueError as e:
            await self._emit(ErrorObservation(
                ProtocolError(f"{self.url}: invalid frame", cause=e)
            ))
            return

        event = parse_frame(frame, raw=self.raw)
        if event is None:
            logger.debug(f"{self.url}: ignoring changed frame without body: {frame}")
            return
        await self._emit(event)


__all__ = ["ALL_LIGHTS_GROUP_ID", "WsClient", "parse_frame"]
