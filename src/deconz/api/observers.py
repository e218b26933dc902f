"""Observation and push event types plus a small observer registry.

Clients report what they do (requests, responses, errors, websocket
lifecycle) and what the gateway pushes (changed, added, deleted, scene
recall) as typed dataclasses delivered to callbacks registered with
``subscribe()``. Callbacks may be plain functions or coroutines.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Union

logger = logging.getLogger(__name__)


# ============================================
# REST Client Observations
# ============================================

@dataclass(frozen=True)
class RequestObservation:
    request_id: int
    method: str
    path: str
    body: Optional[Any] = None


@dataclass(frozen=True)
class ResponseObservation:
    request_id: int
    status: int
    body: Any = None


@dataclass(frozen=True)
class ErrorObservation:
    """An error the client hit or the gateway reported.

    ``will_retry`` is set when the request is about to be resent.
    ``request_id`` is None for websocket errors.
    """

    error: Exception
    request_id: Optional[int] = None
    will_retry: bool = False


# ============================================
# Websocket Lifecycle Observations
# ============================================

@dataclass(frozen=True)
class ListeningObservation:
    url: str


@dataclass(frozen=True)
class ClosedObservation:
    """The websocket closed; ``retry_time`` is 0 when no reconnect follows."""

    url: str
    retry_time: float


# ============================================
# Push Events
# ============================================

@dataclass(frozen=True)
class ChangedEvent:
    """Attributes of a resource changed.

    ``path`` is ``/<rtype>/<rid>/state``, ``/<rtype>/<rid>/config`` or the
    bare ``/<rtype>/<rid>`` for attribute changes.
    """

    rtype: str
    rid: int
    path: str
    body: dict[str, Any]

    @property
    def rpath(self) -> str:
        return f"/{self.rtype}/{self.rid}"

    @property
    def scope(self) -> Optional[str]:
        """``state``, ``config`` or None for attribute changes."""
        parts = self.path.split("/")
        return parts[3] if len(parts) > 3 else None


@dataclass(frozen=True)
class AddedEvent:
    rtype: str
    rid: int
    body: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DeletedEvent:
    rtype: str
    rid: int


@dataclass(frozen=True)
class SceneRecallEvent:
    path: str


@dataclass(frozen=True)
class NotificationEvent:
    """A frame that is not one of the typed events, passed through as is."""

    raw: Any


PushEvent = Union[ChangedEvent, AddedEvent, DeletedEvent, SceneRecallEvent, NotificationEvent]

Callback = Callable[[Any], Union[None, Awaitable[None]]]


class Observable:
    """Explicit observer registration with ordered delivery."""

    def __init__(self):
        self._callbacks: list[Callback] = []

    def subscribe(self, callback: Callback) -> Callable[[], None]:
        """Register a callback and return a function that removes it."""
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    async def _emit(self, event: Any) -> None:
        for callback in list(self._callbacks):
            try:
                result = callback(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception(
                    f"Observer {getattr(callback, '__name__', callback)!r} failed on "
                    f"{type(event).__name__}"
                )


__all__ = [
    "AddedEvent",
    "ChangedEvent",
    "ClosedObservation",
    "DeletedEvent",
    "ErrorObservation",
    "ListeningObservation",
    "NotificationEvent",
    "Observable",
    "PushEvent",
    "RequestObservation",
    "ResponseObservation",
    "SceneRecallEvent",
]
