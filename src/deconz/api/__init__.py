"""deCONZ gateway API modules.

This package provides the REST and websocket clients for a deCONZ gateway.

Classes:
    ApiClient: REST client with write throttling, resend and envelope parsing
    WsClient: Websocket client with frame normalization and reconnect
    ApiResponse: Parsed response envelope
    GatewayConfig: Public gateway configuration

Exceptions:
    DeconzError: Base exception for all gateway errors
    GatewayApiError: Error fragment reported by the gateway
    GatewayLockedError: Gateway must be unlocked to create an API key
    NetworkError: Network connectivity issues
    ModelError: Resource cannot be turned into a device

Resilience:
    WriteThrottle: FIFO gate that spaces PUT requests
    PendingWrite: Changes to one resource merged while the gate is closed
    retry_fixed: Fixed-delay resend of transient failures
"""
from .client import ApiClient, ClientOptions, fetch_gateway_config, split_resource
from .exceptions import (
    NON_CRITICAL_ERROR_TYPES,
    APIError,
    AuthenticationError,
    ConfigurationError,
    ConnectionError,
    DeconzError,
    DuplicateResourceError,
    ErrorCollector,
    GatewayApiError,
    GatewayLockedError,
    GatewayOverloadError,
    InvalidArgumentError,
    MalformedResourceError,
    ModelError,
    NetworkError,
    NotFoundError,
    PartialSyncError,
    ProtocolError,
    ResourceMismatchError,
    ServiceUnavailableError,
    SyncError,
    TimeoutError,
    UnauthorizedError,
)
from .models import GatewayConfig
from .observers import (
    AddedEvent,
    ChangedEvent,
    ClosedObservation,
    DeletedEvent,
    ErrorObservation,
    ListeningObservation,
    NotificationEvent,
    Observable,
    RequestObservation,
    ResponseObservation,
    SceneRecallEvent,
)
from .resilience import PendingWrite, WriteThrottle, count_radio_messages, retry_fixed
from .response import ApiResponse
from .websocket import WsClient, parse_frame

__all__ = [
    # Clients
    "ApiClient",
    "ClientOptions",
    "WsClient",
    "fetch_gateway_config",
    "parse_frame",
    "split_resource",
    # Models
    "ApiResponse",
    "GatewayConfig",
    # Observations
    "AddedEvent",
    "ChangedEvent",
    "ClosedObservation",
    "DeletedEvent",
    "ErrorObservation",
    "ListeningObservation",
    "NotificationEvent",
    "Observable",
    "RequestObservation",
    "ResponseObservation",
    "SceneRecallEvent",
    # Resilience
    "PendingWrite",
    "WriteThrottle",
    "count_radio_messages",
    "retry_fixed",
    # Exceptions
    "NON_CRITICAL_ERROR_TYPES",
    "APIError",
    "AuthenticationError",
    "ConfigurationError",
    "ConnectionError",
    "DeconzError",
    "DuplicateResourceError",
    "ErrorCollector",
    "GatewayApiError",
    "GatewayLockedError",
    "GatewayOverloadError",
    "InvalidArgumentError",
    "MalformedResourceError",
    "ModelError",
    "NetworkError",
    "NotFoundError",
    "PartialSyncError",
    "ProtocolError",
    "ResourceMismatchError",
    "ServiceUnavailableError",
    "SyncError",
    "TimeoutError",
    "UnauthorizedError",
]
