#!/usr/bin/env python3
"""Exception Hierarchy for the deCONZ gateway client and sync engine.

This module provides a structured exception hierarchy for handling errors
across the REST client, the websocket client, the resource model and the
synchronization engine.

Design Principles:
    - All exceptions inherit from DeconzError base class
    - Exceptions preserve context (original error, timestamps, details)
    - Exceptions are categorized by recoverability
    - Gateway error fragments keep their numeric type and address

Exception Hierarchy:
    DeconzError (base)
    ├── ConfigurationError (unrecoverable - fix config)
    ├── InvalidArgumentError (caller error)
    ├── AuthenticationError (API key missing, revoked or not granted)
    ├── APIError (HTTP status outside the gateway envelope)
    │   ├── NotFoundError
    │   └── ServiceUnavailableError (503, retried)
    ├── GatewayApiError (error fragment in the response envelope)
    │   ├── UnauthorizedError (type 1)
    │   ├── GatewayLockedError (type 101)
    │   └── GatewayOverloadError (type 901, retried)
    ├── NetworkError (recoverable - retry)
    │   ├── ConnectionError
    │   ├── TimeoutError
    │   └── ProtocolError
    ├── ModelError (structural, never retried)
    │   ├── MalformedResourceError
    │   ├── DuplicateResourceError
    │   └── ResourceMismatchError
    └── SyncError (poll cycle failed)
        └── PartialSyncError

Author: deCONZ Sync Team
"""
from datetime import datetime
from typing import Any, Optional

# Gateway error types that are reported but do not fail a request
NON_CRITICAL_ERROR_TYPES = frozenset({6, 7, 8, 201})

# ============================================
# Base Exception
# ============================================

class DeconzError(Exception):
    """Base exception for all gateway-related errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g., "GATEWAY_LOCKED")
        details: Additional context as a dictionary
        timestamp: When the error occurred
        cause: The original exception that caused this error
        recoverable: Whether this error might be recoverable with retry
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        recoverable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__.upper()
        self.details = details or {}
        self.timestamp = datetime.utcnow()
        self.cause = cause
        self.recoverable = recoverable

        if cause:
            self.__cause__ = cause

    def __str__(self) -> str:
        parts = [self.message]
        if self.code:
            parts.insert(0, f"[{self.code}]")
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            parts.append(f"({detail_str})")
        return " ".join(parts)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code!r}, "
            f"details={self.details!r}, "
            f"recoverable={self.recoverable})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
            "recoverable": self.recoverable,
            "cause": str(self.cause) if self.cause else None,
        }


# ============================================
# Caller Errors
# ============================================

class ConfigurationError(DeconzError):
    """Raised when configuration is missing or invalid."""

    def __init__(
        self,
        message: str,
        missing_keys: Optional[list[str]] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if missing_keys:
            details["missing_keys"] = missing_keys
        super().__init__(
            message,
            code="CONFIGURATION_ERROR",
            details=details,
            recoverable=False,
            **kwargs,
        )


class InvalidArgumentError(DeconzError):
    """Raised when a caller passes a malformed path or body."""

    def __init__(self, message: str, argument: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if argument:
            details["argument"] = argument
        super().__init__(
            message,
            code="INVALID_ARGUMENT",
            details=details,
            recoverable=False,
            **kwargs,
        )


class AuthenticationError(DeconzError):
    """Raised when no valid API key is available for the gateway."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("code", "AUTHENTICATION_ERROR")
        kwargs.setdefault("recoverable", False)
        super().__init__(message, **kwargs)


# ============================================
# HTTP Errors
# ============================================

class APIError(DeconzError):
    """Raised for HTTP statuses the gateway envelope does not cover.

    Attributes:
        status_code: HTTP status code
        endpoint: API path that was called
        method: HTTP method
    """

    def __init__(
        self,
        message: str,
        status_code: int,
        endpoint: Optional[str] = None,
        response_body: Optional[str] = None,
        method: str = "GET",
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        details["status_code"] = status_code
        if endpoint:
            details["endpoint"] = endpoint
        if method:
            details["method"] = method
        if response_body:
            details["response_body"] = response_body[:500]

        kwargs.setdefault("recoverable", status_code == 503)
        kwargs.setdefault("code", f"API_ERROR_{status_code}")

        super().__init__(message, details=details, **kwargs)
        self.status_code = status_code
        self.endpoint = endpoint
        self.response_body = response_body
        self.method = method


class NotFoundError(APIError):
    """Raised when a path or a projected sub-path does not exist."""

    def __init__(self, message: str = "not found", **kwargs):
        kwargs.setdefault("status_code", 404)
        super().__init__(
            message,
            code="NOT_FOUND",
            recoverable=False,
            **kwargs,
        )


class ServiceUnavailableError(APIError):
    """Raised when the gateway answers HTTP 503."""

    def __init__(self, message: str = "gateway service unavailable", **kwargs):
        kwargs.setdefault("status_code", 503)
        super().__init__(
            message,
            code="SERVICE_UNAVAILABLE",
            recoverable=True,
            **kwargs,
        )


# ============================================
# Gateway Envelope Errors
# ============================================

class GatewayApiError(DeconzError):
    """An error fragment from the gateway response envelope.

    The gateway answers every request with a list of ``{"success": ...}``
    and ``{"error": {"type", "address", "description"}}`` fragments. Error
    types 6, 7, 8 and 201 are non-critical: they are reported but do not
    fail the request.

    Attributes:
        type: Numeric gateway error type
        address: Resource address the error refers to
        description: Gateway supplied description
        endpoint: API path of the request
    """

    def __init__(
        self,
        type: int,
        description: str = "",
        address: Optional[str] = None,
        endpoint: Optional[str] = None,
        method: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        details["type"] = type
        if address:
            details["address"] = address
        if endpoint:
            details["endpoint"] = endpoint
        if method:
            details["method"] = method
        kwargs.setdefault("code", f"GATEWAY_ERROR_{type}")
        super().__init__(
            f"gateway error {type}: {description}" if description else f"gateway error {type}",
            details=details,
            **kwargs,
        )
        self.type = type
        self.address = address
        self.description = description
        self.endpoint = endpoint
        self.method = method

    @property
    def non_critical(self) -> bool:
        return self.type in NON_CRITICAL_ERROR_TYPES


class UnauthorizedError(GatewayApiError):
    """Gateway error type 1: the API key is not (or no longer) valid."""

    def __init__(self, description: str = "unauthorized user", **kwargs):
        super().__init__(1, description, code="UNAUTHORIZED", **kwargs)


class GatewayLockedError(GatewayApiError):
    """Gateway error type 101: the gateway must be unlocked to grant a key."""

    def __init__(self, description: str = "link button not pressed", **kwargs):
        super().__init__(101, description, code="GATEWAY_LOCKED", recoverable=True, **kwargs)


class GatewayOverloadError(GatewayApiError):
    """Gateway error type 901: internal error, usually an overloaded gateway."""

    def __init__(self, description: str = "internal error", **kwargs):
        super().__init__(901, description, code="GATEWAY_OVERLOAD", recoverable=True, **kwargs)


_GATEWAY_ERRORS = {
    1: UnauthorizedError,
    101: GatewayLockedError,
    901: GatewayOverloadError,
}


def gateway_error_from_fragment(
    fragment: dict[str, Any],
    endpoint: Optional[str] = None,
    method: Optional[str] = None,
) -> GatewayApiError:
    """Build the matching GatewayApiError for an envelope error fragment."""
    try:
        error_type = int(fragment.get("type", 0))
    except (TypeError, ValueError):
        error_type = 0
    description = str(fragment.get("description", ""))
    address = fragment.get("address")

    error_cls = _GATEWAY_ERRORS.get(error_type)
    if error_cls is not None:
        return error_cls(description, address=address, endpoint=endpoint, method=method)
    return GatewayApiError(
        error_type, description, address=address, endpoint=endpoint, method=method
    )


# ============================================
# Network Errors (Usually Recoverable)
# ============================================

class NetworkError(DeconzError):
    """Base class for transport-level errors."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("recoverable", True)
        super().__init__(message, **kwargs)


class ConnectionError(NetworkError):
    """Raised when the connection to the gateway fails.

    Attributes:
        reset: True when an established connection was reset by the peer
    """

    def __init__(
        self,
        message: str = "Failed to connect to gateway",
        host: Optional[str] = None,
        reset: bool = False,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if host:
            details["host"] = host
        if reset:
            details["reset"] = True
        super().__init__(
            message,
            code="CONNECTION_RESET" if reset else "CONNECTION_ERROR",
            details=details,
            **kwargs,
        )
        self.reset = reset


class TimeoutError(NetworkError):
    """Raised when a request times out."""

    def __init__(
        self,
        message: str = "Request timed out",
        timeout_seconds: Optional[float] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if timeout_seconds:
            details["timeout_seconds"] = timeout_seconds
        super().__init__(
            message,
            code="TIMEOUT_ERROR",
            details=details,
            **kwargs,
        )


class ProtocolError(NetworkError):
    """Raised when the gateway sends a body that is not valid JSON."""

    def __init__(self, message: str = "Malformed gateway response", **kwargs):
        super().__init__(message, code="PROTOCOL_ERROR", recoverable=False, **kwargs)


# ============================================
# Model Errors (Structural)
# ============================================

class ModelError(DeconzError):
    """Base class for errors while deriving devices from resources.

    Attributes:
        rpath: Resource path of the offending resource
    """

    def __init__(self, message: str, rpath: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if rpath:
            details["rpath"] = rpath
        kwargs.setdefault("recoverable", False)
        super().__init__(message, details=details, **kwargs)
        self.rpath = rpath


class MalformedResourceError(ModelError):
    """Raised when a resource body lacks the fields needed to identify it."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code="MALFORMED_RESOURCE", **kwargs)


class DuplicateResourceError(ModelError):
    """Raised when a device already holds a resource with the same subtype."""

    def __init__(self, device_id: str, subtype: str, **kwargs):
        super().__init__(
            f"{device_id}: duplicate subtype {subtype}",
            code="DUPLICATE_RESOURCE",
            **kwargs,
        )
        self.device_id = device_id
        self.subtype = subtype


class ResourceMismatchError(ModelError):
    """Raised when a resource cannot be combined with an existing device."""

    def __init__(self, device_id: str, message: str = "cannot combine", **kwargs):
        super().__init__(
            f"{device_id}: {message}",
            code="RESOURCE_MISMATCH",
            **kwargs,
        )
        self.device_id = device_id


# ============================================
# Sync Errors
# ============================================

class SyncError(DeconzError):
    """Base class for synchronization errors."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, **kwargs)


class PartialSyncError(SyncError):
    """Raised when some resources could not be turned into devices.

    Attributes:
        succeeded: Number of resources accepted
        failed: Number of resources rejected
        errors: List of individual errors
    """

    def __init__(
        self,
        message: str,
        succeeded: int = 0,
        failed: int = 0,
        errors: Optional[list[Exception]] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        details["succeeded"] = succeeded
        details["failed"] = failed
        if errors:
            details["error_count"] = len(errors)
            details["sample_errors"] = [str(e)[:100] for e in errors[:5]]

        super().__init__(
            message,
            code="PARTIAL_SYNC_ERROR",
            details=details,
            recoverable=False,
            **kwargs,
        )
        self.succeeded = succeeded
        self.failed = failed
        self.errors = errors or []


# ============================================
# Error Aggregation
# ============================================

class ErrorCollector:
    """Collect multiple errors for batch operations.

    Example:
        collector = ErrorCollector()
        for rpath, body in resources:
            try:
                directory.add(rpath, body)
            except ModelError as e:
                collector.add(e, context={"rpath": rpath})

        if collector.has_errors():
            logger.warning(str(collector.to_exception()))
    """

    def __init__(self, max_errors: int = 100):
        self.errors: list[tuple[Exception, dict[str, Any]]] = []
        self.max_errors = max_errors

    def add(self, error: Exception, context: Optional[dict[str, Any]] = None):
        """Add an error with optional context."""
        if len(self.errors) < self.max_errors:
            self.errors.append((error, context or {}))

    def has_errors(self) -> bool:
        return len(self.errors) > 0

    def count(self) -> int:
        return len(self.errors)

    def get_errors(self) -> list[tuple[Exception, dict[str, Any]]]:
        return list(self.errors)

    def to_exception(self, succeeded: int = 0) -> PartialSyncError:
        """Convert collected errors to a PartialSyncError."""
        if not self.errors:
            raise ValueError("No errors to convert")

        return PartialSyncError(
            message=f"{len(self.errors)} resource(s) rejected",
            succeeded=succeeded,
            failed=len(self.errors),
            errors=[e for e, _ in self.errors],
        )

    def clear(self):
        self.errors.clear()


# ============================================
# Exports
# ============================================

__all__ = [
    "NON_CRITICAL_ERROR_TYPES",
    # Base
    "DeconzError",
    # Caller
    "ConfigurationError",
    "InvalidArgumentError",
    "AuthenticationError",
    # HTTP
    "APIError",
    "NotFoundError",
    "ServiceUnavailableError",
    # Gateway envelope
    "GatewayApiError",
    "UnauthorizedError",
    "GatewayLockedError",
    "GatewayOverloadError",
    "gateway_error_from_fragment",
    # Network
    "NetworkError",
    "ConnectionError",
    "TimeoutError",
    "ProtocolError",
    # Model
    "ModelError",
    "MalformedResourceError",
    "DuplicateResourceError",
    "ResourceMismatchError",
    # Sync
    "SyncError",
    "PartialSyncError",
    # Utilities
    "ErrorCollector",
]
