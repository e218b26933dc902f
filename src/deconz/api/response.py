"""Gateway response envelope.

Writes to the gateway answer with a list of fragments::

    [
        {"success": {"/lights/1/state/on": true}},
        {"success": {"/lights/1/state/bri": 200}},
        {"error": {"type": 7, "address": "/lights/1/state/ct",
                   "description": "invalid value"}}
    ]

``ApiResponse.from_body`` merges the success fragments into one nested
object keyed by path segments and collects the error fragments. Reads
answer with a plain JSON object which is kept as ``body``.
"""
from dataclasses import dataclass, field
from typing import Any, Optional

from .exceptions import GatewayApiError, gateway_error_from_fragment


def _split(path: str) -> list[str]:
    return [part for part in path.split("/") if part]


def project(value: Any, segments: list[str]) -> Any:
    """Walk ``segments`` into nested dicts, returning None when absent."""
    for segment in segments:
        if not isinstance(value, dict) or segment not in value:
            return None
        value = value[segment]
    return value


@dataclass
class ApiResponse:
    """Parsed gateway response.

    Attributes:
        status: HTTP status code
        body: Decoded JSON body
        success: Nested success object built from the envelope
        errors: Error fragments as GatewayApiError instances
    """

    status: int = 200
    body: Any = None
    success: dict[str, Any] = field(default_factory=dict)
    errors: list[GatewayApiError] = field(default_factory=list)

    @classmethod
    def from_body(
        cls,
        body: Any,
        status: int = 200,
        endpoint: Optional[str] = None,
        method: Optional[str] = None,
    ) -> "ApiResponse":
        response = cls(status=status, body=body)
        if not isinstance(body, list):
            return response

        for fragment in body:
            if not isinstance(fragment, dict):
                continue
            if "success" in fragment:
                response._merge_success(fragment["success"])
            if "error" in fragment and isinstance(fragment["error"], dict):
                response.errors.append(
                    gateway_error_from_fragment(fragment["error"], endpoint, method)
                )
        return response

    def _merge_success(self, fragment: Any) -> None:
        if not isinstance(fragment, dict):
            return
        for address, value in fragment.items():
            # Plain keys such as {"username": ...} or {"id": "12"} have no path
            segments = _split(str(address))
            if not segments:
                continue
            node = self.success
            for segment in segments[:-1]:
                child = node.get(segment)
                if not isinstance(child, dict):
                    child = {}
                    node[segment] = child
                node = child
            node[segments[-1]] = value

    def success_at(self, path: str) -> Any:
        """Return the success value stored under ``path``."""
        return project(self.success, _split(path))

    @property
    def critical_errors(self) -> list[GatewayApiError]:
        return [error for error in self.errors if not error.non_critical]

    @property
    def ok(self) -> bool:
        return not self.critical_errors


__all__ = ["ApiResponse", "project"]
