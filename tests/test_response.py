#!/usr/bin/env python3
"""Tests for the gateway response envelope."""
import sys

sys.path.insert(0, str(__file__).rsplit("/tests", 1)[0])
from src.deconz.api.exceptions import (
    GatewayApiError,
    GatewayLockedError,
    UnauthorizedError,
    gateway_error_from_fragment,
)
from src.deconz.api.response import ApiResponse, project


class TestProject:
    def test_nested_value(self):
        assert project({"state": {"on": True}}, ["state", "on"]) is True

    def test_missing_key(self):
        assert project({"state": {}}, ["state", "on"]) is None

    def test_through_non_dict(self):
        assert project({"state": 1}, ["state", "on"]) is None

    def test_no_segments(self):
        assert project({"a": 1}, []) == {"a": 1}


class TestApiResponse:
    """Test merging of success fragments and collection of errors."""

    def test_plain_object_body(self):
        response = ApiResponse.from_body({"1": {"name": "Light"}})

        assert response.body == {"1": {"name": "Light"}}
        assert response.success == {}
        assert response.errors == []
        assert response.ok

    def test_success_fragments_merge_by_path(self):
        response = ApiResponse.from_body([
            {"success": {"/lights/1/state/on": True}},
            {"success": {"/lights/1/state/bri": 254}},
            {"success": {"/lights/2/name": "Hall"}},
        ])

        assert response.success == {
            "lights": {
                "1": {"state": {"on": True, "bri": 254}},
                "2": {"name": "Hall"},
            }
        }
        assert response.success_at("/lights/1/state/bri") == 254
        assert response.success_at("/lights/3") is None

    def test_plain_success_key(self):
        """POST /api answers with {"success": {"username": ...}}."""
        response = ApiResponse.from_body([{"success": {"username": "ABCDEF"}}])

        assert response.success_at("/username") == "ABCDEF"

    def test_success_string_is_ignored(self):
        response = ApiResponse.from_body([{"success": "/lights/1 deleted."}])

        assert response.success == {}

    def test_errors_are_collected(self):
        response = ApiResponse.from_body(
            [
                {"success": {"/lights/1/state/on": True}},
                {"error": {"type": 7, "address": "/lights/1/state/ct", "description": "invalid value"}},
                {"error": {"type": 201, "address": "/lights/1/state/bri", "description": "device is off"}},
            ],
            status=400,
            endpoint="/lights/1/state",
            method="PUT",
        )

        assert response.status == 400
        assert [error.type for error in response.errors] == [7, 201]
        assert all(error.non_critical for error in response.errors)
        assert response.critical_errors == []
        assert response.ok
        assert response.errors[0].endpoint == "/lights/1/state"
        assert response.errors[0].method == "PUT"

    def test_critical_error(self):
        response = ApiResponse.from_body([
            {"error": {"type": 3, "address": "/lights/9", "description": "resource not available"}},
        ])

        assert len(response.critical_errors) == 1
        assert not response.ok

    def test_ignores_unexpected_fragments(self):
        response = ApiResponse.from_body(["junk", {"other": 1}, {"error": "text"}])

        assert response.success == {}
        assert response.errors == []


class TestGatewayErrorFromFragment:
    def test_known_types(self):
        assert isinstance(gateway_error_from_fragment({"type": 1}), UnauthorizedError)
        assert isinstance(gateway_error_from_fragment({"type": 101}), GatewayLockedError)

    def test_unknown_type(self):
        error = gateway_error_from_fragment({"type": 3, "address": "/x", "description": "gone"})

        assert type(error) is GatewayApiError
        assert error.type == 3
        assert error.address == "/x"
        assert "gone" in str(error)

    def test_non_numeric_type(self):
        assert gateway_error_from_fragment({"type": "bad"}).type == 0

    def test_non_critical_types(self):
        for error_type in (6, 7, 8, 201):
            assert gateway_error_from_fragment({"type": error_type}).non_critical
        assert not gateway_error_from_fragment({"type": 901}).non_critical
