"""Tests for kubedoctor.errors - ApiException mapping and error codes."""

from __future__ import annotations

import pytest
from kubernetes_asyncio.client.exceptions import ApiException

from kubedoctor.errors import (
    ClusterAccessError,
    FluxNotInstalledError,
    ForbiddenError,
    InvalidArgumentError,
    KubeDoctorError,
    MalformedResourceError,
    NotFoundError,
    UnauthorizedError,
    UnavailableError,
    from_api_exception,
)


def _api_exception(status: int, reason: str = "") -> ApiException:
    return ApiException(status=status, reason=reason)


class TestErrorCodes:
    @pytest.mark.parametrize(
        ("cls", "code"),
        [
            (KubeDoctorError, "INTERNAL_ERROR"),
            (NotFoundError, "RESOURCE_NOT_FOUND"),
            (ForbiddenError, "FORBIDDEN"),
            (UnauthorizedError, "UNAUTHORIZED"),
            (UnavailableError, "UNAVAILABLE"),
            (FluxNotInstalledError, "FLUX_NOT_INSTALLED"),
            (MalformedResourceError, "MALFORMED_RESOURCE"),
            (InvalidArgumentError, "INVALID_ARGUMENT"),
        ],
    )
    def test_error_code(self, cls: type[KubeDoctorError], code: str) -> None:
        assert cls.error_code == code

    def test_invalid_argument_is_value_error(self) -> None:
        assert issubclass(InvalidArgumentError, ValueError)

    def test_flux_not_installed_is_unavailable(self) -> None:
        assert issubclass(FluxNotInstalledError, UnavailableError)

    def test_target_joins_non_empty_parts(self) -> None:
        err = ClusterAccessError("x", kind="Node", name="n1")
        assert err.target == "Node/n1"

    def test_target_defaults_to_cluster(self) -> None:
        assert ClusterAccessError("x").target == "<cluster>"


class TestFromApiException:
    def test_404_is_not_found(self) -> None:
        err = from_api_exception(_api_exception(404), kind="Pod", namespace="default", name="web-0")
        assert isinstance(err, NotFoundError)
        assert str(err) == "Not found: Pod/default/web-0"
        assert err.name == "web-0"

    def test_401_is_unauthorized(self) -> None:
        err = from_api_exception(_api_exception(401), kind="Pod")
        assert isinstance(err, UnauthorizedError)
        assert err.error_code == "UNAUTHORIZED"

    def test_403_mentions_rbac(self) -> None:
        err = from_api_exception(_api_exception(403), kind="Secret", namespace="prod")
        assert isinstance(err, ForbiddenError)
        assert not isinstance(err, UnauthorizedError)
        assert "Check RBAC permissions" in str(err)
        assert "Secret/prod" in str(err)

    @pytest.mark.parametrize("status", [408, 504])
    def test_timeouts_are_unavailable(self, status: int) -> None:
        err = from_api_exception(_api_exception(status), kind="Node")
        assert isinstance(err, UnavailableError)
        assert str(err).startswith("Timeout reading Node")

    def test_other_status_carries_reason(self) -> None:
        err = from_api_exception(_api_exception(500, "Internal Server Error"), kind="Pod")
        assert isinstance(err, UnavailableError)
        assert str(err) == "Error reading Pod: Internal Server Error"

    def test_missing_reason_uses_status(self) -> None:
        err = from_api_exception(_api_exception(502), kind="Pod")
        assert "HTTP 502" in str(err)
