"""Tests for error handling classes."""

import pytest

from flowhub.core.errors import (
    ErrorCode,
    FlowHubError,
    InstanceNotFoundError,
    InvalidDescriptorError,
    InvalidPortRangeError,
    OperationTimeoutError,
    ResourceExhaustedError,
    RuntimeUnavailableError,
    TransientRuntimeError,
)
from flowhub.core.logging_schema import ErrorClass


class TestInstanceNotFoundError:
    """Tests for InstanceNotFoundError."""

    def test_inherits_flowhub_error(self) -> None:
        """InstanceNotFoundError should inherit from FlowHubError."""
        exc = InstanceNotFoundError("a")
        assert isinstance(exc, FlowHubError)
        assert isinstance(exc, Exception)

    def test_to_response(self) -> None:
        """to_response() carries the instance and operation."""
        resp = InstanceNotFoundError("01HX", operation="start").to_response()

        assert resp.error.code == "INSTANCE_NOT_FOUND"
        assert resp.error.message == "Instance not found"
        assert resp.error.instance_id == "01HX"
        assert resp.error.operation == "start"
        assert resp.error.details == []

    def test_str_includes_context(self) -> None:
        """str() lists message, instance, operation and reason."""
        exc = TransientRuntimeError("HTTP 500: boom", instance_id="a", operation="start")
        assert str(exc) == (
            "Container runtime call failed instance=a operation=start reason=HTTP 500: boom"
        )


class TestInvalidDescriptorError:
    """Tests for InvalidDescriptorError."""

    def test_all_errors_kept(self) -> None:
        """Every validation problem is reported."""
        exc = InvalidDescriptorError(["image must not be empty", "host_port out of range: 80"])

        assert exc.details() == ["image must not be empty", "host_port out of range: 80"]
        assert exc.reason == "image must not be empty; host_port out of range: 80"
        assert exc.to_response().error.details == exc.details()

    def test_empty_errors(self) -> None:
        """No errors means no reason."""
        assert InvalidDescriptorError([]).reason is None


class TestErrorCodes:
    """Tests for code, status and class of every error."""

    @pytest.mark.parametrize(
        "exc,expected_code,expected_status,expected_class",
        [
            (InstanceNotFoundError("a"), ErrorCode.INSTANCE_NOT_FOUND, 404, ErrorClass.PERMANENT),
            (ResourceExhaustedError(), ErrorCode.RESOURCE_EXHAUSTED, 409, ErrorClass.PERMANENT),
            (
                RuntimeUnavailableError(),
                ErrorCode.RUNTIME_UNAVAILABLE,
                503,
                ErrorClass.UNAVAILABLE,
            ),
            (InvalidDescriptorError(["x"]), ErrorCode.INVALID_DESCRIPTOR, 422, ErrorClass.PERMANENT),
            (OperationTimeoutError(5), ErrorCode.OPERATION_TIMEOUT, 504, ErrorClass.TIMEOUT),
            (TransientRuntimeError("x"), ErrorCode.RUNTIME_ERROR, 502, ErrorClass.TRANSIENT),
            (InvalidPortRangeError("x"), ErrorCode.INVALID_PORT_RANGE, 400, ErrorClass.PERMANENT),
        ],
    )
    def test_error_codes_and_status(
        self,
        exc: FlowHubError,
        expected_code: ErrorCode,
        expected_status: int,
        expected_class: ErrorClass,
    ) -> None:
        """Each error class should have correct code, status and class."""
        assert exc.code == expected_code
        assert exc.status_code == expected_status
        assert exc.error_class == expected_class

    def test_timeout_message(self) -> None:
        """OperationTimeoutError names its deadline."""
        exc = OperationTimeoutError(2.5, operation="stop")
        assert exc.message == "Operation timed out after 2.5s"
        assert exc.timeout == 2.5
