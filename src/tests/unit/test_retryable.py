"""Tests for retryable error classification and retry logic."""

import asyncio
import time

import httpx
import pytest

from flowhub.core.errors import (
    ErrorCode,
    InstanceNotFoundError,
    OperationTimeoutError,
    RuntimeUnavailableError,
    TransientRuntimeError,
)
from flowhub.core.logging_schema import ErrorClass
from flowhub.core.retryable import (
    VolumeInUseError,
    bounded,
    classify_error,
    is_httpx_retryable,
    is_retryable,
    to_flowhub_error,
    with_retry,
)


def _status_error(status: int, body: dict | None = None) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "http://docker/containers/create")
    response = httpx.Response(status, request=request, json=body or {})
    return httpx.HTTPStatusError("status error", request=request, response=response)


class TestHttpxRetryable:
    """Tests for httpx error classification."""

    def test_connect_error_is_retryable(self) -> None:
        """ConnectError should be retryable."""
        exc = httpx.ConnectError("connection failed")
        assert is_httpx_retryable(exc) is True
        assert is_retryable(exc) is True

    def test_read_timeout_is_retryable(self) -> None:
        """ReadTimeout should be retryable."""
        assert is_httpx_retryable(httpx.ReadTimeout("read timeout")) is True

    def test_4xx_not_retryable(self) -> None:
        """4xx client errors should not be retryable."""
        assert is_httpx_retryable(_status_error(400)) is False
        assert is_httpx_retryable(_status_error(404)) is False

    def test_429_is_retryable(self) -> None:
        """429 rate limit should be retryable."""
        assert is_httpx_retryable(_status_error(429)) is True

    def test_5xx_is_retryable(self) -> None:
        """5xx server errors should be retryable."""
        assert is_httpx_retryable(_status_error(500)) is True
        assert is_httpx_retryable(_status_error(503)) is True

    def test_other_exceptions_not_retryable(self) -> None:
        """Plain exceptions are not httpx-retryable."""
        assert is_httpx_retryable(ValueError("bad")) is False


class TestVolumeInUseError:
    """Tests for VolumeInUseError classification."""

    def test_volume_in_use_is_retryable(self) -> None:
        """A volume still attached should be retried."""
        exc = VolumeInUseError("volume in use")
        assert is_retryable(exc) is True
        assert classify_error(exc) == ErrorClass.TRANSIENT


class TestClassifyError:
    """Tests for classify_error function."""

    def test_asyncio_timeout(self) -> None:
        """asyncio.TimeoutError is a timeout."""
        assert classify_error(asyncio.TimeoutError()) == ErrorClass.TIMEOUT

    def test_connect_error_is_unavailable(self) -> None:
        """An unreachable runtime is UNAVAILABLE."""
        assert classify_error(httpx.ConnectError("refused")) == ErrorClass.UNAVAILABLE

    def test_5xx_is_transient(self) -> None:
        """Server errors are TRANSIENT."""
        assert classify_error(_status_error(500)) == ErrorClass.TRANSIENT

    def test_4xx_is_permanent(self) -> None:
        """Client errors are PERMANENT."""
        assert classify_error(_status_error(404)) == ErrorClass.PERMANENT

    def test_flowhub_error_keeps_its_class(self) -> None:
        """Taxonomy errors carry their own class."""
        assert classify_error(RuntimeUnavailableError()) == ErrorClass.UNAVAILABLE
        assert classify_error(InstanceNotFoundError("a")) == ErrorClass.PERMANENT

    def test_unknown_error_is_permanent(self) -> None:
        """Unknown errors are not retried."""
        assert classify_error(ValueError("unknown")) == ErrorClass.PERMANENT


class TestToFlowhubError:
    """Tests for mapping raw exceptions onto the error taxonomy."""

    def test_passthrough(self) -> None:
        """FlowHubError instances are returned unchanged."""
        exc = InstanceNotFoundError("a")
        assert to_flowhub_error(exc) is exc

    def test_timeout(self) -> None:
        """Timeouts become OperationTimeoutError with the deadline."""
        error = to_flowhub_error(
            asyncio.TimeoutError(), instance_id="a", operation="start", timeout=30
        )

        assert isinstance(error, OperationTimeoutError)
        assert error.code == ErrorCode.OPERATION_TIMEOUT
        assert error.message == "Operation timed out after 30s"
        assert error.instance_id == "a"

    def test_unreachable(self) -> None:
        """Connection failures become RuntimeUnavailableError."""
        error = to_flowhub_error(httpx.ConnectError("no such socket"), operation="start")

        assert isinstance(error, RuntimeUnavailableError)
        assert error.status_code == 503
        assert error.reason == "no such socket"

    def test_http_error_reason_uses_engine_message(self) -> None:
        """Docker's JSON message becomes the reason."""
        error = to_flowhub_error(
            _status_error(500, {"message": "port is already allocated"}), operation="start"
        )

        assert isinstance(error, TransientRuntimeError)
        assert error.reason == "HTTP 500: port is already allocated"

    async def test_bounded_maps_timeout(self) -> None:
        """bounded() enforces the deadline."""
        with pytest.raises(OperationTimeoutError) as exc_info:
            await bounded(asyncio.sleep(1), 0.01, instance_id="a", operation="stop")
        assert exc_info.value.operation == "stop"

    async def test_bounded_returns_result(self) -> None:
        """bounded() passes results through."""

        async def answer() -> int:
            return 42

        assert await bounded(answer(), 1) == 42


class TestWithRetry:
    """Tests for with_retry function."""

    @pytest.mark.asyncio
    async def test_success_on_first_attempt(self) -> None:
        """Should return result on first successful attempt."""
        call_count = 0

        async def success_func() -> str:
            nonlocal call_count
            call_count += 1
            return "success"

        result = await with_retry(success_func, max_retries=3)
        assert result == "success"
        assert call_count == 1

    @pytest.mark.asyncio
    async def test_retry_on_retryable_error(self) -> None:
        """Should retry on retryable errors."""
        call_count = 0

        async def failing_then_success() -> str:
            nonlocal call_count
            call_count += 1
            if call_count < 3:
                raise VolumeInUseError("volume in use")
            return "success"

        result = await with_retry(
            failing_then_success,
            max_retries=3,
            base_delay=0.01,  # Fast for testing
        )
        assert result == "success"
        assert call_count == 3

    @pytest.mark.asyncio
    async def test_no_retry_on_permanent_error(self) -> None:
        """Should not retry on permanent errors."""
        call_count = 0

        async def permanent_error() -> str:
            nonlocal call_count
            call_count += 1
            raise _status_error(404)

        with pytest.raises(httpx.HTTPStatusError):
            await with_retry(permanent_error, max_retries=3)

        assert call_count == 1  # No retry

    @pytest.mark.asyncio
    async def test_max_retries_exceeded(self) -> None:
        """Should raise after max retries exceeded."""
        call_count = 0

        async def always_fail() -> str:
            nonlocal call_count
            call_count += 1
            raise httpx.ConnectError("connection failed")

        with pytest.raises(httpx.ConnectError):
            await with_retry(always_fail, max_retries=2, base_delay=0.01)

        assert call_count == 3  # Initial + 2 retries

    @pytest.mark.asyncio
    async def test_max_delay_cap(self) -> None:
        """Delay should be capped at max_delay."""
        call_times: list[float] = []

        async def record_time_and_fail() -> str:
            call_times.append(time.monotonic())
            raise httpx.ConnectError("connection failed")

        with pytest.raises(httpx.ConnectError):
            await with_retry(
                record_time_and_fail,
                max_retries=3,
                base_delay=1.0,
                max_delay=0.1,  # Cap at 0.1s
            )

        # Jitter tops out at 150% of the cap
        for i in range(1, len(call_times)):
            assert call_times[i] - call_times[i - 1] < 0.2
