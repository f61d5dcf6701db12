"""Error handling module for flowhub.

This module defines error codes, exception classes, and response models.

Error Response Format:
{
    "error": {
        "code": "INSTANCE_NOT_FOUND",
        "message": "Instance not found",
        "instance_id": "01HX...",
        "operation": "start",
        "reason": null,
        "details": []
    }
}

Every error carries the instance id, the operation and the underlying
reason where known, so configuration problems (INVALID_DESCRIPTOR,
INVALID_PORT_RANGE) can be told apart from infrastructure problems
(RUNTIME_UNAVAILABLE, OPERATION_TIMEOUT, RUNTIME_ERROR).

Usage:
    from flowhub.core.errors import InstanceNotFoundError

    raise InstanceNotFoundError(instance_id, operation="start")
"""

from enum import Enum

from pydantic import BaseModel

from flowhub.core.logging_schema import ErrorClass


class ErrorCode(str, Enum):
    """Error codes."""

    INSTANCE_NOT_FOUND = "INSTANCE_NOT_FOUND"
    RESOURCE_EXHAUSTED = "RESOURCE_EXHAUSTED"
    RUNTIME_UNAVAILABLE = "RUNTIME_UNAVAILABLE"
    INVALID_DESCRIPTOR = "INVALID_DESCRIPTOR"
    OPERATION_TIMEOUT = "OPERATION_TIMEOUT"
    RUNTIME_ERROR = "RUNTIME_ERROR"
    INVALID_PORT_RANGE = "INVALID_PORT_RANGE"


class ErrorDetail(BaseModel):
    """Error detail containing code, message and context."""

    code: str
    message: str
    instance_id: str | None = None
    operation: str | None = None
    reason: str | None = None
    details: list[str] = []


class ErrorResponse(BaseModel):
    """Error response format."""

    error: ErrorDetail


class FlowHubError(Exception):
    """Base exception for flowhub.

    All flowhub specific exceptions inherit from this class.
    This enables centralized exception handling in FastAPI.

    Attributes:
        code: The error code from ErrorCode enum
        message: Human-readable error message
        status_code: HTTP status code to return
        instance_id: Instance the failure relates to, if any
        operation: Lifecycle/monitoring operation that failed
        reason: Underlying cause (runtime message, exception text)
    """

    error_class: ErrorClass = ErrorClass.PERMANENT

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        status_code: int,
        *,
        instance_id: str | None = None,
        operation: str | None = None,
        reason: str | None = None,
    ) -> None:
        self.code = code
        self.message = message
        self.status_code = status_code
        self.instance_id = instance_id
        self.operation = operation
        self.reason = reason
        super().__init__(message)

    def __str__(self) -> str:
        parts = [self.message]
        if self.instance_id:
            parts.append(f"instance={self.instance_id}")
        if self.operation:
            parts.append(f"operation={self.operation}")
        if self.reason:
            parts.append(f"reason={self.reason}")
        return " ".join(parts)

    def details(self) -> list[str]:
        return []

    def to_response(self) -> ErrorResponse:
        """Convert exception to ErrorResponse model."""
        return ErrorResponse(
            error=ErrorDetail(
                code=self.code.value,
                message=self.message,
                instance_id=self.instance_id,
                operation=self.operation,
                reason=self.reason,
                details=self.details(),
            )
        )


class InstanceNotFoundError(FlowHubError):
    """404 Not Found - Unknown instance id."""

    def __init__(
        self,
        instance_id: str | None = None,
        *,
        operation: str | None = None,
        message: str = "Instance not found",
    ) -> None:
        super().__init__(
            ErrorCode.INSTANCE_NOT_FOUND,
            message,
            404,
            instance_id=instance_id,
            operation=operation,
        )


class ResourceExhaustedError(FlowHubError):
    """409 Conflict - No free port left in the configured range."""

    def __init__(
        self,
        message: str = "No available ports",
        *,
        instance_id: str | None = None,
        operation: str | None = "create",
    ) -> None:
        super().__init__(
            ErrorCode.RESOURCE_EXHAUSTED,
            message,
            409,
            instance_id=instance_id,
            operation=operation,
        )


class RuntimeUnavailableError(FlowHubError):
    """503 Service Unavailable - Container runtime unreachable."""

    error_class = ErrorClass.UNAVAILABLE

    def __init__(
        self,
        message: str = "Container runtime is not available",
        *,
        instance_id: str | None = None,
        operation: str | None = None,
        reason: str | None = None,
    ) -> None:
        super().__init__(
            ErrorCode.RUNTIME_UNAVAILABLE,
            message,
            503,
            instance_id=instance_id,
            operation=operation,
            reason=reason,
        )


class InvalidDescriptorError(FlowHubError):
    """422 Unprocessable Entity - Descriptor failed validation.

    Carries every validation problem, not only the first one.
    """

    def __init__(
        self,
        errors: list[str],
        *,
        instance_id: str | None = None,
        operation: str | None = "start",
        message: str = "Instance descriptor is invalid",
    ) -> None:
        self.errors = list(errors)
        super().__init__(
            ErrorCode.INVALID_DESCRIPTOR,
            message,
            422,
            instance_id=instance_id,
            operation=operation,
            reason="; ".join(self.errors) or None,
        )

    def details(self) -> list[str]:
        return list(self.errors)


class OperationTimeoutError(FlowHubError):
    """504 Gateway Timeout - Bounded runtime call exceeded its deadline."""

    error_class = ErrorClass.TIMEOUT

    def __init__(
        self,
        timeout: float,
        *,
        instance_id: str | None = None,
        operation: str | None = None,
        message: str | None = None,
    ) -> None:
        self.timeout = timeout
        super().__init__(
            ErrorCode.OPERATION_TIMEOUT,
            message or f"Operation timed out after {timeout:g}s",
            504,
            instance_id=instance_id,
            operation=operation,
            reason=f"deadline {timeout:g}s exceeded",
        )


class TransientRuntimeError(FlowHubError):
    """502 Bad Gateway - Runtime call failed for any other reason."""

    error_class = ErrorClass.TRANSIENT

    def __init__(
        self,
        reason: str,
        *,
        instance_id: str | None = None,
        operation: str | None = None,
        message: str = "Container runtime call failed",
    ) -> None:
        super().__init__(
            ErrorCode.RUNTIME_ERROR,
            message,
            502,
            instance_id=instance_id,
            operation=operation,
            reason=reason,
        )


class InvalidPortRangeError(FlowHubError):
    """400 Bad Request - Rejected port range."""

    def __init__(self, message: str) -> None:
        super().__init__(
            ErrorCode.INVALID_PORT_RANGE,
            message,
            400,
            operation="set_port_range",
        )
