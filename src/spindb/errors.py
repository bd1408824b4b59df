"""Error handling module for spindb.

This module defines error codes and exception classes.

Error Detail Format:
{
    "code": "INSTANCE_NOT_FOUND",
    "message": "Database 'orders' not found"
}

Usage:
    from spindb.errors import InstanceNotFoundError, ValidationError

    # Raise with default message
    raise InstanceNotFoundError()

    # Raise with custom message, chaining the lower-layer cause
    raise ContainerOperationError("stop spindb-postgres-orders: 500") from exc
"""

from enum import Enum

from pydantic import BaseModel


class ErrorCode(str, Enum):
    """Error codes."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    INFRASTRUCTURE_UNAVAILABLE = "INFRASTRUCTURE_UNAVAILABLE"
    IMAGE_PULL_FAILED = "IMAGE_PULL_FAILED"
    CONTAINER_CREATE_FAILED = "CONTAINER_CREATE_FAILED"
    CONTAINER_OPERATION_FAILED = "CONTAINER_OPERATION_FAILED"
    PROVISIONING_FAILED = "PROVISIONING_FAILED"
    READINESS_TIMEOUT = "READINESS_TIMEOUT"
    CONNECTION_FAILED = "CONNECTION_FAILED"
    INSTANCE_NOT_FOUND = "INSTANCE_NOT_FOUND"
    ENVIRONMENT_NOT_FOUND = "ENVIRONMENT_NOT_FOUND"
    CONTAINER_NOT_FOUND = "CONTAINER_NOT_FOUND"
    MEMBER_NOT_FOUND = "MEMBER_NOT_FOUND"
    ENVIRONMENT_EXISTS = "ENVIRONMENT_EXISTS"
    ENVIRONMENT_NOT_EMPTY = "ENVIRONMENT_NOT_EMPTY"
    ENVIRONMENT_PROTECTED = "ENVIRONMENT_PROTECTED"
    UNSUPPORTED_OPERATION = "UNSUPPORTED_OPERATION"
    PORT_RANGE_EXHAUSTED = "PORT_RANGE_EXHAUSTED"
    REGISTRY_ERROR = "REGISTRY_ERROR"


class ErrorDetail(BaseModel):
    """Error detail containing code and message."""

    code: str
    message: str


class SpinDBError(Exception):
    """Base exception for spindb.

    All spindb specific exceptions inherit from this class so callers can
    catch the whole taxonomy at the orchestration boundary.

    Attributes:
        code: The error code from ErrorCode enum
        message: Human-readable error message
    """

    def __init__(self, code: ErrorCode, message: str) -> None:
        self.code = code
        self.message = message
        super().__init__(message)

    def to_detail(self) -> ErrorDetail:
        """Convert exception to ErrorDetail model."""
        return ErrorDetail(code=self.code.value, message=self.message)


# =============================================================================
# Input
# =============================================================================


class ValidationError(SpinDBError):
    """Bad or missing input. Raised before any side effect."""

    def __init__(self, message: str = "Invalid input") -> None:
        super().__init__(ErrorCode.VALIDATION_ERROR, message)


class UnsupportedOperationError(SpinDBError):
    """Operation not supported by the instance's engine kind."""

    def __init__(self, message: str = "Operation not supported for this engine") -> None:
        super().__init__(ErrorCode.UNSUPPORTED_OPERATION, message)


# =============================================================================
# Infrastructure
# =============================================================================


class InfrastructureUnavailableError(SpinDBError):
    """Container control-plane unreachable. Fatal to the call, not retried."""

    def __init__(self, message: str = "Docker daemon is not reachable") -> None:
        super().__init__(ErrorCode.INFRASTRUCTURE_UNAVAILABLE, message)


class ImagePullError(SpinDBError):
    """Image pull failed."""

    def __init__(self, message: str = "Image pull failed") -> None:
        super().__init__(ErrorCode.IMAGE_PULL_FAILED, message)


class ContainerCreateError(SpinDBError):
    """Container creation failed (e.g. name collision)."""

    def __init__(self, message: str = "Container creation failed") -> None:
        super().__init__(ErrorCode.CONTAINER_CREATE_FAILED, message)


class ContainerOperationError(SpinDBError):
    """start/stop/remove/list/logs failed on the control-plane."""

    def __init__(self, message: str = "Container operation failed") -> None:
        super().__init__(ErrorCode.CONTAINER_OPERATION_FAILED, message)


class PortRangeExhaustedError(SpinDBError):
    """No bindable host port in the probed range."""

    def __init__(self, message: str = "No available port found") -> None:
        super().__init__(ErrorCode.PORT_RANGE_EXHAUSTED, message)


class RegistryError(SpinDBError):
    """Persisted state could not be read or written."""

    def __init__(self, message: str = "Registry file is unreadable") -> None:
        super().__init__(ErrorCode.REGISTRY_ERROR, message)


# =============================================================================
# Provisioning
# =============================================================================


class ProvisioningError(SpinDBError):
    """A provisioning step from container creation onward failed.

    Attributes:
        state: Name of the provisioning state that failed
        container_id: Container created before the failure, if any
    """

    def __init__(
        self,
        message: str = "Provisioning failed",
        state: str | None = None,
        container_id: str | None = None,
    ) -> None:
        self.state = state
        self.container_id = container_id
        super().__init__(ErrorCode.PROVISIONING_FAILED, message)


class ReadinessTimeoutError(SpinDBError):
    """Instance did not accept connections before the deadline.

    The container is deliberately left running for inspection.
    """

    def __init__(
        self,
        message: str = "Database did not become ready in time",
        container_id: str | None = None,
    ) -> None:
        self.container_id = container_id
        super().__init__(ErrorCode.READINESS_TIMEOUT, message)


class ConnectionFailedError(SpinDBError):
    """A one-shot connectivity check failed."""

    def __init__(self, message: str = "Connection failed") -> None:
        super().__init__(ErrorCode.CONNECTION_FAILED, message)


# =============================================================================
# Lookup
# =============================================================================


class NotFoundError(SpinDBError):
    """Base for registry, environment and control-plane misses."""


class InstanceNotFoundError(NotFoundError):
    """Instance not present in the registry."""

    def __init__(self, message: str = "Database not found") -> None:
        super().__init__(ErrorCode.INSTANCE_NOT_FOUND, message)


class EnvironmentNotFoundError(NotFoundError):
    """Environment file does not exist."""

    def __init__(self, message: str = "Environment not found") -> None:
        super().__init__(ErrorCode.ENVIRONMENT_NOT_FOUND, message)


class ContainerNotFoundError(NotFoundError):
    """No container matches the given id, id-prefix or name."""

    def __init__(self, message: str = "Container not found") -> None:
        super().__init__(ErrorCode.CONTAINER_NOT_FOUND, message)


class MemberNotFoundError(NotFoundError):
    """Database is not a member of the environment."""

    def __init__(self, message: str = "Database not found in environment") -> None:
        super().__init__(ErrorCode.MEMBER_NOT_FOUND, message)


# =============================================================================
# Environments
# =============================================================================


class EnvironmentExistsError(SpinDBError):
    """Environment name already taken."""

    def __init__(self, message: str = "Environment already exists") -> None:
        super().__init__(ErrorCode.ENVIRONMENT_EXISTS, message)


class EnvironmentNotEmptyError(SpinDBError):
    """Environment still has members and force was not given."""

    def __init__(self, message: str = "Environment contains databases") -> None:
        super().__init__(ErrorCode.ENVIRONMENT_NOT_EMPTY, message)


class ProtectedEnvironmentError(SpinDBError):
    """The default environment cannot be deleted."""

    def __init__(self, message: str = "Cannot delete the default environment") -> None:
        super().__init__(ErrorCode.ENVIRONMENT_PROTECTED, message)


def wrap_error(exc: SpinDBError, context: str) -> SpinDBError:
    """Return a new exception of the same type with context prefixed.

    Usage:
        except SpinDBError as e:
            raise wrap_error(e, "failed to stop database 'orders'") from e
    """
    return type(exc)(f"{context}: {exc.message}")
