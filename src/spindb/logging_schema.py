"""Log event types for structured logging."""

from enum import StrEnum


class LogEvent(StrEnum):
    """Log event types for spindb.

    Used with logger.info/warning/error extra dict:
        logger.info("message", extra={"event": LogEvent.CONTAINER_STARTED, ...})
    """

    # Container events
    IMAGE_PULLED = "image_pulled"
    CONTAINER_CREATED = "container_created"
    CONTAINER_STARTED = "container_started"
    CONTAINER_STOPPED = "container_stopped"
    CONTAINER_REMOVED = "container_removed"

    # Provisioning
    PROVISION_STATE = "provision_state"
    PROVISION_COMPLETED = "provision_completed"
    PROVISION_FAILED = "provision_failed"
    PORT_ALLOCATED = "port_allocated"
    READINESS_WAITING = "readiness_waiting"
    READINESS_TIMEOUT = "readiness_timeout"

    # Compensation / cleanup
    CLEANUP_STARTED = "cleanup_started"
    CLEANUP_COMPLETED = "cleanup_completed"
    CLEANUP_FAILED = "cleanup_failed"

    # Instance lifecycle
    INSTANCE_DELETED = "instance_deleted"
    INSTANCE_CONNECTED = "instance_connected"
    CONNECTION_TESTED = "connection_tested"

    # Registry
    REGISTRY_SAVED = "registry_saved"
    REGISTRY_DELETED = "registry_deleted"

    # Environments
    ENVIRONMENT_CREATED = "environment_created"
    ENVIRONMENT_DELETED = "environment_deleted"
    ENVIRONMENT_SWITCHED = "environment_switched"
    ENVIRONMENT_MEMBER_ADDED = "environment_member_added"
    ENVIRONMENT_MEMBER_REMOVED = "environment_member_removed"
    BULK_COMPLETED = "bulk_completed"
    BULK_MEMBER_FAILED = "bulk_member_failed"
