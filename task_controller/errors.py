"""
Controller Errors

Structured errors shared by the registry, the status resolver, the HTTP
handlers and the operator dialog. Every error carries a stable code, a
human-readable message and a details dict so it can be rendered as a JSON
body or as a one-line chat reply.
"""

from typing import Any, Dict, Optional


class ControllerError(Exception):
    """Base controller error with structured details."""
    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": True,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


# -----------------------------------------------------------------------------
# Lookup Errors
# -----------------------------------------------------------------------------
class DeviceNotFoundError(ControllerError):
    def __init__(self, device_id: str):
        super().__init__(
            code="DEVICE_NOT_FOUND",
            message=f"Device not found with id: {device_id}",
            details={"device_id": device_id}
        )


class SessionNotFoundError(ControllerError):
    def __init__(self, device_id: str, session_id: str):
        super().__init__(
            code="SESSION_NOT_FOUND",
            message=f"User not found with id: {session_id}",
            details={"device_id": device_id, "session_id": session_id}
        )


class TaskNotFoundError(ControllerError):
    def __init__(self, task_id: str):
        super().__init__(
            code="TASK_NOT_FOUND",
            message=f"Task not found with id: {task_id}",
            details={"task_id": task_id}
        )


# -----------------------------------------------------------------------------
# Dialog Errors
# -----------------------------------------------------------------------------
class InvalidSelectionError(ControllerError):
    def __init__(self, token: str, reason: str = "Invalid selection"):
        super().__init__(
            code="INVALID_SELECTION",
            message=reason,
            details={"token": token}
        )


class UnknownTaskKindError(InvalidSelectionError):
    """Raised when a wire string does not name a TaskKind."""
    def __init__(self, value: str):
        super().__init__(token=value, reason=f"Invalid task type: {value}")
        self.code = "UNKNOWN_TASK_KIND"


class InvalidStateError(ControllerError):
    def __init__(self, state: str, token: str):
        super().__init__(
            code="INVALID_STATE",
            message="Invalid state",
            details={"state": state, "token": token}
        )


# -----------------------------------------------------------------------------
# Infrastructure Errors
# -----------------------------------------------------------------------------
class StateUnavailableError(ControllerError):
    def __init__(self, what: str = "application context"):
        super().__init__(
            code="STATE_NOT_SET",
            message=f"State not set: {what}",
            details={"missing": what}
        )


class ConcurrentAccessError(ControllerError):
    def __init__(self, timeout: float):
        super().__init__(
            code="CONCURRENT_ACCESS_FAULT",
            message=f"Registry lock not acquired within {timeout:.1f}s",
            details={"timeout": timeout}
        )


class PayloadDecodeError(ControllerError):
    def __init__(self, task_id: str, reason: str):
        super().__init__(
            code="PAYLOAD_DECODE_FAILED",
            message=f"Unable to decode image payload for task {task_id}",
            details={"task_id": task_id, "reason": reason}
        )


class ConfigError(ControllerError):
    def __init__(self, message: str, **details: Any):
        super().__init__(code="CONFIG_INVALID", message=message, details=details)
