"""
studyplan error types.

Validation and transition errors are caller-facing and recoverable.
Store and notification errors come from collaborators and are never retried here.
"""

from typing import Any, Optional


class StudyPlanError(Exception):
    def __init__(self, code: str, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.details = details


class ValidationError(StudyPlanError):
    def __init__(self, message: str, code: str = "validation_error", details: Optional[dict[str, Any]] = None):
        super().__init__(code, message, details)


class InvalidFrequency(ValidationError):
    def __init__(self, frequency: Any):
        super().__init__(
            f"Unknown recurrence frequency: {frequency!r}",
            code="invalid_frequency",
            details={"frequency": str(frequency)},
        )


class InvalidTransition(StudyPlanError):
    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__("invalid_transition", message, details)


class NotFound(StudyPlanError):
    def __init__(self, session_id: str):
        super().__init__("not_found", f"Study session not found: {session_id}", {"id": session_id})


class Conflict(StudyPlanError):
    """Optimistic status check failed: the record changed underneath the caller."""

    def __init__(self, session_id: str, expected: Any, actual: Any):
        super().__init__(
            "conflict",
            f"Session {session_id} is {actual}, expected {expected}",
            {"id": session_id, "expected": str(expected), "actual": str(actual)},
        )


class StoreFailure(StudyPlanError):
    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__("store_failure", message, details)


class NotificationFailure(StudyPlanError):
    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__("notification_failure", message, details)
