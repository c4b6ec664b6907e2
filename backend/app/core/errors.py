from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    TRANSITION = "transition"
    AUTHORIZATION = "authorization"
    CAPACITY = "capacity"
    INTEGRITY = "integrity"
    NOT_FOUND = "not_found"
    SYSTEM = "system"


class ErrorCode(str, Enum):
    INVALID_TRANSITION = "INVALID_TRANSITION"
    REVERT_NOT_ALLOWED = "REVERT_NOT_ALLOWED"
    INCIDENT_NOT_FOUND = "INCIDENT_NOT_FOUND"
    INCIDENT_NOT_READY = "INCIDENT_NOT_READY"
    TEAM_ASSIGNMENT_REQUIRED = "TEAM_ASSIGNMENT_REQUIRED"
    TEAM_NOT_FOUND = "TEAM_NOT_FOUND"
    TEAM_UNAVAILABLE = "TEAM_UNAVAILABLE"
    TEAM_AT_CAPACITY = "TEAM_AT_CAPACITY"
    TEAM_CATEGORY_CAP_REACHED = "TEAM_CATEGORY_CAP_REACHED"
    TEAM_NO_ACTIVE_MEMBERS = "TEAM_NO_ACTIVE_MEMBERS"
    WORK_ORDER_MISSING = "WORK_ORDER_MISSING"
    WORK_ORDER_TEAM_MISMATCH = "WORK_ORDER_TEAM_MISMATCH"
    TEAM_MANAGER_INVALID = "TEAM_MANAGER_INVALID"
    COMPLETION_TOO_EARLY = "COMPLETION_TOO_EARLY"
    MANAGER_NOT_AUTHORIZED = "MANAGER_NOT_AUTHORIZED"
    NO_ELIGIBLE_TEAM = "NO_ELIGIBLE_TEAM"
    NO_SUITABLE_TEAM = "NO_SUITABLE_TEAM"
    ASSIGNMENT_INTEGRITY_VIOLATION = "ASSIGNMENT_INTEGRITY_VIOLATION"
    SYSTEM_ERROR = "SYSTEM_ERROR"


_CATEGORY = {
    ErrorCode.INVALID_TRANSITION: ErrorCategory.TRANSITION,
    ErrorCode.REVERT_NOT_ALLOWED: ErrorCategory.TRANSITION,
    ErrorCode.INCIDENT_NOT_READY: ErrorCategory.TRANSITION,
    ErrorCode.COMPLETION_TOO_EARLY: ErrorCategory.TRANSITION,
    ErrorCode.INCIDENT_NOT_FOUND: ErrorCategory.NOT_FOUND,
    ErrorCode.TEAM_NOT_FOUND: ErrorCategory.NOT_FOUND,
    ErrorCode.TEAM_ASSIGNMENT_REQUIRED: ErrorCategory.INTEGRITY,
    ErrorCode.WORK_ORDER_MISSING: ErrorCategory.INTEGRITY,
    ErrorCode.WORK_ORDER_TEAM_MISMATCH: ErrorCategory.INTEGRITY,
    ErrorCode.ASSIGNMENT_INTEGRITY_VIOLATION: ErrorCategory.INTEGRITY,
    ErrorCode.TEAM_MANAGER_INVALID: ErrorCategory.AUTHORIZATION,
    ErrorCode.MANAGER_NOT_AUTHORIZED: ErrorCategory.AUTHORIZATION,
    ErrorCode.TEAM_UNAVAILABLE: ErrorCategory.CAPACITY,
    ErrorCode.TEAM_AT_CAPACITY: ErrorCategory.CAPACITY,
    ErrorCode.TEAM_CATEGORY_CAP_REACHED: ErrorCategory.CAPACITY,
    ErrorCode.TEAM_NO_ACTIVE_MEMBERS: ErrorCategory.CAPACITY,
    ErrorCode.NO_ELIGIBLE_TEAM: ErrorCategory.CAPACITY,
    ErrorCode.NO_SUITABLE_TEAM: ErrorCategory.CAPACITY,
    ErrorCode.SYSTEM_ERROR: ErrorCategory.SYSTEM,
}

_HTTP_STATUS = {
    ErrorCategory.TRANSITION: 409,
    ErrorCategory.AUTHORIZATION: 403,
    ErrorCategory.CAPACITY: 409,
    ErrorCategory.INTEGRITY: 409,
    ErrorCategory.NOT_FOUND: 404,
    ErrorCategory.SYSTEM: 500,
}


@dataclass(eq=False)
class DomainError(Exception):
    """
    Expected failure with a stable code.

    Validators return these instead of raising. Routers raise them so the
    registered handler can render ``to_response()``.
    """
    code: ErrorCode
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(self.message)

    @property
    def category(self) -> ErrorCategory:
        return _CATEGORY.get(self.code, ErrorCategory.SYSTEM)

    @property
    def status_code(self) -> int:
        return _HTTP_STATUS[self.category]

    def to_response(self) -> dict[str, Any]:
        return {
            "error": {
                "code": self.code.value,
                "category": self.category.value,
                "message": self.message,
                "details": self.details,
            }
        }


class TransitionError(DomainError):
    pass


class AssignmentError(DomainError):
    pass
