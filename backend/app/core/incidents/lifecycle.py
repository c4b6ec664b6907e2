from enum import Enum

from app.core.errors import ErrorCode, TransitionError


class IncidentStatus(str, Enum):
    NOT_STARTED = "not_started"
    VERIFIED = "verified"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


S = IncidentStatus

# Single source of truth for incident status changes.
VALID_TRANSITIONS: dict[IncidentStatus, frozenset[IncidentStatus]] = {
    S.NOT_STARTED: frozenset({S.VERIFIED}),
    S.VERIFIED: frozenset({S.ASSIGNED, S.CANCELLED}),
    S.ASSIGNED: frozenset({S.IN_PROGRESS, S.COMPLETED, S.CANCELLED}),
    S.IN_PROGRESS: frozenset({S.COMPLETED, S.CANCELLED}),
    S.COMPLETED: frozenset(),
    S.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset(status for status, targets in VALID_TRANSITIONS.items() if not targets)
ASSIGNED_STATUSES = frozenset({S.ASSIGNED, S.IN_PROGRESS, S.COMPLETED})
REVERTIBLE_STATUSES = frozenset({S.ASSIGNED, S.IN_PROGRESS})


def _coerce(status: "IncidentStatus | str") -> IncidentStatus | None:
    try:
        return IncidentStatus(status)
    except ValueError:
        return None


def _label(status: "IncidentStatus | str") -> str:
    return str(getattr(status, "value", status))


def legal_targets(current: "IncidentStatus | str") -> list[str]:
    status = _coerce(current)
    if status is None:
        return []
    return sorted(target.value for target in VALID_TRANSITIONS[status])


def validate_transition(current: "IncidentStatus | str", requested: "IncidentStatus | str") -> TransitionError | None:
    """Return None when ``current -> requested`` is legal, else an error listing the legal targets."""
    src, dst = _coerce(current), _coerce(requested)
    if src is None or dst is None:
        unknown = current if src is None else requested
        return TransitionError(
            ErrorCode.INVALID_TRANSITION,
            f"Unknown incident status '{_label(unknown)}'",
            {"from": _label(current), "to": _label(requested), "allowed": legal_targets(current)},
        )
    if dst not in VALID_TRANSITIONS[src]:
        allowed = legal_targets(src)
        return TransitionError(
            ErrorCode.INVALID_TRANSITION,
            f"Cannot transition from '{src.value}' to '{dst.value}'"
            + (f"; allowed: {', '.join(allowed)}" if allowed else f"; '{src.value}' is terminal"),
            {"from": src.value, "to": dst.value, "allowed": allowed},
        )
    return None


def validate_revert(current: "IncidentStatus | str") -> TransitionError | None:
    status = _coerce(current)
    if status in REVERTIBLE_STATUSES:
        return None
    return TransitionError(
        ErrorCode.REVERT_NOT_ALLOWED,
        f"Assignment can only be reverted from assigned or in_progress, not '{_label(current)}'",
        {"from": _label(current), "allowed_from": sorted(s.value for s in REVERTIBLE_STATUSES)},
    )


def is_terminal(status: "IncidentStatus | str") -> bool:
    return _coerce(status) in TERMINAL_STATUSES
