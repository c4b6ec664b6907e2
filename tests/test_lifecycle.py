import pytest

from app.core.errors import ErrorCode, TransitionError
from app.core.incidents.lifecycle import (
    TERMINAL_STATUSES, VALID_TRANSITIONS, IncidentStatus, is_terminal, legal_targets,
    validate_revert, validate_transition,
)

S = IncidentStatus


def test_every_status_has_a_row():
    assert set(VALID_TRANSITIONS) == set(IncidentStatus)


def test_terminal_statuses():
    assert TERMINAL_STATUSES == {S.COMPLETED, S.CANCELLED}
    assert is_terminal("completed")
    assert is_terminal(S.CANCELLED)
    assert not is_terminal("assigned")


@pytest.mark.parametrize("current, requested", [
    ("not_started", "verified"),
    ("verified", "assigned"),
    ("verified", "cancelled"),
    ("assigned", "in_progress"),
    ("assigned", "completed"),
    ("assigned", "cancelled"),
    ("in_progress", "completed"),
    ("in_progress", "cancelled"),
])
def test_legal_transitions(current, requested):
    assert validate_transition(current, requested) is None


def test_table_is_total():
    for current in IncidentStatus:
        for requested in IncidentStatus:
            error = validate_transition(current, requested)
            if requested in VALID_TRANSITIONS[current]:
                assert error is None
            else:
                assert isinstance(error, TransitionError)
                assert error.code == ErrorCode.INVALID_TRANSITION


def test_error_lists_allowed_targets():
    error = validate_transition(S.VERIFIED, S.COMPLETED)
    assert error.details == {"from": "verified", "to": "completed", "allowed": ["assigned", "cancelled"]}
    assert "assigned, cancelled" in error.message


def test_terminal_error_has_no_targets():
    error = validate_transition("completed", "in_progress")
    assert error.details["allowed"] == []
    assert "terminal" in error.message


def test_self_transition_rejected():
    assert validate_transition("assigned", "assigned") is not None


def test_unknown_status_rejected():
    error = validate_transition("verified", "escalated")
    assert error.code == ErrorCode.INVALID_TRANSITION
    assert "escalated" in error.message
    assert error.details["allowed"] == ["assigned", "cancelled"]


def test_legal_targets_sorted():
    assert legal_targets("assigned") == ["cancelled", "completed", "in_progress"]
    assert legal_targets("bogus") == []


@pytest.mark.parametrize("status", ["assigned", "in_progress"])
def test_revert_allowed(status):
    assert validate_revert(status) is None


@pytest.mark.parametrize("status", ["not_started", "verified", "completed", "cancelled"])
def test_revert_rejected(status):
    error = validate_revert(status)
    assert error.code == ErrorCode.REVERT_NOT_ALLOWED
    assert error.status_code == 409


def test_error_response_shape():
    error = validate_transition("verified", "completed")
    body = error.to_response()
    assert body["error"]["code"] == "INVALID_TRANSITION"
    assert body["error"]["category"] == "transition"
    assert body["error"]["details"]["allowed"] == ["assigned", "cancelled"]
