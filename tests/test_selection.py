import random
import uuid
from datetime import datetime, timezone
from types import SimpleNamespace

from app.core.assignment.categorizer import categorize
from app.core.assignment.selection import (
    ScoredTeam, TeamCandidate, filter_candidates, select_best_team, shift_period, team_capabilities,
)
from app.core.errors import AssignmentError, ErrorCode

WEDNESDAY_10AM = datetime(2026, 10, 14, 10, 0, tzinfo=timezone.utc)
SATURDAY_10AM = datetime(2026, 10, 17, 10, 0, tzinfo=timezone.utc)
WEDNESDAY_10PM = datetime(2026, 10, 14, 22, 0, tzinfo=timezone.utc)


def _candidate(name, **kwargs) -> TeamCandidate:
    values = dict(
        team_id=uuid.uuid4(),
        name=name,
        manager_id=None,
        is_available=True,
        current_capacity=0,
        max_capacity=5,
        priority_level=3,
        active_members=2,
    )
    values.update(kwargs)
    return TeamCandidate(**values)


def _incident(title, location=None):
    return SimpleNamespace(title=title, description=None, location=location)


def _select(candidates, incident, now=WEDNESDAY_10AM, seed=1, **kwargs):
    return select_best_team(
        candidates, incident, categorize(incident), now=now, rng=random.Random(seed), **kwargs
    )


def test_full_team_is_never_chosen():
    full = _candidate("Crew A", current_capacity=5, priority_level=5)
    free = _candidate("Crew B", priority_level=1)
    for seed in range(20):
        result = _select([full, free], _incident("Blocked drain"), seed=seed)
        assert result.team_id == free.team_id


def test_no_eligible_team():
    candidates = [
        _candidate("Crew A", current_capacity=5),
        _candidate("Crew B", is_available=False),
        _candidate("Crew C", active_members=0),
    ]
    result = _select(candidates, _incident("Blocked drain"))
    assert isinstance(result, AssignmentError)
    assert result.code == ErrorCode.NO_ELIGIBLE_TEAM
    assert result.details["candidates"] == 3


def test_tie_is_broken_within_tied_set():
    a = _candidate("Crew A")
    b = _candidate("Crew B")
    worse = _candidate("Crew C", priority_level=1)
    chosen = {_select([a, b, worse], _incident("Blocked drain"), seed=seed).team_id for seed in range(50)}
    assert chosen == {a.team_id, b.team_id}


def test_same_seed_same_choice():
    a = _candidate("Crew A")
    b = _candidate("Crew B")
    first = _select([a, b], _incident("Blocked drain"), seed=42)
    assert all(_select([a, b], _incident("Blocked drain"), seed=42).team_id == first.team_id for _ in range(5))


def test_more_free_slots_scores_higher():
    busy = _candidate("Crew A", current_capacity=4)
    idle = _candidate("Crew B", current_capacity=0)
    result = _select([busy, idle], _incident("Blocked drain"))
    assert isinstance(result, ScoredTeam)
    assert result.team_id == idle.team_id
    assert result.capacity_score == 1.0
    assert result.utilization_score == 1.0


def test_zone_match_wins():
    north = _candidate("Crew A", zone="north_zone")
    other = _candidate("Crew B")
    result = _select([other, north], _incident("Blocked drain", location="Corner shop, North End"))
    assert result.team_id == north.team_id
    assert result.geographic_match
    assert result.rule_bonus > 1.2
    assert result.applied_rules["zone"] == "north_zone"


def test_zone_falls_back_to_team_name():
    south = _candidate("south_team alpha")
    other = _candidate("Crew B")
    result = _select([other, south], _incident("Blocked drain", location="Downtown"))
    assert result.team_id == south.team_id


def test_shift_period():
    assert shift_period(WEDNESDAY_10AM) == "business_hours"
    assert shift_period(WEDNESDAY_10PM) == "after_hours"
    assert shift_period(SATURDAY_10AM) == "weekend"


def test_time_preference_depends_on_shift():
    weekend_crew = _candidate("Emergency_Team 1")
    day_crew = _candidate("Day_Shift_Team 2")
    incident = _incident("Blocked drain")
    assert _select([weekend_crew, day_crew], incident, now=SATURDAY_10AM).team_id == weekend_crew.team_id
    weekday = _select([weekend_crew, day_crew], incident, now=WEDNESDAY_10AM)
    assert weekday.team_id == day_crew.team_id
    assert weekday.time_match


def test_capability_match_for_critical():
    emergency = _candidate("Emergency Crew")
    standard = _candidate("Crew B")
    result = _select([standard, emergency], _incident("Pipe burst on Main Street"))
    assert result.team_id == emergency.team_id
    assert result.capability_match
    assert result.applied_rules["capabilities"] == ["emergency_response"]


def test_explicit_capabilities_override_name_hints():
    candidate = _candidate("Emergency Crew", capabilities=("maintenance",))
    assert team_capabilities(candidate) == {"maintenance"}
    assert "emergency_response" in team_capabilities(_candidate("Emergency Crew"))


def test_rule_bonus_never_below_one():
    # maintenance carries a 0.8 boost
    maintenance = _candidate("Crew A", capabilities=("maintenance",))
    result = _select([maintenance], _incident("Routine inspection"))
    assert result.capability_match
    assert result.rule_bonus == 1.0


def test_category_cap():
    incident = _incident("Emergency overflow")
    categorization = categorize(incident)
    capped = _candidate("Crew A", category_load=2, current_capacity=2)
    assert filter_candidates([capped], categorization) == []
    assert filter_candidates([capped], categorization, ignore_category_cap=True) == [capped]

    result = _select([capped], incident)
    assert isinstance(result, AssignmentError)
    forced = _select([capped], incident, ignore_category_cap=True)
    assert forced.team_id == capped.team_id


def test_force_never_lifts_capacity():
    full = _candidate("Crew A", current_capacity=5)
    result = _select([full], _incident("Emergency overflow"), ignore_category_cap=True)
    assert isinstance(result, AssignmentError)
