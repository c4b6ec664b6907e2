import math
import random
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from zoneinfo import ZoneInfo

from app.core.assignment.categorizer import Categorization, Describable
from app.core.assignment.rules import DEFAULT_RULES, AssignmentRules
from app.core.errors import AssignmentError, ErrorCode


@dataclass(frozen=True)
class TeamCandidate:
    """Snapshot of a team plus the counts selection needs, detached from the session."""
    team_id: uuid.UUID
    name: str
    manager_id: uuid.UUID | None
    is_available: bool
    current_capacity: int
    max_capacity: int
    priority_level: int
    active_members: int
    category_load: int = 0
    zone: str | None = None
    capabilities: tuple[str, ...] = ()

    @property
    def free_slots(self) -> int:
        return max(self.max_capacity - self.current_capacity, 0)


@dataclass(frozen=True)
class ScoredTeam:
    candidate: TeamCandidate
    final_score: float
    rule_bonus: float
    capacity_score: float
    utilization_score: float
    priority_score: float
    geographic_match: bool
    time_match: bool
    capability_match: bool
    applied_rules: dict = field(default_factory=dict)

    @property
    def team_id(self) -> uuid.UUID:
        return self.candidate.team_id


def team_capabilities(candidate: TeamCandidate, rules: AssignmentRules = DEFAULT_RULES) -> frozenset[str]:
    if candidate.capabilities:
        return frozenset(candidate.capabilities)
    name = candidate.name.lower()
    inferred = {rules.baseline_capability}
    for capability in rules.capabilities:
        if any(hint in name for hint in capability.name_hints):
            inferred.add(capability.name)
    return frozenset(inferred)


def _name_matches(candidate: TeamCandidate, fragments: list[str]) -> bool:
    name = candidate.name.lower()
    return any(fragment.lower() in name for fragment in fragments)


def geographic_preference(
    location: str | None,
    candidates: list[TeamCandidate],
    rules: AssignmentRules = DEFAULT_RULES,
) -> tuple[str | None, set[uuid.UUID], float]:
    """First zone whose area appears in the location and has at least one matching team."""
    text = (location or "").lower()
    for zone in rules.zones:
        if not any(area.lower() in text for area in zone.areas):
            continue
        preferred = {
            c.team_id for c in candidates
            if c.zone == zone.name or _name_matches(c, [zone.team_preference])
        }
        if preferred:
            return zone.name, preferred, zone.boost
    return None, set(), 1.0


def shift_period(now: datetime, rules: AssignmentRules = DEFAULT_RULES) -> str:
    local = now.astimezone(ZoneInfo(rules.time.timezone))
    if local.weekday() in rules.time.weekend_days:
        return "weekend"
    if rules.time.business_start_hour <= local.hour < rules.time.business_end_hour:
        return "business_hours"
    return "after_hours"


def time_preference(
    now: datetime,
    candidates: list[TeamCandidate],
    rules: AssignmentRules = DEFAULT_RULES,
) -> tuple[str, set[uuid.UUID], float]:
    period = shift_period(now, rules)
    shift = getattr(rules.time, period)
    preferred = {c.team_id for c in candidates if _name_matches(c, shift.preferred_teams)}
    return period, preferred, shift.boost if preferred else 1.0


def filter_candidates(
    candidates: list[TeamCandidate],
    categorization: Categorization,
    *,
    ignore_category_cap: bool = False,
) -> list[TeamCandidate]:
    from app.core.assignment.validator import check_team_eligibility

    cap = categorization.rule.max_assignments_per_team
    return [
        c for c in candidates
        if check_team_eligibility(c) is None
        and (ignore_category_cap or c.category_load < cap)
    ]


def score_candidates(
    eligible: list[TeamCandidate],
    incident: Describable,
    categorization: Categorization,
    *,
    now: datetime,
    rules: AssignmentRules = DEFAULT_RULES,
) -> list[ScoredTeam]:
    if not eligible:
        return []
    weights = rules.weights
    zone, zone_teams, zone_boost = geographic_preference(incident.location, eligible, rules)
    period, shift_teams, shift_boost = time_preference(now, eligible, rules)
    required = set(categorization.rule.required_capabilities)
    max_free = max(c.free_slots for c in eligible) or 1

    scored = []
    for c in eligible:
        rule_bonus = 1.0
        geographic_match = c.team_id in zone_teams
        if geographic_match:
            rule_bonus *= zone_boost
        time_match = c.team_id in shift_teams
        if time_match:
            rule_bonus *= shift_boost
        matched_capabilities = required & team_capabilities(c, rules)
        capability_match = bool(matched_capabilities)
        if capability_match:
            rule_bonus *= rules.capability_match_boost
        for name in sorted(matched_capabilities):
            capability = rules.capability(name)
            if capability:
                rule_bonus *= capability.priority_boost
        # Per-capability boosts below 1.0 never turn a bonus into a penalty
        rule_bonus = max(rule_bonus, 1.0)

        capacity_score = c.free_slots / max_free
        utilization_score = 1 - (c.current_capacity / c.max_capacity)
        priority_score = c.priority_level / 5
        final_score = (
            capacity_score * weights.capacity
            + utilization_score * weights.utilization
            + priority_score * weights.priority
            + (rule_bonus - 1) * weights.rule_bonus
        )
        scored.append(ScoredTeam(
            candidate=c,
            final_score=final_score,
            rule_bonus=rule_bonus,
            capacity_score=capacity_score,
            utilization_score=utilization_score,
            priority_score=priority_score,
            geographic_match=geographic_match,
            time_match=time_match,
            capability_match=capability_match,
            applied_rules={
                "zone": zone,
                "shift": period,
                "capabilities": sorted(matched_capabilities),
                "category": categorization.category,
            },
        ))
    return scored


def select_best_team(
    candidates: list[TeamCandidate],
    incident: Describable,
    categorization: Categorization,
    *,
    now: datetime,
    rng: random.Random,
    rules: AssignmentRules = DEFAULT_RULES,
    ignore_category_cap: bool = False,
) -> ScoredTeam | AssignmentError:
    """
    Highest score wins. Equal top scores are resolved with ``rng.choice`` so
    candidate order never biases the result.
    """
    eligible = filter_candidates(candidates, categorization, ignore_category_cap=ignore_category_cap)
    if not eligible:
        return AssignmentError(
            ErrorCode.NO_ELIGIBLE_TEAM,
            f"No team can take a {categorization.category} incident right now",
            {"category": categorization.category, "candidates": len(candidates)},
        )
    scored = score_candidates(eligible, incident, categorization, now=now, rules=rules)
    best = max(s.final_score for s in scored)
    tied = [s for s in scored if math.isclose(s.final_score, best, rel_tol=1e-9, abs_tol=1e-12)]
    return tied[0] if len(tied) == 1 else rng.choice(tied)
