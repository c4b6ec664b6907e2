"""
Data-driven assignment rules.

Everything the categorizer and the team selection consult lives here as
pydantic models so deployments can override it with a JSON file
(``ASSIGNMENT_RULES_FILE``) instead of code changes.
"""
import json
from datetime import timedelta
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, model_validator

CategoryName = Literal["critical", "high", "medium", "low"]


class CategoryRule(BaseModel):
    name: CategoryName
    keywords: list[str]
    sla_hours: int = Field(..., gt=0)
    max_assignments_per_team: int = Field(..., ge=1)
    required_capabilities: list[str] = []

    @property
    def sla(self) -> timedelta:
        return timedelta(hours=self.sla_hours)


class ZoneRule(BaseModel):
    name: str
    areas: list[str]
    team_preference: str
    boost: float = Field(1.3, ge=1.0)


class ShiftRule(BaseModel):
    preferred_teams: list[str]
    boost: float = Field(..., ge=1.0)


class TimeRules(BaseModel):
    timezone: str = "UTC"
    business_start_hour: int = Field(8, ge=0, le=23)
    business_end_hour: int = Field(17, ge=1, le=24)
    # Monday == 0
    weekend_days: list[int] = [5, 6]
    weekend: ShiftRule = ShiftRule(preferred_teams=["emergency_team", "minimal_staff_team"], boost=1.2)
    business_hours: ShiftRule = ShiftRule(preferred_teams=["day_shift_team", "standard_team"], boost=1.1)
    after_hours: ShiftRule = ShiftRule(preferred_teams=["emergency_team", "on_call_team"], boost=1.15)


class CapabilityRule(BaseModel):
    name: str
    # Team-name fragments that imply the capability when a team has no explicit list
    name_hints: list[str] = []
    priority_boost: float = 1.0


class ScoreWeights(BaseModel):
    capacity: float = 0.3
    utilization: float = 0.3
    priority: float = 0.2
    rule_bonus: float = 0.2


class AssignmentRules(BaseModel):
    # Checked in this order, first category with a keyword hit wins
    categories: list[CategoryRule]
    default_category: CategoryName = "medium"
    zones: list[ZoneRule] = []
    time: TimeRules = TimeRules()
    capabilities: list[CapabilityRule] = []
    baseline_capability: str = "standard_response"
    capability_match_boost: float = Field(1.2, ge=1.0)
    weights: ScoreWeights = ScoreWeights()

    @model_validator(mode="after")
    def _check_categories(self) -> "AssignmentRules":
        names = [c.name for c in self.categories]
        if len(set(names)) != len(names):
            raise ValueError("category names must be unique")
        if self.default_category not in names:
            raise ValueError(f"default category '{self.default_category}' is not defined")
        return self

    def category(self, name: str) -> CategoryRule:
        for rule in self.categories:
            if rule.name == name:
                return rule
        raise KeyError(name)

    @property
    def priority_order(self) -> list[str]:
        return [c.name for c in self.categories]

    def capability(self, name: str) -> CapabilityRule | None:
        for rule in self.capabilities:
            if rule.name == name:
                return rule
        return None


DEFAULT_RULES = AssignmentRules(
    categories=[
        CategoryRule(
            name="critical",
            keywords=[
                "emergency", "urgent", "flood", "overflow", "sewage backup", "public health",
                "environmental", "contamination", "blockage severe", "pipe burst",
                "manhole overflow", "sewage spill",
            ],
            sla_hours=4,
            max_assignments_per_team=2,
            required_capabilities=["emergency_response", "heavy_equipment"],
        ),
        CategoryRule(
            name="high",
            keywords=[
                "backup", "slow drainage", "odour", "noise", "localized flooding",
                "manhole damaged", "pipe damaged", "access issues",
            ],
            sla_hours=8,
            max_assignments_per_team=3,
            required_capabilities=["standard_response"],
        ),
        CategoryRule(
            name="medium",
            keywords=[
                "maintenance", "inspection", "cleaning", "routine", "preventive",
                "minor blockage", "odor control", "access repair",
            ],
            sla_hours=24,
            max_assignments_per_team=5,
            required_capabilities=["standard_response", "maintenance"],
        ),
        CategoryRule(
            name="low",
            keywords=[
                "consultation", "advice", "general inquiry", "scheduled maintenance",
                "documentation", "follow-up", "routine check",
            ],
            sla_hours=48,
            max_assignments_per_team=10,
            required_capabilities=["standard_response"],
        ),
    ],
    zones=[
        ZoneRule(name="north_zone", areas=["northern suburbs", "north end", "uptown"], team_preference="north_team"),
        ZoneRule(name="south_zone", areas=["southern suburbs", "south end", "downtown"], team_preference="south_team"),
        ZoneRule(name="central_zone", areas=["central", "midtown", "business district"], team_preference="central_team"),
    ],
    capabilities=[
        CapabilityRule(name="emergency_response", name_hints=["emergency", "urgent"], priority_boost=1.5),
        CapabilityRule(name="heavy_equipment", name_hints=["heavy", "equipment"], priority_boost=1.2),
        CapabilityRule(name="standard_response", priority_boost=1.0),
        CapabilityRule(name="maintenance", name_hints=["maintenance"], priority_boost=0.8),
    ],
)


def load_rules(path: str | None = None) -> AssignmentRules:
    if not path:
        return DEFAULT_RULES
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    return AssignmentRules.model_validate(raw)
