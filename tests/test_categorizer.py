from types import SimpleNamespace

from app.core.assignment.categorizer import categorize
from app.core.assignment.rules import DEFAULT_RULES, AssignmentRules, CategoryRule


def _incident(title, description=None, location=None):
    return SimpleNamespace(title=title, description=description, location=location)


def test_emergency_overflow_is_critical():
    result = categorize(_incident("Emergency sewage overflow"))
    assert result.category == "critical"
    assert result.rule.sla.total_seconds() == 4 * 3600
    assert result.matched_keywords == ("emergency", "overflow")
    assert result.reasoning == "Matched 2 keywords: emergency, overflow"


def test_description_and_location_are_searched():
    result = categorize(_incident("Smell", description="Strong odour near the school", location="North End"))
    assert result.category == "high"
    assert result.match_count == 1


def test_first_category_in_order_wins():
    # "backup" is high, "sewage backup" is critical
    result = categorize(_incident("Sewage backup in basement"))
    assert result.category == "critical"


def test_no_match_defaults_to_medium():
    result = categorize(_incident("Something looks wrong"))
    assert result.category == "medium"
    assert result.matched_keywords == ()
    assert result.reasoning == "Default classification - no specific keywords matched"
    assert result.rule.sla_hours == 24


def test_matching_is_case_insensitive():
    assert categorize(_incident("GENERAL INQUIRY about fees")).category == "low"


def test_categorization_is_deterministic():
    incident = _incident("Pipe burst", description="Flood in the street", location="Midtown")
    first = categorize(incident)
    assert all(categorize(incident) == first for _ in range(20))
    assert first.category == "critical"


def test_custom_rules():
    rules = AssignmentRules(
        categories=[
            CategoryRule(name="high", keywords=["rat"], sla_hours=2, max_assignments_per_team=1),
            CategoryRule(name="low", keywords=[], sla_hours=72, max_assignments_per_team=9),
        ],
        default_category="low",
    )
    assert categorize(_incident("Rats in the drain"), rules).category == "high"
    assert categorize(_incident("Emergency overflow"), rules).category == "low"
    assert DEFAULT_RULES.priority_order == ["critical", "high", "medium", "low"]
