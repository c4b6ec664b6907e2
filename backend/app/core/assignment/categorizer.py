from dataclasses import dataclass
from typing import Protocol

from app.core.assignment.rules import DEFAULT_RULES, AssignmentRules, CategoryRule


class Describable(Protocol):
    title: str
    description: str | None
    location: str | None


@dataclass(frozen=True)
class Categorization:
    category: str
    rule: CategoryRule
    matched_keywords: tuple[str, ...]
    reasoning: str

    @property
    def match_count(self) -> int:
        return len(self.matched_keywords)


def incident_text(incident: Describable) -> str:
    return " ".join(part for part in (incident.title, incident.description, incident.location) if part).lower()


def categorize(incident: Describable, rules: AssignmentRules = DEFAULT_RULES) -> Categorization:
    """Plain keyword matching over title, description and location. Same text, same answer."""
    text = incident_text(incident)
    for rule in rules.categories:
        matched = tuple(keyword for keyword in rule.keywords if keyword.lower() in text)
        if matched:
            return Categorization(
                category=rule.name,
                rule=rule,
                matched_keywords=matched,
                reasoning=f"Matched {len(matched)} keywords: {', '.join(matched)}",
            )
    default = rules.category(rules.default_category)
    return Categorization(
        category=default.name,
        rule=default,
        matched_keywords=(),
        reasoning="Default classification - no specific keywords matched",
    )
