from typing import Any

from pydantic import BaseModel, Field, field_validator

DEFAULT_PRIORITY_ORDER = ["critical", "high", "medium", "low"]


class SchedulerConfig(BaseModel):
    enabled: bool = False
    interval_seconds: float = Field(300, gt=0)
    max_concurrent_assignments: int = Field(10, ge=1, le=100)
    priority_order: list[str] = DEFAULT_PRIORITY_ORDER
    dry_run: bool = False
    # Skip incidents touched (or processed by us) more recently than this
    cooldown_seconds: float = Field(300, ge=0)
    assignment_delay_seconds: float = Field(0.1, ge=0)
    # Lift the per-category cap for critical incidents
    emergency_assignment: bool = False
    reconcile_availability: bool = True
    history_retention_seconds: float = Field(24 * 3600, gt=0)
    history_max_entries: int = Field(5000, ge=1)

    @field_validator("priority_order")
    @classmethod
    def _known_categories(cls, value: list[str]) -> list[str]:
        unknown = [v for v in value if v not in DEFAULT_PRIORITY_ORDER]
        if unknown:
            raise ValueError(f"unknown categories: {', '.join(unknown)}")
        if len(set(value)) != len(value):
            raise ValueError("priority_order contains duplicates")
        return value

    def merged(self, partial: dict[str, Any]) -> "SchedulerConfig":
        return SchedulerConfig.model_validate({**self.model_dump(), **partial})


class SchedulerConfigUpdate(BaseModel):
    enabled: bool | None = None
    interval_seconds: float | None = Field(None, gt=0)
    max_concurrent_assignments: int | None = Field(None, ge=1, le=100)
    priority_order: list[str] | None = None
    dry_run: bool | None = None
    cooldown_seconds: float | None = Field(None, ge=0)
    assignment_delay_seconds: float | None = Field(None, ge=0)
    emergency_assignment: bool | None = None
    reconcile_availability: bool | None = None


def config_from_settings(settings) -> SchedulerConfig:
    return SchedulerConfig(
        enabled=settings.SCHEDULER_ENABLED,
        interval_seconds=settings.SCHEDULER_INTERVAL_SECONDS,
        max_concurrent_assignments=settings.SCHEDULER_MAX_CONCURRENT_ASSIGNMENTS,
        dry_run=settings.SCHEDULER_DRY_RUN,
        cooldown_seconds=settings.SCHEDULER_COOLDOWN_SECONDS,
        assignment_delay_seconds=settings.SCHEDULER_ASSIGNMENT_DELAY_SECONDS,
    )
