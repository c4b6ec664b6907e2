import uuid
from datetime import datetime
from pydantic import BaseModel


class TeamSlaCompliance(BaseModel):
    team_id: uuid.UUID
    window_days: int
    total_incidents: int
    sla_compliant_incidents: int
    # Whole percent
    compliance_rate: int
    average_response_hours: float


class TeamHealth(BaseModel):
    team_id: uuid.UUID
    window_days: int
    total_jobs: int
    completed_jobs: int
    completion_rate: int
    average_completion_hours: float
    is_healthy: bool


class TeamMonitoring(BaseModel):
    team_id: uuid.UUID
    team_name: str
    is_available: bool
    available_from: datetime | None
    last_activity: datetime | None
    current_capacity: int
    max_capacity: int
    available_slots: int
    # current / max, 0..1
    utilization: float
    member_count: int
    job_distribution: dict[str, int]
    health: TeamHealth
    sla: TeamSlaCompliance


class AssignmentAnalytics(BaseModel):
    total_teams: int
    available_teams: int
    average_utilization: int
    teams: list[TeamMonitoring]
    generated_at: datetime


class SystemSummary(BaseModel):
    total_teams: int
    available_teams: int
    over_capacity_teams: int
    total_active_jobs: int
    total_capacity: int
    average_utilization: int
    overdue_incidents: int
    generated_at: datetime
