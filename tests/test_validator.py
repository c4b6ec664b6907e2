import uuid
from datetime import datetime, timedelta, timezone

import pytest

from app.core.assignment.validator import TeamAssignmentValidator, ValidatedTeam
from app.core.errors import AssignmentError, ErrorCode
from app.core.incidents.models import Incident
from app.core.rbac.models import User
from app.core.teams.models import Team
from app.core.workorders.models import WorkOrder

NOW = datetime(2026, 10, 14, 12, 0, tzinfo=timezone.utc)


class FakeRepo:
    def __init__(self, team=None, users=(), members=(), work_orders=()):
        self.team = team
        self.users = {u.id: u for u in users}
        self.members = list(members)
        self.orders = list(work_orders)

    async def get_team(self, team_id, *, for_update=False):
        return self.team if self.team is not None and self.team.id == team_id else None

    async def get_user(self, user_id):
        return self.users.get(user_id)

    async def active_members(self, team_id):
        return [m for m in self.members if m.is_active]

    async def work_orders_for(self, incident_id):
        return [wo for wo in self.orders if wo.incident_id == incident_id and wo.is_active]


def _user(role, status="active"):
    return User(id=uuid.uuid4(), email=f"{uuid.uuid4().hex}@test.local", role=role, status=status, is_deleted=False)


@pytest.fixture
def world():
    manager = _user("manager")
    worker = _user("worker")
    team = Team(
        id=uuid.uuid4(), name="Crew A", manager_id=manager.id,
        is_available=True, current_capacity=1, max_capacity=3, priority_level=3,
    )
    incident = Incident(
        id=uuid.uuid4(), tracking_no="INC-26-0001", title="Blocked drain",
        status="assigned", assigned_team_id=team.id, assigned_at=NOW - timedelta(hours=2),
    )
    work_order = WorkOrder(id=uuid.uuid4(), incident_id=incident.id, team_id=team.id, category="medium", status="not_started")
    repo = FakeRepo(team=team, users=[manager, worker], members=[worker], work_orders=[work_order])
    return repo, incident


async def _validate(repo, incident, target="in_progress", now=NOW, dwell=timedelta(minutes=60)):
    return await TeamAssignmentValidator(repo, dwell).validate_assignment(incident, target, now)


async def test_valid_binding(world):
    repo, incident = world
    result = await _validate(repo, incident)
    assert isinstance(result, ValidatedTeam)
    assert result.team is repo.team
    assert result.work_order.incident_id == incident.id
    assert [m.role for m in result.members] == ["worker"]


async def test_requires_team(world):
    repo, incident = world
    incident.assigned_team_id = None
    result = await _validate(repo, incident)
    assert result.code == ErrorCode.TEAM_ASSIGNMENT_REQUIRED


async def test_missing_team(world):
    repo, incident = world
    repo.team = None
    result = await _validate(repo, incident)
    assert result.code == ErrorCode.TEAM_NOT_FOUND
    assert result.status_code == 404


async def test_unavailable_team(world):
    repo, incident = world
    repo.team.is_available = False
    assert (await _validate(repo, incident)).code == ErrorCode.TEAM_UNAVAILABLE


async def test_own_slot_is_not_counted_against_capacity(world):
    repo, incident = world
    repo.team.current_capacity = repo.team.max_capacity
    assert isinstance(await _validate(repo, incident), ValidatedTeam)


async def test_over_capacity(world):
    repo, incident = world
    repo.team.current_capacity = repo.team.max_capacity + 1
    result = await _validate(repo, incident)
    assert result.code == ErrorCode.TEAM_AT_CAPACITY
    assert result.details["max_capacity"] == 3


async def test_no_active_members(world):
    repo, incident = world
    repo.members[0].status = "blocked"
    assert (await _validate(repo, incident)).code == ErrorCode.TEAM_NO_ACTIVE_MEMBERS


async def test_missing_work_order(world):
    repo, incident = world
    repo.orders = []
    result = await _validate(repo, incident)
    assert result.code == ErrorCode.WORK_ORDER_MISSING
    assert result.details["work_orders"] == 0


async def test_duplicate_work_orders(world):
    repo, incident = world
    original = repo.orders[0]
    repo.orders.append(WorkOrder(id=uuid.uuid4(), incident_id=incident.id, team_id=original.team_id, category="medium", status="in_progress"))
    assert (await _validate(repo, incident)).code == ErrorCode.WORK_ORDER_MISSING


async def test_work_order_on_other_team(world):
    repo, incident = world
    repo.orders[0].team_id = uuid.uuid4()
    result = await _validate(repo, incident)
    assert result.code == ErrorCode.WORK_ORDER_TEAM_MISMATCH


@pytest.mark.parametrize("change", [
    {"manager_id": None},
    {"manager_status": "blocked"},
    {"manager_role": "worker"},
])
async def test_invalid_manager(world, change):
    repo, incident = world
    manager = repo.users[repo.team.manager_id]
    if "manager_id" in change:
        repo.team.manager_id = None
    if "manager_status" in change:
        manager.status = change["manager_status"]
    if "manager_role" in change:
        manager.role = change["manager_role"]
    result = await _validate(repo, incident)
    assert result.code == ErrorCode.TEAM_MANAGER_INVALID


async def test_admin_can_own_a_team(world):
    repo, incident = world
    repo.users[repo.team.manager_id].role = "admin"
    assert isinstance(await _validate(repo, incident, "completed"), ValidatedTeam)


async def test_completion_dwell_boundary(world):
    repo, incident = world
    assigned_at = incident.assigned_at

    too_early = await _validate(repo, incident, "completed", now=assigned_at + timedelta(minutes=59))
    assert isinstance(too_early, AssignmentError)
    assert too_early.code == ErrorCode.COMPLETION_TOO_EARLY
    assert too_early.details["elapsed_seconds"] == 59 * 60
    assert too_early.details["required_seconds"] == 3600

    exactly = await _validate(repo, incident, "completed", now=assigned_at + timedelta(minutes=60))
    assert isinstance(exactly, ValidatedTeam)

    later = await _validate(repo, incident, "completed", now=assigned_at + timedelta(minutes=60, seconds=1))
    assert isinstance(later, ValidatedTeam)


async def test_dwell_only_applies_to_completion(world):
    repo, incident = world
    incident.assigned_at = NOW
    assert isinstance(await _validate(repo, incident, "in_progress"), ValidatedTeam)
    assert (await _validate(repo, incident, "completed")).code == ErrorCode.COMPLETION_TOO_EARLY


async def test_naive_assigned_at_is_treated_as_utc(world):
    repo, incident = world
    incident.assigned_at = (NOW - timedelta(minutes=30)).replace(tzinfo=None)
    result = await _validate(repo, incident, "completed")
    assert result.code == ErrorCode.COMPLETION_TOO_EARLY
    assert result.details["elapsed_seconds"] == 30 * 60


async def test_checks_run_in_order(world):
    repo, incident = world
    # Unavailable and without members: availability is reported first
    repo.team.is_available = False
    repo.members = []
    assert (await _validate(repo, incident)).code == ErrorCode.TEAM_UNAVAILABLE
