import asyncio
import uuid
from datetime import timedelta

from sqlalchemy import func, select

from app.core.assignment.orchestrator import AssignmentOutcome
from app.core.audit.models import AuditLog
from app.core.errors import AssignmentError, DomainError, ErrorCode
from app.core.incidents.models import Incident
from app.core.notifications.models import Notification
from app.core.notifications.publisher import ASSIGNMENT_UPDATE, NEW_ASSIGNMENT, STATUS_UPDATE
from app.core.rbac.models import Principal
from app.core.teams.models import Team
from app.core.teams.service import list_active_members
from app.core.workorders.models import WorkOrder, WorkerProgress
from app.db.base import as_utc


async def _rows(session_factory, model, *where):
    async with session_factory() as db:
        result = await db.execute(select(model).where(*where))
        return list(result.scalars().all())


async def _members(session_factory, team):
    async with session_factory() as db:
        return await list_active_members(db, team.id)


async def test_assign_binds_incident_team_and_work_order(orchestrator, make, session_factory, published):
    manager = await make.user("manager")
    team = await make.team(manager)
    incident = await make.incident()

    outcome = await orchestrator.assign(incident.id, Principal.from_user(manager))

    assert isinstance(outcome, AssignmentOutcome)
    assert outcome.team_id == team.id
    assert outcome.categorization.category == "medium"
    assert not outcome.dry_run

    stored = await make.reload(Incident, incident.id)
    assert stored.status == "assigned"
    assert stored.assigned_team_id == team.id
    assert stored.priority == "medium"
    assert stored.category_reasoning == "Default classification - no specific keywords matched"
    assert as_utc(stored.sla_due_at) - as_utc(stored.assigned_at) == timedelta(hours=24)

    assert (await make.reload(Team, team.id)).current_capacity == 1
    orders = await _rows(session_factory, WorkOrder, WorkOrder.incident_id == incident.id)
    assert len(orders) == 1
    assert orders[0].id == outcome.work_order_id
    assert orders[0].status == "not_started"
    progress = await _rows(session_factory, WorkerProgress, WorkerProgress.work_order_id == outcome.work_order_id)
    assert len(progress) == 2

    titles = sorted(e.title for e in published)
    assert titles == ["Assignment Completed", "New Job Assignment", "New Team Assignment"]
    assert {e.event for e in published} == {NEW_ASSIGNMENT, ASSIGNMENT_UPDATE}
    leader_event = next(e for e in published if e.title == "New Team Assignment")
    members = await _members(session_factory, team)
    leader = next(m for m in members if m.role == "team_leader")
    assert leader_event.user_id == leader.id
    assert len(await _rows(session_factory, Notification)) == 3

    audits = await _rows(session_factory, AuditLog, AuditLog.action == "incident.assign")
    assert audits[0].details["before"]["status"] == "verified"
    assert audits[0].details["after"]["status"] == "assigned"


async def test_second_assign_is_rejected_without_double_counting(orchestrator, make):
    manager = await make.user("manager")
    team = await make.team(manager)
    incident = await make.incident()
    principal = Principal.from_user(manager)

    assert isinstance(await orchestrator.assign(incident.id, principal), AssignmentOutcome)
    again = await orchestrator.assign(incident.id, principal)

    assert isinstance(again, AssignmentError)
    assert again.code == ErrorCode.ASSIGNMENT_INTEGRITY_VIOLATION
    assert (await make.reload(Team, team.id)).current_capacity == 1


async def test_concurrent_assign_of_one_incident(orchestrator, make, session_factory):
    manager = await make.user("manager")
    team = await make.team(manager)
    incident = await make.incident()
    principal = Principal.from_user(manager)

    results = await asyncio.gather(*(orchestrator.assign(incident.id, principal) for _ in range(3)))

    assert sum(isinstance(r, AssignmentOutcome) for r in results) == 1
    assert all(r.code == ErrorCode.ASSIGNMENT_INTEGRITY_VIOLATION for r in results if isinstance(r, DomainError))
    assert (await make.reload(Team, team.id)).current_capacity == 1
    assert len(await _rows(session_factory, WorkOrder)) == 1


async def test_concurrent_assign_never_overfills_a_team(orchestrator, make):
    manager = await make.user("manager")
    team = await make.team(manager, max_capacity=1)
    first = await make.incident()
    second = await make.incident()
    principal = Principal.from_user(manager)

    results = await asyncio.gather(orchestrator.assign(first.id, principal), orchestrator.assign(second.id, principal))

    assert sum(isinstance(r, AssignmentOutcome) for r in results) == 1
    failure = next(r for r in results if isinstance(r, DomainError))
    assert failure.code in (ErrorCode.NO_SUITABLE_TEAM, ErrorCode.ASSIGNMENT_INTEGRITY_VIOLATION)
    assert (await make.reload(Team, team.id)).current_capacity == 1


async def test_dry_run_writes_nothing(orchestrator, make, session_factory, published):
    manager = await make.user("manager")
    team = await make.team(manager)
    incident = await make.incident(title="Emergency overflow at the pump station")

    outcome = await orchestrator.assign(incident.id, Principal.from_user(manager), dry_run=True)

    assert outcome.dry_run
    assert outcome.work_order_id is None
    assert outcome.categorization.category == "critical"
    assert outcome.sla_due_at - outcome.assigned_at == timedelta(hours=4)
    assert (await make.reload(Incident, incident.id)).status == "verified"
    assert (await make.reload(Team, team.id)).current_capacity == 0
    assert await _rows(session_factory, WorkOrder) == []
    assert published == []


async def test_assign_requires_verified_incident(orchestrator, make):
    manager = await make.user("manager")
    await make.team(manager)
    incident = await make.incident(status="not_started")

    result = await orchestrator.assign(incident.id, Principal.from_user(manager))
    assert result.code == ErrorCode.INCIDENT_NOT_READY


async def test_assign_unknown_incident(orchestrator, make):
    manager = await make.user("manager")
    result = await orchestrator.assign(uuid.uuid4(), Principal.from_user(manager))
    assert result.code == ErrorCode.INCIDENT_NOT_FOUND
    assert result.status_code == 404


async def test_worker_cannot_assign(orchestrator, make):
    manager = await make.user("manager")
    await make.team(manager)
    worker = await make.user("worker")
    incident = await make.incident()

    result = await orchestrator.assign(incident.id, Principal.from_user(worker))
    assert result.code == ErrorCode.MANAGER_NOT_AUTHORIZED
    assert result.status_code == 403


async def test_manager_without_available_team(orchestrator, make):
    manager = await make.user("manager")
    await make.team(manager, is_available=False)
    incident = await make.incident()

    result = await orchestrator.assign(incident.id, Principal.from_user(manager))
    assert result.code == ErrorCode.MANAGER_NOT_AUTHORIZED


async def test_no_suitable_team_lists_rejections(orchestrator, make):
    manager = await make.user("manager")
    await make.team(manager, name="Full Crew", max_capacity=1, current_capacity=1)
    await make.team(manager, name="Empty Crew", members=0)
    incident = await make.incident()

    result = await orchestrator.assign(incident.id, Principal.from_user(manager))
    assert result.code == ErrorCode.NO_SUITABLE_TEAM
    assert result.details["rejections"] == {
        "Full Crew": "TEAM_AT_CAPACITY",
        "Empty Crew": "TEAM_NO_ACTIVE_MEMBERS",
    }


async def test_requested_team(orchestrator, make):
    manager = await make.user("manager")
    await make.team(manager, priority_level=5)
    wanted = await make.team(manager, priority_level=1)
    foreign = await make.team(await make.user("manager"))
    principal = Principal.from_user(manager)

    outcome = await orchestrator.assign((await make.incident()).id, principal, team_id=wanted.id)
    assert outcome.team_id == wanted.id

    refused = await orchestrator.assign((await make.incident()).id, principal, team_id=foreign.id)
    assert refused.code == ErrorCode.MANAGER_NOT_AUTHORIZED


async def test_admin_may_use_any_team(orchestrator, make):
    manager = await make.user("manager")
    team = await make.team(manager)
    admin = await make.user("admin")

    outcome = await orchestrator.assign((await make.incident()).id, Principal.from_user(admin))
    assert outcome.team_id == team.id


async def test_force_assign_lifts_category_cap(orchestrator, make):
    manager = await make.user("manager")
    team = await make.team(manager)
    principal = Principal.from_user(manager)
    for _ in range(2):
        incident = await make.incident(title="Emergency overflow")
        assert isinstance(await orchestrator.assign(incident.id, principal), AssignmentOutcome)

    third = await make.incident(title="Emergency overflow")
    capped = await orchestrator.assign(third.id, principal)
    assert capped.code == ErrorCode.NO_SUITABLE_TEAM
    assert capped.details["rejections"] == {team.name: "TEAM_CATEGORY_CAP_REACHED"}

    forced = await orchestrator.assign(third.id, principal, force_assign=True)
    assert forced.team_id == team.id
    assert (await make.reload(Team, team.id)).current_capacity == 3


async def test_revert_restores_pre_assignment_state(orchestrator, make, session_factory, published):
    manager = await make.user("manager")
    team = await make.team(manager)
    incident = await make.incident()
    principal = Principal.from_user(manager)
    outcome = await orchestrator.assign(incident.id, principal)
    published.clear()

    reverted = await orchestrator.revert(incident.id, principal, "wrong crew")

    assert reverted.status == "verified"
    assert reverted.assigned_team_id is None
    assert reverted.assigned_at is None
    assert reverted.priority is None
    assert reverted.sla_due_at is None
    assert (await make.reload(Team, team.id)).current_capacity == 0
    assert await _rows(session_factory, WorkOrder) == []
    assert await _rows(session_factory, WorkerProgress, WorkerProgress.work_order_id == outcome.work_order_id) == []
    assert published and all(e.event == STATUS_UPDATE for e in published)

    again = await orchestrator.revert(incident.id, principal)
    assert again.code == ErrorCode.REVERT_NOT_ALLOWED

    # The incident can be assigned afresh
    assert isinstance(await orchestrator.assign(incident.id, principal), AssignmentOutcome)


async def test_revert_by_other_manager_rejected(orchestrator, make):
    manager = await make.user("manager")
    await make.team(manager)
    incident = await make.incident()
    await orchestrator.assign(incident.id, Principal.from_user(manager))

    other = await make.user("manager")
    result = await orchestrator.revert(incident.id, Principal.from_user(other))
    assert result.code == ErrorCode.MANAGER_NOT_AUTHORIZED


async def test_work_lifecycle_through_completion(orchestrator, make, session_factory, clock):
    manager = await make.user("manager")
    team = await make.team(manager)
    incident = await make.incident()
    principal = Principal.from_user(manager)
    await orchestrator.assign(incident.id, principal)

    clock.advance(minutes=10)
    started = await orchestrator.transition(incident.id, principal, "in_progress")
    assert started.status == "in_progress"
    order = (await _rows(session_factory, WorkOrder, WorkOrder.incident_id == incident.id))[0]
    assert order.status == "in_progress"
    assert order.started_at is not None

    too_early = await orchestrator.transition(incident.id, principal, "completed")
    assert too_early.code == ErrorCode.COMPLETION_TOO_EARLY
    assert (await make.reload(Incident, incident.id)).status == "in_progress"

    clock.advance(minutes=51)
    done = await orchestrator.transition(incident.id, principal, "completed", "cleared")
    assert done.status == "completed"
    assert done.assigned_team_id == team.id
    assert (await make.reload(Team, team.id)).current_capacity == 0
    order = (await _rows(session_factory, WorkOrder, WorkOrder.incident_id == incident.id))[0]
    assert order.status == "completed"

    terminal = await orchestrator.transition(incident.id, principal, "cancelled")
    assert terminal.code == ErrorCode.INVALID_TRANSITION
    assert terminal.details["allowed"] == []


async def test_outsider_cannot_start_work(orchestrator, make):
    manager = await make.user("manager")
    await make.team(manager)
    incident = await make.incident()
    await orchestrator.assign(incident.id, Principal.from_user(manager))

    outsider = await make.user("worker")
    result = await orchestrator.transition(incident.id, Principal.from_user(outsider), "in_progress")
    assert result.code == ErrorCode.MANAGER_NOT_AUTHORIZED


async def test_worker_cannot_complete(orchestrator, make, session_factory, clock):
    manager = await make.user("manager")
    team = await make.team(manager)
    incident = await make.incident()
    principal = Principal.from_user(manager)
    await orchestrator.assign(incident.id, principal)
    clock.advance(minutes=10)
    await orchestrator.transition(incident.id, principal, "in_progress")

    clock.advance(hours=2)
    for member in await _members(session_factory, team):
        result = await orchestrator.transition(incident.id, Principal.from_user(member), "completed")
        assert result.code == ErrorCode.MANAGER_NOT_AUTHORIZED

    assert (await make.reload(Incident, incident.id)).status == "in_progress"
    assert (await make.reload(Team, team.id)).current_capacity == 1


async def test_foreign_manager_cannot_cancel(orchestrator, make, session_factory):
    manager = await make.user("manager")
    team = await make.team(manager)
    incident = await make.incident()
    await orchestrator.assign(incident.id, Principal.from_user(manager))

    other = await make.user("manager")
    await make.team(other)
    result = await orchestrator.transition(incident.id, Principal.from_user(other), "cancelled", "not ours")
    assert result.code == ErrorCode.MANAGER_NOT_AUTHORIZED
    assert result.details["team_id"] == str(team.id)

    stored = await make.reload(Incident, incident.id)
    assert stored.status == "assigned"
    assert stored.assigned_team_id == team.id
    assert (await make.reload(Team, team.id)).current_capacity == 1
    order = (await _rows(session_factory, WorkOrder, WorkOrder.incident_id == incident.id))[0]
    assert order.status == "not_started"


async def test_admin_may_cancel_any_assignment(orchestrator, make):
    manager = await make.user("manager")
    team = await make.team(manager)
    incident = await make.incident()
    await orchestrator.assign(incident.id, Principal.from_user(manager))

    admin = await make.user("admin")
    cancelled = await orchestrator.transition(incident.id, Principal.from_user(admin), "cancelled")
    assert cancelled.status == "cancelled"
    assert (await make.reload(Team, team.id)).current_capacity == 0


async def test_cancel_frees_the_slot(orchestrator, make, session_factory):
    manager = await make.user("manager")
    team = await make.team(manager)
    incident = await make.incident()
    principal = Principal.from_user(manager)
    await orchestrator.assign(incident.id, principal)

    cancelled = await orchestrator.transition(incident.id, principal, "cancelled", "duplicate report")

    assert cancelled.status == "cancelled"
    assert cancelled.assigned_team_id is None
    assert cancelled.assigned_at is None
    assert (await make.reload(Team, team.id)).current_capacity == 0
    order = (await _rows(session_factory, WorkOrder, WorkOrder.incident_id == incident.id))[0]
    assert order.status == "cancelled"


async def test_verify_and_illegal_jumps(orchestrator, make):
    manager = await make.user("manager")
    principal = Principal.from_user(manager)
    incident = await make.incident(status="not_started")

    skipped = await orchestrator.transition(incident.id, principal, "in_progress")
    assert skipped.code == ErrorCode.INVALID_TRANSITION
    assert skipped.details["allowed"] == ["verified"]

    verified = await orchestrator.transition(incident.id, principal, "verified")
    assert verified.status == "verified"

    via_transition = await orchestrator.transition(incident.id, principal, "assigned")
    assert via_transition.code == ErrorCode.INVALID_TRANSITION
    assert "assign operation" in via_transition.message


async def test_worker_cannot_verify(orchestrator, make):
    worker = await make.user("worker")
    incident = await make.incident(status="not_started")
    result = await orchestrator.transition(incident.id, Principal.from_user(worker), "verified")
    assert result.code == ErrorCode.MANAGER_NOT_AUTHORIZED


async def test_failed_subscriber_does_not_undo_assignment(orchestrator, make, notifier):
    async def broken(event):
        raise RuntimeError("socket closed")

    notifier.subscribe(broken)
    manager = await make.user("manager")
    await make.team(manager)
    incident = await make.incident()

    outcome = await orchestrator.assign(incident.id, Principal.from_user(manager))
    assert isinstance(outcome, AssignmentOutcome)
    assert (await make.reload(Incident, incident.id)).status == "assigned"


async def test_capacity_changes_are_audited(orchestrator, make, session_factory):
    manager = await make.user("manager")
    await make.team(manager)
    incident = await make.incident()
    principal = Principal.from_user(manager)
    await orchestrator.assign(incident.id, principal)
    await orchestrator.revert(incident.id, principal)

    async with session_factory() as db:
        count = await db.scalar(select(func.count(AuditLog.id)).where(AuditLog.action == "team.capacity_change"))
    assert count == 2
