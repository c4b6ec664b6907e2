import asyncio
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.assignment.categorizer import categorize
from app.core.assignment.orchestrator import AssignmentOrchestrator, AssignmentOutcome
from app.core.assignment.repository import AssignmentRepository
from app.core.audit.service import audit
from app.core.rbac.models import Principal, User
from app.core.rbac.service import list_active_managers
from app.core.scheduling.config import SchedulerConfig
from app.core.teams.service import reconcile_availability
from app.db.base import utcnow
from app.db.session import get_session
from app.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class QueuedIncident:
    id: uuid.UUID
    tracking_no: str
    title: str
    description: str | None
    location: str | None


@dataclass
class SchedulerStats:
    total_runs: int = 0
    total_assignments: int = 0
    total_errors: int = 0
    last_error: dict[str, Any] | None = None


@dataclass
class RunSummary:
    started_at: datetime
    dry_run: bool
    finished_at: datetime | None = None
    managers: int = 0
    processed: int = 0
    assigned: int = 0
    failed: int = 0
    error: str | None = None
    per_manager: dict[str, dict[str, int]] = field(default_factory=dict)


class AssignmentScheduler:
    """
    Periodically hands verified, unassigned incidents to the orchestrator.

    One run at a time. ``stop()`` waits for an in-flight run to finish, it
    never interrupts one.
    """

    def __init__(
        self,
        orchestrator: AssignmentOrchestrator,
        session_factory: async_sessionmaker[AsyncSession],
        config: SchedulerConfig | None = None,
        *,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.orchestrator = orchestrator
        self.session_factory = session_factory
        self.config = config or SchedulerConfig()
        self.clock = clock
        self.sleep = sleep
        self.stats = SchedulerStats()
        self.last_run: datetime | None = None
        self._history: dict[uuid.UUID, datetime] = {}
        self._task: asyncio.Task | None = None
        self._stop_event: asyncio.Event | None = None
        self._run_lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ── Control surface ──────────────────────────────────────────────────────

    async def start(self, config: SchedulerConfig | dict[str, Any] | None = None) -> dict[str, Any]:
        if isinstance(config, dict):
            config = self.config.merged(config)
        if config is not None:
            self.config = config
        if self.is_running:
            return self.status()
        self.config = self.config.merged({"enabled": True})
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._loop(self._stop_event), name="assignment-scheduler")
        logger.info("scheduler_started", interval_seconds=self.config.interval_seconds, dry_run=self.config.dry_run)
        return self.status()

    async def stop(self) -> dict[str, Any]:
        if self._task is None:
            return self.status()
        self.config = self.config.merged({"enabled": False})
        if self._stop_event:
            self._stop_event.set()
        task, self._task = self._task, None
        await task
        logger.info("scheduler_stopped", total_runs=self.stats.total_runs)
        return self.status()

    def status(self) -> dict[str, Any]:
        return {
            "is_running": self.is_running,
            "config": self.config.model_dump(),
            "last_run": self.last_run,
            "stats": asdict(self.stats),
            "history_size": len(self._history),
        }

    async def trigger_manual_run(self, dry_run: bool | None = None) -> RunSummary:
        logger.info("scheduler_manual_run", dry_run=self.config.dry_run if dry_run is None else dry_run)
        return await self.run_once(dry_run=dry_run)

    def update_config(self, partial: dict[str, Any]) -> SchedulerConfig:
        """Apply a partial update. Interval changes take effect after the current wait."""
        self.config = self.config.merged(partial)
        logger.info("scheduler_config_updated", changes=partial)
        return self.config

    async def _loop(self, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            await self.run_once()
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.config.interval_seconds)
            except asyncio.TimeoutError:
                continue

    # ── Runs ─────────────────────────────────────────────────────────────────

    def _prune_history(self, now: datetime) -> None:
        cutoff = now - timedelta(seconds=self.config.history_retention_seconds)
        for incident_id, at in list(self._history.items()):
            if at < cutoff:
                del self._history[incident_id]
        overflow = len(self._history) - self.config.history_max_entries
        if overflow > 0:
            for incident_id, _ in sorted(self._history.items(), key=lambda item: item[1])[:overflow]:
                del self._history[incident_id]

    def _recently_processed(self, incident_id: uuid.UUID, now: datetime) -> bool:
        at = self._history.get(incident_id)
        return at is not None and now - at < timedelta(seconds=self.config.cooldown_seconds)

    async def _fetch_queue(self, manager: User, now: datetime) -> list[QueuedIncident] | None:
        """None when the manager has no teams."""
        async with self.session_factory() as session:
            repo = AssignmentRepository(session)
            if not await repo.teams_for_manager(manager):
                return None
            incidents = await repo.unassigned_incidents(now - timedelta(seconds=self.config.cooldown_seconds))
            return [
                QueuedIncident(i.id, i.tracking_no, i.title, i.description, i.location)
                for i in incidents
                if not self._recently_processed(i.id, now)
            ]

    async def _process_manager(self, manager: User, queue: list[QueuedIncident], dry_run: bool) -> tuple[int, int]:
        config = self.config
        groups: dict[str, list[QueuedIncident]] = {priority: [] for priority in config.priority_order}
        for incident in queue:
            category = categorize(incident, self.orchestrator.rules).category
            if category in groups:
                groups[category].append(incident)

        principal = Principal.from_user(manager)
        assigned = failed = 0
        for priority in config.priority_order:
            batch = groups[priority][: config.max_concurrent_assignments]
            if batch:
                logger.debug("scheduler_priority_batch", priority=priority, count=len(batch), manager_id=str(manager.id))
            for index, incident in enumerate(batch):
                try:
                    result = await self.orchestrator.assign(
                        incident.id,
                        principal,
                        dry_run=dry_run,
                        force_assign=config.emergency_assignment and priority == "critical",
                    )
                except Exception:
                    failed += 1
                    logger.exception("scheduler_assignment_error", incident_id=str(incident.id), manager_id=str(manager.id))
                else:
                    if isinstance(result, AssignmentOutcome):
                        assigned += 1
                        self._history[incident.id] = self.clock()
                        logger.info(
                            "scheduler_dry_run_assignment" if dry_run else "scheduler_assignment",
                            incident_id=str(incident.id),
                            team=result.team_name,
                            category=priority,
                            reasoning=result.categorization.reasoning,
                        )
                    else:
                        failed += 1
                        logger.warning(
                            "scheduler_assignment_failed",
                            incident_id=str(incident.id),
                            code=result.code.value,
                            reason=result.message,
                        )
                if index < len(batch) - 1 and config.assignment_delay_seconds:
                    await self.sleep(config.assignment_delay_seconds)
        return assigned, failed

    async def run_once(self, dry_run: bool | None = None) -> RunSummary:
        async with self._run_lock:
            dry_run = self.config.dry_run if dry_run is None else dry_run
            summary = RunSummary(started_at=self.clock(), dry_run=dry_run)
            self.stats.total_runs += 1
            self._prune_history(summary.started_at)
            try:
                if self.config.reconcile_availability:
                    async with get_session(self.session_factory) as db:
                        await reconcile_availability(db, summary.started_at)

                async with self.session_factory() as session:
                    managers = await list_active_managers(session)
                summary.managers = len(managers)

                for manager in managers:
                    queue = await self._fetch_queue(manager, summary.started_at)
                    if not queue:
                        continue
                    assigned, failed = await self._process_manager(manager, queue, dry_run)
                    summary.processed += len(queue)
                    summary.assigned += assigned
                    summary.failed += failed
                    summary.per_manager[str(manager.id)] = {"queued": len(queue), "assigned": assigned, "failed": failed}
                    if assigned or failed:
                        await self._record(
                            manager.id,
                            f"Scheduled assignment: {assigned} assigned, {failed} failed",
                            "incidents",
                            {"queued": len(queue), "assigned": assigned, "failed": failed, "dry_run": dry_run},
                        )
            except Exception as exc:
                self.stats.total_errors += 1
                self.stats.last_error = {"message": str(exc), "type": type(exc).__name__, "timestamp": self.clock()}
                summary.error = str(exc)
                logger.exception("scheduler_run_failed", managers=summary.managers)
                await self._record(
                    None,
                    "Scheduled assignment cycle failed",
                    "system",
                    {"error": str(exc), "stats": asdict(self.stats), "config": self.config.model_dump()},
                )
            else:
                await self._record(
                    None,
                    f"System scheduled assignment cycle completed: {summary.assigned} assigned, {summary.failed} errors",
                    "system",
                    {
                        "assigned": summary.assigned,
                        "failed": summary.failed,
                        "managers": summary.managers,
                        "dry_run": dry_run,
                        "config": self.config.model_dump(),
                    },
                )
            finally:
                self.stats.total_assignments += summary.assigned
                self.stats.total_errors += summary.failed
                summary.finished_at = self.clock()
                self.last_run = summary.started_at

            logger.info(
                "scheduler_run_completed",
                assigned=summary.assigned,
                failed=summary.failed,
                managers=summary.managers,
                dry_run=dry_run,
                duration_ms=int((summary.finished_at - summary.started_at).total_seconds() * 1000),
            )
            return summary

    async def _record(self, actor_id: uuid.UUID | None, action: str, table_name: str, details: dict[str, Any]) -> None:
        try:
            async with get_session(self.session_factory) as db:
                await audit(db, actor_id=actor_id, action=action, table_name=table_name, details=details)
        except Exception:
            logger.exception("scheduler_audit_failed", action=action)
