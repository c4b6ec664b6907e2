import random
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.assignment.orchestrator import AssignmentOrchestrator
from app.core.assignment.rules import AssignmentRules, load_rules
from app.core.notifications.publisher import NotificationPublisher
from app.core.scheduling.config import config_from_settings
from app.core.scheduling.scheduler import AssignmentScheduler
from app.settings import Settings


@dataclass
class Services:
    """Long-lived collaborators built once per app and shared by every request."""
    settings: Settings
    session_factory: async_sessionmaker[AsyncSession]
    rules: AssignmentRules
    notifier: NotificationPublisher
    orchestrator: AssignmentOrchestrator
    scheduler: AssignmentScheduler


def build_services(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings,
    *,
    rng: random.Random | None = None,
) -> Services:
    rules = load_rules(settings.ASSIGNMENT_RULES_FILE)
    notifier = NotificationPublisher()
    orchestrator = AssignmentOrchestrator(
        session_factory,
        rules=rules,
        notifier=notifier,
        completion_min_dwell=timedelta(minutes=settings.COMPLETION_MIN_DWELL_MINUTES),
        rng=rng,
    )
    scheduler = AssignmentScheduler(orchestrator, session_factory, config_from_settings(settings))
    return Services(
        settings=settings,
        session_factory=session_factory,
        rules=rules,
        notifier=notifier,
        orchestrator=orchestrator,
        scheduler=scheduler,
    )
