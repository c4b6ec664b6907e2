from enum import Enum


class WorkOrderStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


WORK_ORDER_TRANSITIONS: dict[WorkOrderStatus, frozenset[WorkOrderStatus]] = {
    WorkOrderStatus.NOT_STARTED: frozenset({WorkOrderStatus.IN_PROGRESS, WorkOrderStatus.COMPLETED, WorkOrderStatus.CANCELLED}),
    WorkOrderStatus.IN_PROGRESS: frozenset({WorkOrderStatus.COMPLETED, WorkOrderStatus.CANCELLED}),
    WorkOrderStatus.COMPLETED: frozenset(),
    WorkOrderStatus.CANCELLED: frozenset(),
}

# Incident status -> the work order status it implies
MIRRORED_STATUS = {
    "assigned": WorkOrderStatus.NOT_STARTED,
    "in_progress": WorkOrderStatus.IN_PROGRESS,
    "completed": WorkOrderStatus.COMPLETED,
    "cancelled": WorkOrderStatus.CANCELLED,
}


def can_transition(current: str, requested: str) -> bool:
    try:
        return WorkOrderStatus(requested) in WORK_ORDER_TRANSITIONS[WorkOrderStatus(current)]
    except ValueError:
        return False
