"""Derived task state: what the console shows and which actions it allows."""

from __future__ import annotations

from datetime import datetime, timedelta

from courier.infrastructure.config import STALE_RUN_TIMEOUT
from courier.scheduling.types import (
    DeliveryRun,
    DeliveryTask,
    DerivedTaskState,
    ImmediateRule,
    RunStatus,
    ScheduledRule,
)

ONE_TIME_LOCKED_MESSAGE = "One-time task has already run and cannot be operated again. Duplicate it to resend."
OVERDUE_MESSAGE = "Scheduled time has passed. Run the task now or change its schedule."


def is_run_active(run: DeliveryRun | None, now: datetime, timeout: timedelta = STALE_RUN_TIMEOUT) -> bool:
    """A running run blocks the task only while inside the staleness window."""
    if run is None or run.status != "running":
        return False
    return now - run.started_at < timeout


def effective_run_status(run: DeliveryRun, now: datetime, timeout: timedelta = STALE_RUN_TIMEOUT) -> RunStatus:
    if run.status == "running" and not is_run_active(run, now, timeout):
        return "failed"
    return run.status


def apply_latest_run(task: DeliveryTask, run: DeliveryRun | None, now: datetime) -> DeliveryTask:
    """Return a copy of ``task`` whose last run status reflects its latest run record."""
    if run is None:
        return task
    return task.model_copy(update={"last_run_status": effective_run_status(run, now)})


def derive_state(task: DeliveryTask, now: datetime) -> DerivedTaskState:
    """Classify ``task`` for display.

    ``task.last_run_status`` must already have stale runs resolved, see
    ``apply_latest_run``. Rules are checked in priority order.
    """
    if task.last_run_status == "running":
        return DerivedTaskState(status="running", can_enable=False, can_run_now=False)

    rule = task.schedule_rule
    if isinstance(rule, (ImmediateRule, ScheduledRule)):
        if task.run_count > 0:
            return DerivedTaskState(
                status="failed" if task.last_run_status == "failed" else "completed",
                can_enable=False,
                can_run_now=False,
                message=ONE_TIME_LOCKED_MESSAGE,
            )

        if isinstance(rule, ImmediateRule):
            return DerivedTaskState(
                status="draft" if task.status == "draft" else "active",
                can_enable=True,
                can_run_now=True,
            )

        scheduled_at = rule.scheduled_at()
        if scheduled_at is None:
            return DerivedTaskState(status="draft", can_enable=True, can_run_now=True)

        if scheduled_at < now:
            return DerivedTaskState(status="overdue", can_enable=False, can_run_now=True, message=OVERDUE_MESSAGE)

        is_active = task.status == "active"
        return DerivedTaskState(
            status="scheduled" if is_active else "draft",
            can_enable=not is_active,
            can_run_now=True,
        )

    if task.status == "active":
        status = "active"
    elif task.status == "paused":
        status = "paused"
    else:
        status = "draft"
    return DerivedTaskState(status=status, can_enable=task.status != "active", can_run_now=True)
