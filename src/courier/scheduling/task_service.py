"""Task manager: delivery task lifecycle, preflight checks, and manual runs."""

from __future__ import annotations

import random
import string
import time
from datetime import datetime
from typing import Any, Callable

from courier.audience.repository import AudienceRepository
from courier.audience.types import UserProfile
from courier.infrastructure.config import MAX_RECIPIENTS_PER_RUN, MIN_SCHEDULE_LEAD, STALE_RUN_TIMEOUT
from courier.infrastructure.logger import logger
from courier.messaging.formatter import format_from_address, render_body, render_subject
from courier.messaging.mailer import Mailer
from courier.messaging.repository import EmailRepository
from courier.messaging.types import OutgoingEmail
from courier.scheduling.repository import TaskRepository
from courier.scheduling.schedule import compute_next_run, next_run_for_status
from courier.scheduling.state import apply_latest_run, derive_state
from courier.scheduling.types import (
    DeliveryRun,
    DeliveryTask,
    DerivedTaskState,
    ImmediateRule,
    PreflightResult,
    RecurringRule,
    RunStatus,
    ScheduledRule,
    TaskDraft,
    TaskFilters,
    TaskStatus,
    TaskView,
)

STALE_RUN_MESSAGE = "Run did not finish in time and was marked as failed."


class TaskError(Exception):
    """Expected failure of a task operation."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details = details or {}


class TaskNotFoundError(TaskError):
    pass


class PreflightError(TaskError):
    """The task is not ready to be activated."""


class TaskLockedError(TaskError):
    """The task's derived state does not allow the requested action."""


def _new_task_id() -> str:
    rand = "".join(random.choices(string.ascii_lowercase + string.digits, k=8))
    return f"task-{int(time.time())}-{rand}"


class TaskManager:
    def __init__(
        self,
        task_repo: TaskRepository,
        audience_repo: AudienceRepository,
        email_repo: EmailRepository,
        mailer: Mailer,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._task_repo = task_repo
        self._audience_repo = audience_repo
        self._email_repo = email_repo
        self._mailer = mailer
        self._clock = clock

    # --- CRUD ---

    def save_draft(self, draft: TaskDraft) -> str:
        return self._persist(draft, "draft", None)

    def get_by_id(self, id: str) -> DeliveryTask | None:
        return self._task_repo.get_task_by_id(id)

    def delete(self, id: str) -> None:
        self._get(id)
        self._task_repo.delete_task(id)
        logger.info("Task deleted", task_id=id)

    def duplicate(self, id: str) -> str:
        """Copy a task as a fresh draft, the only way to send a one-time task again."""
        source = self._get(id)
        now = self._clock()
        copy = source.model_copy(update={
            "id": _new_task_id(),
            "name": f"{source.name} (copy)",
            "status": "draft",
            "run_count": 0,
            "last_run_status": None,
            "last_run_message": None,
            "last_run_at": None,
            "next_run_at": None,
            "completed_at": None,
            "created_at": now,
            "updated_at": now,
        })
        self._task_repo.create_task(copy)
        logger.info("Task duplicated", task_id=id, copy_id=copy.id)
        return copy.id

    # --- Views ---

    def get_view(self, id: str) -> TaskView:
        task = self._get(id)
        latest = self._task_repo.get_latest_runs([id]).get(id)
        return self._to_view(task, latest, self._clock())

    def list_with_state(self, filters: TaskFilters | None = None) -> list[TaskView]:
        tasks = self._task_repo.get_all_tasks(filters)
        latest_runs = self._task_repo.get_latest_runs([t.id for t in tasks])
        now = self._clock()
        return [self._to_view(task, latest_runs.get(task.id), now) for task in tasks]

    def get_runs(self, id: str, limit: int | None = None) -> list[DeliveryRun]:
        self._get(id)
        return self._task_repo.get_runs_for_task(id, limit)

    # --- Activation ---

    def preflight(self, draft: TaskDraft) -> PreflightResult:
        """Check that ``draft`` can go live. Raises PreflightError otherwise."""
        now = self._clock()
        rule = draft.schedule_rule

        if rule is None:
            raise PreflightError("Tasks need a schedule rule.")
        if isinstance(rule, ScheduledRule):
            target = rule.scheduled_at()
            if target is None:
                raise PreflightError("Scheduled one-time tasks need an execution date and time.")
            if not target > now + MIN_SCHEDULE_LEAD:
                raise PreflightError(
                    "One-time tasks must be scheduled at least one minute from now.",
                    {"scheduled_at": target.isoformat()},
                )

        if draft.channel == "email":
            email = draft.channel_config.email if draft.channel_config else None
            if email is None or not email.account_id:
                raise PreflightError("Email tasks need a sending account.")
            if not email.template_id:
                raise PreflightError("Email tasks need an email template.")
            if not email.subject.strip():
                raise PreflightError("Email tasks need a subject.")
        else:
            raise PreflightError("In-app delivery is not available yet. Choose the email channel.")

        if draft.audience_rule is None:
            raise PreflightError("Tasks need an audience rule.")
        estimated = self._audience_repo.count(draft.audience_rule)
        if estimated == 0:
            raise PreflightError("The audience rule matches no users. Adjust the filters.")

        if draft.id and isinstance(rule, (ImmediateRule, ScheduledRule)):
            existing = self._task_repo.get_task_by_id(draft.id)
            if existing is not None and existing.run_count > 0:
                raise PreflightError("This one-time task has already run. Duplicate it to send again.")

        next_run_at = compute_next_run(rule, now)
        if isinstance(rule, RecurringRule) and next_run_at is None:
            raise PreflightError("Recurring schedule is incomplete or has already ended.")

        return PreflightResult(estimated_recipients=estimated, next_run_at=next_run_at)

    def activate(self, draft: TaskDraft) -> tuple[str, PreflightResult]:
        result = self.preflight(draft)
        task_id = self._persist(draft, "active", result.next_run_at)
        logger.info(
            "Task activated",
            task_id=task_id,
            estimated_recipients=result.estimated_recipients,
            next_run_at=result.next_run_at.isoformat() if result.next_run_at else None,
        )
        return task_id, result

    def update_status(self, id: str, status: TaskStatus) -> None:
        task = self._get(id)
        now = self._clock()
        if status == "active" and task.status != "active":
            state = self._derive(task, now)
            if not state.can_enable:
                raise TaskLockedError(
                    state.message or f"Task cannot be enabled while {state.status}.",
                    {"task_id": id, "state": state.status},
                )
        next_run_at = next_run_for_status(task.schedule_rule, status, now)
        self._task_repo.update_task(id, status=status, next_run_at=next_run_at, updated_at=now)
        logger.info("Task status updated", task_id=id, status=status)

    def pause(self, id: str) -> None:
        self.update_status(id, "paused")

    def resume(self, id: str) -> None:
        self.update_status(id, "active")

    # --- Runs ---

    def run_now(self, id: str) -> DeliveryRun:
        """Deliver ``id`` to its audience immediately and record the run."""
        task = self._get(id)
        started_at = self._clock()
        state = self._derive(task, started_at)
        if not state.can_run_now:
            raise TaskLockedError(
                state.message or "Task is already running.",
                {"task_id": id, "state": state.status},
            )

        run_id = self._task_repo.start_run(id, started_at)
        logger.info("Running delivery task", task_id=id, run_id=run_id)

        recipient_count = success_count = failure_count = 0
        try:
            if task.audience_rule is None:
                status, message = "failed", "Audience rule is missing."
            else:
                recipients = self._audience_repo.find(task.audience_rule)
                recipient_count = len(recipients)
                if not recipients:
                    status, message = "skipped", "No recipients found matching criteria."
                elif recipient_count > MAX_RECIPIENTS_PER_RUN:
                    status, message = "failed", f"Exceeded limit of {MAX_RECIPIENTS_PER_RUN} recipients per run."
                else:
                    success_count, failure_count = self._send_emails(task, recipients)
                    if failure_count > 0:
                        status, message = "failed", f"Completed with {failure_count} failures."
                    else:
                        status, message = "success", f"Successfully sent to {success_count} recipients."
        except Exception as err:
            logger.exception("Delivery task failed", task_id=id, run_id=run_id)
            status, message = "failed", f"Error: {err}"

        self._complete_run(task, run_id, status, message, recipient_count, success_count, failure_count)
        logger.info("Delivery task finished", task_id=id, run_id=run_id, status=status, recipients=recipient_count)
        run = self._task_repo.get_run(run_id)
        assert run is not None
        return run

    def recover_stale_runs(self) -> list[str]:
        """Fail runs left in ``running`` past the staleness window. Returns affected task ids."""
        now = self._clock()
        task_ids = self._task_repo.fail_stale_runs(now - STALE_RUN_TIMEOUT, now, STALE_RUN_MESSAGE)
        if task_ids:
            logger.warning("Recovered stale runs", count=len(task_ids), task_ids=task_ids)
        return task_ids

    # --- Internal ---

    def _get(self, id: str) -> DeliveryTask:
        task = self._task_repo.get_task_by_id(id)
        if task is None:
            raise TaskNotFoundError(f"Task not found: {id}", {"task_id": id})
        return task

    def _derive(self, task: DeliveryTask, now: datetime) -> DerivedTaskState:
        latest = self._task_repo.get_latest_runs([task.id]).get(task.id)
        return derive_state(apply_latest_run(task, latest, now), now)

    def _to_view(self, task: DeliveryTask, latest: DeliveryRun | None, now: datetime) -> TaskView:
        effective = apply_latest_run(task, latest, now)
        return TaskView(task=effective, latest_run=latest, state=derive_state(effective, now))

    def _persist(self, draft: TaskDraft, status: TaskStatus, next_run_at: datetime | None) -> str:
        now = self._clock()
        fields = {
            "name": draft.name,
            "type": draft.type,
            "channel": draft.channel,
            "status": status,
            "schedule_rule": draft.schedule_rule,
            "audience_rule": draft.audience_rule,
            "channel_config": draft.channel_config,
            "next_run_at": next_run_at,
            "updated_at": now,
        }
        if draft.id and self._task_repo.get_task_by_id(draft.id) is not None:
            self._task_repo.update_task(draft.id, **fields)
            return draft.id

        task = DeliveryTask(id=draft.id or _new_task_id(), created_at=now, **fields)
        self._task_repo.create_task(task)
        return task.id

    def _send_emails(self, task: DeliveryTask, recipients: list[UserProfile]) -> tuple[int, int]:
        config = task.channel_config.email if task.channel_config else None
        if task.channel != "email" or config is None:
            logger.error("Task has no email channel configuration", task_id=task.id, channel=task.channel)
            return 0, len(recipients)

        account = self._email_repo.get_account(config.account_id)
        if account is None:
            logger.error("Email sending account not found", task_id=task.id, account_id=config.account_id)
            return 0, len(recipients)
        template = self._email_repo.get_template(config.template_id)
        subject = config.subject or (template.subject if template else "")

        success_count = 0
        for user in recipients:
            sent = self._mailer.send(OutgoingEmail(
                from_address=format_from_address(account),
                to=user.email,
                subject=render_subject(subject, user.name),
                html=render_body(config, template, user.name),
                reply_to=account.reply_to,
            ))
            if sent:
                success_count += 1
        return success_count, len(recipients) - success_count

    def _complete_run(
        self,
        task: DeliveryTask,
        run_id: int,
        status: RunStatus,
        message: str,
        recipient_count: int,
        success_count: int,
        failure_count: int,
    ) -> None:
        finished_at = self._clock()
        self._task_repo.finish_run(
            run_id, status, finished_at, message,
            recipient_count=recipient_count, success_count=success_count, failure_count=failure_count,
        )

        updates: dict[str, Any] = {}
        if task.is_one_time:
            updates.update(status="completed", completed_at=finished_at, next_run_at=None)
        elif task.status == "active":
            updates["next_run_at"] = compute_next_run(task.schedule_rule, finished_at)
        self._task_repo.update_task_after_run(task.id, status, message, finished_at, **updates)
