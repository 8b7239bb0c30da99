"""Next-run computation for delivery task schedule rules."""

from __future__ import annotations

import calendar
from datetime import date, datetime, time, timedelta

from courier.scheduling.types import ImmediateRule, RecurringRule, ScheduledRule, ScheduleRule, TaskStatus


def compute_next_run(rule: ScheduleRule | None, now: datetime) -> datetime | None:
    """Return when a task with ``rule`` should next run, or None.

    Scheduled one-time rules are returned as-is even when already past;
    deciding that a task is overdue belongs to ``derive_state``. Recurring
    rules that have missed their slot advance by a single period only.
    """
    if isinstance(rule, ImmediateRule):
        return now
    if isinstance(rule, ScheduledRule):
        return rule.scheduled_at()
    if isinstance(rule, RecurringRule):
        return _next_recurring(rule, now)
    return None


def next_run_for_status(rule: ScheduleRule | None, status: TaskStatus, now: datetime) -> datetime | None:
    """Only active tasks carry a next run."""
    if status != "active":
        return None
    return compute_next_run(rule, now)


def _next_recurring(rule: RecurringRule, now: datetime) -> datetime | None:
    if rule.time is None or rule.frequency is None:
        return None

    base = now.date()
    if rule.start_date is not None and datetime.combine(rule.start_date, time.min) > now:
        base = rule.start_date

    candidate = datetime.combine(base, rule.time.replace(second=0, microsecond=0))
    if candidate < now:
        candidate = _advance(candidate, rule.frequency)

    if rule.end_date is not None and candidate > datetime.combine(rule.end_date, time.max):
        return None
    return candidate


def _advance(moment: datetime, frequency: str) -> datetime:
    if frequency == "daily":
        return moment + timedelta(days=1)
    if frequency == "weekly":
        return moment + timedelta(weeks=1)
    return datetime.combine(add_months(moment.date(), 1), moment.time())


def add_months(day: date, months: int) -> date:
    """Shift by whole months, clamping to the last day of the target month."""
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return day.replace(year=year, month=month, day=min(day.day, last_day))
