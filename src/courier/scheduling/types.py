"""Scheduling domain types."""

from __future__ import annotations

import datetime as dt
from datetime import date, datetime, time
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Discriminator, Field, Tag

from courier.audience.types import AudienceRule

TaskStatus = Literal["draft", "active", "paused", "completed"]
RunStatus = Literal["running", "success", "failed", "skipped"]
Frequency = Literal["daily", "weekly", "monthly"]
DerivedTaskStatus = Literal["draft", "scheduled", "running", "overdue", "completed", "failed", "active", "paused"]


class ImmediateRule(BaseModel):
    """Run once, as soon as the task is activated."""

    mode: Literal["one_time"] = "one_time"
    one_time_type: Literal["immediate"] = "immediate"


class ScheduledRule(BaseModel):
    """Run once at a local wall-clock date and time.

    Drafts may be saved before the date or time is chosen, and a one-time rule
    without a type loads as this variant and never has a scheduled time,
    even when a date and time were stored.
    """

    mode: Literal["one_time"] = "one_time"
    one_time_type: Literal["scheduled"] | None = "scheduled"
    one_time_date: date | None = None
    one_time_time: time | None = None

    def scheduled_at(self) -> datetime | None:
        if self.one_time_type != "scheduled" or self.one_time_date is None or self.one_time_time is None:
            return None
        return datetime.combine(self.one_time_date, self.one_time_time.replace(second=0, microsecond=0))


class RecurringRule(BaseModel):
    mode: Literal["recurring"] = "recurring"
    frequency: Frequency | None = None
    time: dt.time | None = None
    start_date: date | None = None
    end_date: date | None = None


def _rule_kind(value: Any) -> str | None:
    if isinstance(value, BaseModel):
        value = value.model_dump()
    if not isinstance(value, dict):
        return None
    if value.get("mode") == "recurring":
        return "recurring"
    if value.get("mode") == "one_time":
        return "immediate" if value.get("one_time_type") == "immediate" else "scheduled"
    return None


ScheduleRule = Annotated[
    Union[
        Annotated[ImmediateRule, Tag("immediate")],
        Annotated[ScheduledRule, Tag("scheduled")],
        Annotated[RecurringRule, Tag("recurring")],
    ],
    Discriminator(_rule_kind),
]


class EmailChannelConfig(BaseModel):
    account_id: str = ""
    template_id: str = ""
    subject: str = ""
    header_note: str = ""
    footer_note: str = ""


class ChannelConfig(BaseModel):
    email: EmailChannelConfig | None = None


class DeliveryTask(BaseModel):
    id: str
    name: str
    type: Literal["automated", "manual"] = "automated"
    channel: Literal["email", "in_app"] = "email"
    status: TaskStatus = "draft"
    schedule_rule: ScheduleRule | None = None
    audience_rule: AudienceRule | None = None
    channel_config: ChannelConfig | None = None
    run_count: int = 0
    last_run_status: RunStatus | None = None
    last_run_message: str | None = None
    last_run_at: datetime | None = None
    next_run_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    @property
    def is_one_time(self) -> bool:
        return isinstance(self.schedule_rule, (ImmediateRule, ScheduledRule))


class TaskDraft(BaseModel):
    """Editable fields of a task, as submitted by the task form."""

    id: str | None = None
    name: str
    type: Literal["automated", "manual"] = "automated"
    channel: Literal["email", "in_app"] = "email"
    schedule_rule: ScheduleRule | None = None
    audience_rule: AudienceRule | None = None
    channel_config: ChannelConfig | None = None


class DeliveryRun(BaseModel):
    id: int | None = None
    task_id: str
    status: RunStatus
    started_at: datetime
    finished_at: datetime | None = None
    recipient_count: int = 0
    success_count: int = 0
    failure_count: int = 0
    message: str | None = None


class DerivedTaskState(BaseModel):
    status: DerivedTaskStatus
    can_enable: bool
    can_run_now: bool
    message: str | None = None


class PreflightResult(BaseModel):
    estimated_recipients: int
    next_run_at: datetime | None = None


class TaskView(BaseModel):
    """A task as the console list renders it."""

    task: DeliveryTask
    latest_run: DeliveryRun | None = None
    state: DerivedTaskState


class TaskFilters(BaseModel):
    status: TaskStatus | None = None
    type: Literal["automated", "manual"] | None = None
    channel: Literal["email", "in_app"] | None = None
    keyword: str | None = Field(default=None, description="Case-insensitive substring of the task name")
