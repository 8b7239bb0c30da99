"""Tests for derived task state and run staleness."""

from datetime import date, datetime, time, timedelta

import pytest

from courier.scheduling.state import apply_latest_run, derive_state, effective_run_status, is_run_active
from courier.scheduling.types import DeliveryRun, DeliveryTask, ImmediateRule, RecurringRule, ScheduledRule

NOW = datetime(2024, 6, 10, 10, 0)


def _task(rule=None, status: str = "draft", run_count: int = 0, last_run_status: str | None = None) -> DeliveryTask:
    return DeliveryTask(
        id="task-1",
        name="Campaign",
        status=status,
        schedule_rule=rule,
        run_count=run_count,
        last_run_status=last_run_status,
        created_at=datetime(2024, 6, 1),
        updated_at=datetime(2024, 6, 1),
    )


def _scheduled(day: date) -> ScheduledRule:
    return ScheduledRule(one_time_date=day, one_time_time=time(9, 0))


def _run(status: str, minutes_ago: int) -> DeliveryRun:
    return DeliveryRun(task_id="task-1", status=status, started_at=NOW - timedelta(minutes=minutes_ago))


class TestActiveRunLock:
    @pytest.mark.parametrize("rule", [ImmediateRule(), RecurringRule(frequency="daily", time=time(9, 0))])
    def test_running_blocks_everything(self, rule):
        state = derive_state(_task(rule, status="active", last_run_status="running"), NOW)
        assert state.status == "running"
        assert not state.can_enable
        assert not state.can_run_now


class TestOneTimeExecuted:
    @pytest.mark.parametrize("status", ["draft", "active", "paused", "completed"])
    def test_locked_for_every_status(self, status):
        state = derive_state(_task(ImmediateRule(), status=status, run_count=1, last_run_status="success"), NOW)
        assert state.status == "completed"
        assert not state.can_enable
        assert not state.can_run_now
        assert state.message

    def test_failed_run_shows_failed(self):
        state = derive_state(_task(_scheduled(date(2024, 6, 1)), run_count=1, last_run_status="failed"), NOW)
        assert state.status == "failed"
        assert not state.can_run_now


class TestOneTimePending:
    def test_immediate_draft(self):
        state = derive_state(_task(ImmediateRule(), status="draft"), NOW)
        assert (state.status, state.can_enable, state.can_run_now) == ("draft", True, True)

    def test_immediate_active(self):
        state = derive_state(_task(ImmediateRule(), status="active"), NOW)
        assert state.status == "active"
        assert state.can_enable

    def test_scheduled_in_past_is_overdue(self):
        state = derive_state(_task(_scheduled(date(2024, 6, 9)), status="active"), NOW)
        assert state.status == "overdue"
        assert not state.can_enable
        assert state.can_run_now

    def test_scheduled_future_active(self):
        state = derive_state(_task(_scheduled(date(2024, 6, 11)), status="active"), NOW)
        assert (state.status, state.can_enable, state.can_run_now) == ("scheduled", False, True)

    def test_scheduled_future_draft(self):
        state = derive_state(_task(_scheduled(date(2024, 6, 11)), status="draft"), NOW)
        assert (state.status, state.can_enable, state.can_run_now) == ("draft", True, True)

    def test_incomplete_schedule_is_draft(self):
        state = derive_state(_task(ScheduledRule(one_time_date=date(2024, 6, 11)), status="active"), NOW)
        assert (state.status, state.can_enable, state.can_run_now) == ("draft", True, True)

    def test_untyped_one_time_rule_is_draft(self):
        task = _task({"mode": "one_time"}, status="active")
        assert isinstance(task.schedule_rule, ScheduledRule)
        assert derive_state(task, NOW).status == "draft"

    def test_untyped_one_time_rule_with_past_date_is_draft(self):
        rule = {"mode": "one_time", "one_time_type": None, "one_time_date": "2024-06-01", "one_time_time": "09:00"}
        task = _task(rule, status="active")
        state = derive_state(task, NOW)
        assert (state.status, state.can_enable, state.can_run_now) == ("draft", True, True)


class TestRecurring:
    @pytest.mark.parametrize(
        "status,expected,can_enable",
        [("active", "active", False), ("paused", "paused", True), ("draft", "draft", True), ("completed", "draft", True)],
    )
    def test_mirrors_admin_status(self, status, expected, can_enable):
        rule = RecurringRule(frequency="weekly", time=time(9, 0))
        state = derive_state(_task(rule, status=status, run_count=5, last_run_status="success"), NOW)
        assert state.status == expected
        assert state.can_enable is can_enable
        assert state.can_run_now

    def test_no_rule_behaves_like_recurring(self):
        state = derive_state(_task(None, status="paused"), NOW)
        assert state.status == "paused"
        assert state.can_run_now


class TestPurity:
    def test_same_input_same_output(self):
        task = _task(_scheduled(date(2024, 6, 11)), status="active")
        assert derive_state(task, NOW) == derive_state(task, NOW)
        assert task.status == "active"


class TestStaleness:
    def test_fresh_running_run_is_active(self):
        assert is_run_active(_run("running", 2), NOW)
        assert effective_run_status(_run("running", 2), NOW) == "running"

    def test_running_for_ten_minutes_is_failed(self):
        run = _run("running", 10)
        assert not is_run_active(run, NOW)
        assert effective_run_status(run, NOW) == "failed"

    def test_exactly_at_timeout_is_stale(self):
        assert not is_run_active(_run("running", 5), NOW)

    def test_finished_runs_keep_status(self):
        assert effective_run_status(_run("success", 60), NOW) == "success"
        assert not is_run_active(_run("success", 1), NOW)

    def test_missing_run(self):
        assert not is_run_active(None, NOW)

    def test_apply_latest_run_unlocks_stale_task(self):
        task = _task(RecurringRule(frequency="daily", time=time(9, 0)), status="active", last_run_status="running")
        effective = apply_latest_run(task, _run("running", 10), NOW)
        assert effective.last_run_status == "failed"
        assert derive_state(effective, NOW).can_run_now
        assert task.last_run_status == "running"

    def test_apply_latest_run_without_run(self):
        task = _task(ImmediateRule())
        assert apply_latest_run(task, None, NOW) is task
