"""Delivery task CRUD, run records, and stale run recovery."""

from __future__ import annotations

import sqlite3
from datetime import datetime
from typing import Any

from pydantic import BaseModel, TypeAdapter, ValidationError

from courier.audience.types import AudienceRule
from courier.infrastructure.database import contains_pattern
from courier.infrastructure.logger import logger
from courier.scheduling.types import (
    ChannelConfig,
    DeliveryRun,
    DeliveryTask,
    RunStatus,
    ScheduleRule,
    TaskFilters,
)

_schedule_rule_adapter: TypeAdapter[ScheduleRule] = TypeAdapter(ScheduleRule)

_TASK_COLUMNS = (
    "id", "name", "type", "channel", "status", "schedule_rule", "audience_rule", "channel_config",
    "run_count", "last_run_status", "last_run_message", "last_run_at", "next_run_at", "completed_at",
    "created_at", "updated_at",
)
_UPDATABLE_COLUMNS = frozenset(_TASK_COLUMNS) - {"id", "created_at", "run_count"}


def _to_column(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump_json()
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class TaskRepository:
    def __init__(self, db: sqlite3.Connection) -> None:
        self._db = db

    # --- Tasks ---

    def create_task(self, task: DeliveryTask) -> None:
        data = {column: _to_column(getattr(task, column)) for column in _TASK_COLUMNS}
        data["schedule_rule"] = self._dump_rule(task.schedule_rule)
        placeholders = ", ".join("?" for _ in _TASK_COLUMNS)
        self._db.execute(
            f"INSERT INTO delivery_tasks ({', '.join(_TASK_COLUMNS)}) VALUES ({placeholders})",
            [data[column] for column in _TASK_COLUMNS],
        )
        self._db.commit()

    def get_task_by_id(self, id: str) -> DeliveryTask | None:
        row = self._db.execute("SELECT * FROM delivery_tasks WHERE id = ?", (id,)).fetchone()
        if not row:
            return None
        return self._row_to_task(row)

    def get_all_tasks(self, filters: TaskFilters | None = None) -> list[DeliveryTask]:
        clauses: list[str] = []
        values: list[str] = []
        if filters is not None:
            for column in ("status", "type", "channel"):
                value = getattr(filters, column)
                if value:
                    clauses.append(f"{column} = ?")
                    values.append(value)
            if filters.keyword:
                clauses.append("name LIKE ? ESCAPE '\\'")
                values.append(contains_pattern(filters.keyword))
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._db.execute(
            f"SELECT * FROM delivery_tasks {where} ORDER BY created_at DESC", values
        ).fetchall()
        return [self._row_to_task(row) for row in rows]

    def update_task(self, id: str, **updates: Any) -> None:
        """Write the given columns. Unlike None-skipping updates, None is stored as NULL."""
        unknown = set(updates) - _UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Cannot update columns: {', '.join(sorted(unknown))}")
        if not updates:
            return
        fields: list[str] = []
        values: list[Any] = []
        for key, value in updates.items():
            fields.append(f"{key} = ?")
            values.append(self._dump_rule(value) if key == "schedule_rule" else _to_column(value))
        values.append(id)
        self._db.execute(f"UPDATE delivery_tasks SET {', '.join(fields)} WHERE id = ?", values)
        self._db.commit()

    def delete_task(self, id: str) -> None:
        self._db.execute("DELETE FROM delivery_task_runs WHERE task_id = ?", (id,))
        self._db.execute("DELETE FROM delivery_tasks WHERE id = ?", (id,))
        self._db.commit()

    def update_task_after_run(
        self,
        id: str,
        last_run_status: RunStatus,
        last_run_message: str,
        run_at: datetime,
        **updates: Any,
    ) -> None:
        """Count a finished run against the task and record its outcome."""
        self._db.execute(
            """UPDATE delivery_tasks
               SET run_count = run_count + 1, last_run_status = ?, last_run_message = ?, last_run_at = ?, updated_at = ?
               WHERE id = ?""",
            (last_run_status, last_run_message, run_at.isoformat(), run_at.isoformat(), id),
        )
        self._db.commit()
        self.update_task(id, **updates)

    # --- Runs ---

    def start_run(self, task_id: str, started_at: datetime) -> int:
        cursor = self._db.execute(
            "INSERT INTO delivery_task_runs (task_id, status, started_at) VALUES (?, 'running', ?)",
            (task_id, started_at.isoformat()),
        )
        self._db.execute(
            "UPDATE delivery_tasks SET last_run_status = 'running' WHERE id = ?", (task_id,)
        )
        self._db.commit()
        return int(cursor.lastrowid)

    def finish_run(
        self,
        run_id: int,
        status: RunStatus,
        finished_at: datetime,
        message: str,
        recipient_count: int = 0,
        success_count: int = 0,
        failure_count: int = 0,
    ) -> None:
        self._db.execute(
            """UPDATE delivery_task_runs
               SET status = ?, finished_at = ?, message = ?, recipient_count = ?, success_count = ?, failure_count = ?
               WHERE id = ?""",
            (status, finished_at.isoformat(), message, recipient_count, success_count, failure_count, run_id),
        )
        self._db.commit()

    def get_run(self, run_id: int) -> DeliveryRun | None:
        row = self._db.execute("SELECT * FROM delivery_task_runs WHERE id = ?", (run_id,)).fetchone()
        return DeliveryRun.model_validate(dict(row)) if row else None

    def get_runs_for_task(self, task_id: str, limit: int | None = None) -> list[DeliveryRun]:
        sql = "SELECT * FROM delivery_task_runs WHERE task_id = ? ORDER BY started_at DESC, id DESC"
        params: tuple[Any, ...] = (task_id,)
        if limit is not None:
            sql += " LIMIT ?"
            params += (limit,)
        rows = self._db.execute(sql, params).fetchall()
        return [DeliveryRun.model_validate(dict(row)) for row in rows]

    def get_latest_runs(self, task_ids: list[str]) -> dict[str, DeliveryRun]:
        if not task_ids:
            return {}
        placeholders = ", ".join("?" for _ in task_ids)
        rows = self._db.execute(
            f"""SELECT * FROM delivery_task_runs WHERE task_id IN ({placeholders})
                ORDER BY started_at DESC, id DESC""",
            task_ids,
        ).fetchall()
        latest: dict[str, DeliveryRun] = {}
        for row in rows:
            if row["task_id"] not in latest:
                latest[row["task_id"]] = DeliveryRun.model_validate(dict(row))
        return latest

    def fail_stale_runs(self, cutoff: datetime, finished_at: datetime, message: str) -> list[str]:
        """Mark runs still running since before ``cutoff`` as failed. Returns the affected task ids."""
        rows = self._db.execute(
            "SELECT id, task_id FROM delivery_task_runs WHERE status = 'running' AND started_at < ?",
            (cutoff.isoformat(),),
        ).fetchall()
        if not rows:
            return []

        task_ids = sorted({row["task_id"] for row in rows})
        self._db.executemany(
            "UPDATE delivery_task_runs SET status = 'failed', finished_at = ?, message = ? WHERE id = ?",
            [(finished_at.isoformat(), message, row["id"]) for row in rows],
        )
        self._db.executemany(
            """UPDATE delivery_tasks SET last_run_status = 'failed', last_run_message = ?
               WHERE id = ? AND last_run_status = 'running'""",
            [(message, task_id) for task_id in task_ids],
        )
        self._db.commit()
        return task_ids

    # --- Internal ---

    @staticmethod
    def _dump_rule(rule: ScheduleRule | None) -> str | None:
        if rule is None:
            return None
        return _schedule_rule_adapter.dump_json(rule).decode()

    def _row_to_task(self, row: sqlite3.Row) -> DeliveryTask:
        data = dict(row)
        data["schedule_rule"] = self._load_rule(data["id"], data.get("schedule_rule"))
        data["audience_rule"] = AudienceRule.model_validate_json(data["audience_rule"]) if data.get("audience_rule") else None
        data["channel_config"] = (
            ChannelConfig.model_validate_json(data["channel_config"]) if data.get("channel_config") else None
        )
        return DeliveryTask.model_validate(data)

    @staticmethod
    def _load_rule(task_id: str, raw: str | None) -> ScheduleRule | None:
        if not raw:
            return None
        try:
            return _schedule_rule_adapter.validate_json(raw)
        except ValidationError as err:
            logger.warning("Invalid schedule rule", task_id=task_id, error=str(err))
            return None
