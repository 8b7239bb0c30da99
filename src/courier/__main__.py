"""Entry point: python -m courier"""

from __future__ import annotations

import argparse
import sys

from courier.infrastructure.database import AppDatabase, database
from courier.infrastructure.logger import install_exception_hooks, logger
from courier.messaging.mailer import ResendMailer
from courier.scheduling.task_service import TaskError, TaskManager
from courier.scheduling.types import TaskFilters, TaskView


def build_task_manager(db: AppDatabase, mailer: ResendMailer | None = None) -> TaskManager:
    return TaskManager(db.task_repo, db.audience_repo, db.email_repo, mailer or ResendMailer())


def format_task_line(view: TaskView) -> str:
    task, state = view.task, view.state
    next_run = task.next_run_at.strftime("%Y-%m-%d %H:%M") if task.next_run_at else "-"
    actions = ",".join(name for name, allowed in (("enable", state.can_enable), ("run", state.can_run_now)) if allowed)
    return f"{task.id}  {state.status:<9}  next={next_run}  runs={task.run_count}  [{actions or '-'}]  {task.name}"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="courier", description="Delivery task console")
    sub = parser.add_subparsers(dest="command", required=True)

    tasks = sub.add_parser("tasks", help="List tasks with their derived state")
    tasks.add_argument("--status", choices=["draft", "active", "paused", "completed"])
    tasks.add_argument("--type", choices=["automated", "manual"])
    tasks.add_argument("--channel", choices=["email", "in_app"])
    tasks.add_argument("--keyword", help="Match task names containing this text")

    runs = sub.add_parser("runs", help="Show the run history of a task")
    runs.add_argument("task_id")
    runs.add_argument("--limit", type=int, default=20)

    for name, help_text in (
        ("run", "Deliver a task now"),
        ("activate", "Enable a task"),
        ("pause", "Pause a task"),
        ("duplicate", "Copy a task as a new draft"),
        ("delete", "Delete a task and its runs"),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("task_id")

    sub.add_parser("recover", help="Fail runs stuck in running past the staleness window")
    return parser


def main(argv: list[str] | None = None, db: AppDatabase | None = None) -> int:
    args = build_parser().parse_args(argv)
    if db is None:
        db = database
        db.init()
    manager = build_task_manager(db)

    try:
        if args.command == "tasks":
            # Same maintenance pass the console list performs before rendering.
            manager.recover_stale_runs()
            filters = TaskFilters(status=args.status, type=args.type, channel=args.channel, keyword=args.keyword)
            for view in manager.list_with_state(filters):
                print(format_task_line(view))
        elif args.command == "runs":
            for run in manager.get_runs(args.task_id, args.limit):
                print(
                    f"{run.started_at:%Y-%m-%d %H:%M:%S}  {run.status:<8}  "
                    f"sent={run.success_count}/{run.recipient_count}  {run.message or ''}"
                )
        elif args.command == "run":
            run = manager.run_now(args.task_id)
            print(f"{run.status}: {run.message}")
        elif args.command == "activate":
            manager.resume(args.task_id)
        elif args.command == "pause":
            manager.pause(args.task_id)
        elif args.command == "duplicate":
            print(manager.duplicate(args.task_id))
        elif args.command == "delete":
            manager.delete(args.task_id)
        elif args.command == "recover":
            recovered = manager.recover_stale_runs()
            print(f"Recovered {len(recovered)} task(s)")
    except TaskError as err:
        logger.warning(err.args[0], command=args.command, **err.details)
        print(err.args[0], file=sys.stderr)
        return 1
    return 0


def run() -> None:
    install_exception_hooks()
    sys.exit(main())


if __name__ == "__main__":
    run()
