"""SQLite database schema, migrations, and AppDatabase composition root."""

from __future__ import annotations

import sqlite3

from courier.infrastructure.config import DATABASE_FILE, STORE_DIR
from courier.infrastructure.logger import logger


def create_schema(db: sqlite3.Connection) -> None:
    """Create all tables and indexes. Safe to call multiple times (IF NOT EXISTS)."""
    db.executescript("""
        CREATE TABLE IF NOT EXISTS delivery_tasks (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            type TEXT NOT NULL DEFAULT 'automated',
            channel TEXT NOT NULL DEFAULT 'email',
            status TEXT NOT NULL DEFAULT 'draft',
            schedule_rule TEXT,
            audience_rule TEXT,
            channel_config TEXT,
            run_count INTEGER NOT NULL DEFAULT 0,
            last_run_status TEXT,
            last_run_at TEXT,
            next_run_at TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_delivery_tasks_status ON delivery_tasks(status);
        CREATE INDEX IF NOT EXISTS idx_delivery_tasks_created ON delivery_tasks(created_at);

        CREATE TABLE IF NOT EXISTS delivery_task_runs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            task_id TEXT NOT NULL,
            status TEXT NOT NULL,
            started_at TEXT NOT NULL,
            finished_at TEXT,
            recipient_count INTEGER NOT NULL DEFAULT 0,
            success_count INTEGER NOT NULL DEFAULT 0,
            failure_count INTEGER NOT NULL DEFAULT 0,
            message TEXT,
            FOREIGN KEY (task_id) REFERENCES delivery_tasks(id)
        );
        CREATE INDEX IF NOT EXISTS idx_delivery_task_runs ON delivery_task_runs(task_id, started_at);

        CREATE TABLE IF NOT EXISTS user_profiles (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            email TEXT NOT NULL,
            user_type TEXT NOT NULL DEFAULT 'personal',
            country TEXT,
            city TEXT,
            company_name TEXT,
            interest_tags TEXT NOT NULL DEFAULT '[]',
            marketing_opt_in INTEGER NOT NULL DEFAULT 0,
            last_login_at TEXT,
            created_at TEXT NOT NULL
        );
        CREATE TABLE IF NOT EXISTS demo_requests (
            id TEXT PRIMARY KEY,
            user_id TEXT,
            created_at TEXT NOT NULL,
            FOREIGN KEY (user_id) REFERENCES user_profiles(id)
        );
        CREATE INDEX IF NOT EXISTS idx_demo_requests_user ON demo_requests(user_id);

        CREATE TABLE IF NOT EXISTS email_sending_accounts (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            from_name TEXT NOT NULL,
            from_email TEXT NOT NULL,
            reply_to TEXT,
            is_active INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );
        CREATE TABLE IF NOT EXISTS email_templates (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            subject TEXT NOT NULL,
            body_html TEXT NOT NULL DEFAULT '',
            is_active INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );
    """)

    _run_schema_migrations(db)


def contains_pattern(text: str) -> str:
    """LIKE pattern matching ``text`` anywhere. Pair with ``ESCAPE '\\'``."""
    escaped = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _run_schema_migrations(db: sqlite3.Connection) -> None:
    """Run ALTER TABLE migrations. Each is wrapped in try/except for idempotency."""

    # Add run outcome columns to delivery_tasks
    try:
        db.execute("ALTER TABLE delivery_tasks ADD COLUMN last_run_message TEXT")
        db.commit()
    except sqlite3.OperationalError:
        pass

    try:
        db.execute("ALTER TABLE delivery_tasks ADD COLUMN completed_at TEXT")
        db.execute("UPDATE delivery_tasks SET completed_at = updated_at WHERE status = 'completed'")
        db.commit()
    except sqlite3.OperationalError:
        pass


class AppDatabase:
    """Composition root that initializes the DB and exposes repositories."""

    def __init__(self) -> None:
        self._db: sqlite3.Connection | None = None
        # Repositories are set after init
        self.task_repo: TaskRepository | None = None  # type: ignore[assignment]
        self.audience_repo: AudienceRepository | None = None  # type: ignore[assignment]
        self.email_repo: EmailRepository | None = None  # type: ignore[assignment]

    @property
    def db(self) -> sqlite3.Connection:
        assert self._db is not None, "Database not initialized. Call init() first."
        return self._db

    def init(self) -> None:
        """Open (or create) the database file at the standard location."""
        db_path = STORE_DIR / DATABASE_FILE
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db = sqlite3.connect(str(db_path))
        self._db.row_factory = sqlite3.Row
        self._init_repos()
        logger.debug("Database opened", path=str(db_path))

    def _init_test(self) -> None:
        """For tests only. Creates a fresh in-memory database."""
        self._db = sqlite3.connect(":memory:")
        self._db.row_factory = sqlite3.Row
        self._init_repos()

    def close(self) -> None:
        if self._db is not None:
            self._db.close()
            self._db = None

    def _init_repos(self) -> None:
        assert self._db is not None
        create_schema(self._db)

        # Import here to avoid circular imports
        from courier.audience.repository import AudienceRepository
        from courier.messaging.repository import EmailRepository
        from courier.scheduling.repository import TaskRepository

        self.task_repo = TaskRepository(self._db)
        self.audience_repo = AudienceRepository(self._db)
        self.email_repo = EmailRepository(self._db)


# Singleton instance
database = AppDatabase()
