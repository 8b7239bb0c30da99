from datetime import datetime

import pytest

from courier.audience.types import AudienceRule, UserProfile
from courier.infrastructure.database import AppDatabase
from courier.messaging.types import EmailSendingAccount, EmailTemplate, OutgoingEmail
from courier.scheduling.task_service import TaskManager
from courier.scheduling.types import ChannelConfig, EmailChannelConfig, TaskDraft

NOW = datetime(2024, 6, 10, 10, 0)


class FakeMailer:
    """Records outgoing emails; addresses in ``failing`` are rejected."""

    def __init__(self, failing: set[str] | None = None) -> None:
        self.sent: list[OutgoingEmail] = []
        self.failing = failing or set()

    def send(self, email: OutgoingEmail) -> bool:
        if email.to in self.failing:
            return False
        self.sent.append(email)
        return True


class Clock:
    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def db() -> AppDatabase:
    """Create an in-memory database for testing."""
    app_db = AppDatabase()
    app_db._init_test()
    return app_db


@pytest.fixture
def mailer() -> FakeMailer:
    return FakeMailer()


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def task_manager(db, mailer, clock) -> TaskManager:
    return TaskManager(db.task_repo, db.audience_repo, db.email_repo, mailer, clock=clock)


def make_user(id: str, **overrides) -> UserProfile:
    data = {
        "id": id,
        "name": f"User {id}",
        "email": f"{id}@example.com",
        "created_at": datetime(2024, 1, 1, 12, 0),
        "marketing_opt_in": True,
    }
    data.update(overrides)
    return UserProfile(**data)


@pytest.fixture
def email_setup(db) -> EmailChannelConfig:
    db.email_repo.upsert_account(EmailSendingAccount(
        id="acct-1", name="Newsletter", from_name="Acme", from_email="news@acme.test", reply_to="hello@acme.test",
    ), now=NOW)
    db.email_repo.upsert_template(EmailTemplate(
        id="tmpl-1", name="Digest", subject="Weekly digest", body_html="<p>Hello {{name}}</p>",
    ), now=NOW)
    return EmailChannelConfig(account_id="acct-1", template_id="tmpl-1", subject="News for {{name}}")


@pytest.fixture
def audience(db) -> AudienceRule:
    db.audience_repo.create_user(make_user("u1"))
    db.audience_repo.create_user(make_user("u2"))
    return AudienceRule(marketing_opt_in="yes")


def make_draft(schedule_rule: dict | None, email: EmailChannelConfig | None = None, **overrides) -> TaskDraft:
    data = {
        "name": "Spring campaign",
        "schedule_rule": schedule_rule,
        "audience_rule": AudienceRule(marketing_opt_in="yes"),
        "channel_config": ChannelConfig(email=email) if email else None,
    }
    data.update(overrides)
    return TaskDraft(**data)
