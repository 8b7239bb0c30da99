"""Email sending accounts and templates."""

from __future__ import annotations

import sqlite3
from datetime import datetime

from courier.messaging.types import EmailSendingAccount, EmailTemplate


class EmailRepository:
    def __init__(self, db: sqlite3.Connection) -> None:
        self._db = db

    # --- Accounts ---

    def upsert_account(self, account: EmailSendingAccount, now: datetime | None = None) -> None:
        stamp = (now or datetime.now()).isoformat()
        self._db.execute(
            """INSERT INTO email_sending_accounts
               (id, name, from_name, from_email, reply_to, is_active, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET
                   name = excluded.name, from_name = excluded.from_name, from_email = excluded.from_email,
                   reply_to = excluded.reply_to, is_active = excluded.is_active, updated_at = excluded.updated_at""",
            (
                account.id, account.name, account.from_name, account.from_email, account.reply_to,
                int(account.is_active), account.created_at or stamp, stamp,
            ),
        )
        self._db.commit()

    def get_account(self, id: str) -> EmailSendingAccount | None:
        row = self._db.execute("SELECT * FROM email_sending_accounts WHERE id = ?", (id,)).fetchone()
        return EmailSendingAccount.model_validate(dict(row)) if row else None

    def get_accounts(self, active_only: bool = False) -> list[EmailSendingAccount]:
        sql = "SELECT * FROM email_sending_accounts"
        if active_only:
            sql += " WHERE is_active = 1"
        rows = self._db.execute(sql + " ORDER BY created_at").fetchall()
        return [EmailSendingAccount.model_validate(dict(row)) for row in rows]

    # --- Templates ---

    def upsert_template(self, template: EmailTemplate, now: datetime | None = None) -> None:
        stamp = (now or datetime.now()).isoformat()
        self._db.execute(
            """INSERT INTO email_templates (id, name, subject, body_html, is_active, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET
                   name = excluded.name, subject = excluded.subject, body_html = excluded.body_html,
                   is_active = excluded.is_active, updated_at = excluded.updated_at""",
            (
                template.id, template.name, template.subject, template.body_html,
                int(template.is_active), template.created_at or stamp, stamp,
            ),
        )
        self._db.commit()

    def get_template(self, id: str) -> EmailTemplate | None:
        row = self._db.execute("SELECT * FROM email_templates WHERE id = ?", (id,)).fetchone()
        return EmailTemplate.model_validate(dict(row)) if row else None

    def get_templates(self, active_only: bool = False) -> list[EmailTemplate]:
        sql = "SELECT * FROM email_templates"
        if active_only:
            sql += " WHERE is_active = 1"
        rows = self._db.execute(sql + " ORDER BY created_at").fetchall()
        return [EmailTemplate.model_validate(dict(row)) for row in rows]
