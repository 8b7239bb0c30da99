"""Email channel domain types."""

from __future__ import annotations

from pydantic import BaseModel


class EmailSendingAccount(BaseModel):
    id: str
    name: str
    from_name: str
    from_email: str
    reply_to: str | None = None
    is_active: bool = True
    created_at: str = ""
    updated_at: str = ""


class EmailTemplate(BaseModel):
    id: str
    name: str
    subject: str
    body_html: str = ""
    is_active: bool = True
    created_at: str = ""
    updated_at: str = ""


class OutgoingEmail(BaseModel):
    from_address: str
    to: str
    subject: str
    html: str
    reply_to: str | None = None
