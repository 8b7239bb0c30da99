"""Email rendering transforms."""

from __future__ import annotations

import re

from courier.messaging.types import EmailSendingAccount, EmailTemplate
from courier.scheduling.types import EmailChannelConfig

_NAME_PLACEHOLDER = re.compile(r"\{\{\s*name\s*\}\}")


def render_subject(subject: str, name: str | None) -> str:
    return _NAME_PLACEHOLDER.sub(lambda _: name or "", subject)


def render_body(config: EmailChannelConfig, template: EmailTemplate | None, name: str | None) -> str:
    """Build the HTML body for one recipient.

    Header and footer notes from the task wrap the template body. Without a
    template body, a plain greeting stands in for it.
    """
    safe_name = _html_escape(name or "")
    if template and template.body_html:
        body = _NAME_PLACEHOLDER.sub(lambda _: safe_name, template.body_html)
    else:
        body = f"<p>Hi {safe_name},</p>"

    parts: list[str] = []
    if config.header_note:
        parts.append(f"<p>{_html_escape(config.header_note)}</p>")
    parts.append(body)
    if config.footer_note:
        parts.append(f"<p>{_html_escape(config.footer_note)}</p>")
    return "\n".join(parts)


def format_from_address(account: EmailSendingAccount) -> str:
    return f"{account.from_name} <{account.from_email}>"


def _html_escape(s: str) -> str:
    return s.replace("&", "&amp;").replace('"', "&quot;").replace("<", "&lt;").replace(">", "&gt;")
