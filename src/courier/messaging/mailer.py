"""Resend email API client."""

from __future__ import annotations

from typing import Protocol

import httpx

from courier.infrastructure.config import RESEND_API_KEY, RESEND_API_URL, RESEND_TIMEOUT
from courier.infrastructure.logger import logger
from courier.messaging.types import OutgoingEmail


class Mailer(Protocol):
    def send(self, email: OutgoingEmail) -> bool: ...


class ResendMailer:
    """Sends one email per request through the Resend REST API.

    Failures are logged and reported as False so a run can count them per
    recipient instead of aborting.
    """

    def __init__(
        self,
        api_key: str = RESEND_API_KEY,
        api_url: str = RESEND_API_URL,
        client: httpx.Client | None = None,
    ) -> None:
        self._api_key = api_key
        self._api_url = api_url
        self._client = client

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    def send(self, email: OutgoingEmail) -> bool:
        if not self.configured:
            logger.error("Missing RESEND_API_KEY, email not sent", to=email.to)
            return False

        payload: dict[str, object] = {
            "from": email.from_address,
            "to": [email.to],
            "subject": email.subject,
            "html": email.html,
        }
        if email.reply_to:
            payload["reply_to"] = email.reply_to

        try:
            response = self._get_client().post(
                self._api_url,
                json=payload,
                headers={"Authorization": f"Bearer {self._api_key}"},
            )
        except httpx.HTTPError as err:
            logger.error("Email request failed", to=email.to, error=str(err))
            return False

        if response.status_code >= 400:
            logger.error("Email rejected", to=email.to, status_code=response.status_code, body=response.text[:200])
            return False
        return True

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def _get_client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=RESEND_TIMEOUT)
        return self._client
