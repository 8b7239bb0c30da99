"""Tests for the Resend mailer. All HTTP calls go through httpx.MockTransport."""

import json

import httpx

from courier.messaging.mailer import ResendMailer
from courier.messaging.types import OutgoingEmail

API_URL = "https://api.resend.test/emails"


def _email(**kwargs) -> OutgoingEmail:
    data = {"from_address": "Acme <news@acme.test>", "to": "ana@example.com", "subject": "Hi", "html": "<p>Hi</p>"}
    data.update(kwargs)
    return OutgoingEmail(**data)


def _mailer(handler, api_key: str = "re_test") -> ResendMailer:
    return ResendMailer(api_key=api_key, api_url=API_URL, client=httpx.Client(transport=httpx.MockTransport(handler)))


class TestSend:
    def test_posts_payload(self):
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"id": "email-1"})

        assert _mailer(handler).send(_email(reply_to="hello@acme.test")) is True
        [request] = requests
        assert str(request.url) == API_URL
        assert request.headers["Authorization"] == "Bearer re_test"
        assert json.loads(request.content) == {
            "from": "Acme <news@acme.test>",
            "to": ["ana@example.com"],
            "subject": "Hi",
            "html": "<p>Hi</p>",
            "reply_to": "hello@acme.test",
        }

    def test_omits_empty_reply_to(self):
        payloads: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            payloads.append(json.loads(request.content))
            return httpx.Response(200, json={"id": "email-1"})

        _mailer(handler).send(_email())
        assert "reply_to" not in payloads[0]

    def test_api_error_returns_false(self):
        mailer = _mailer(lambda request: httpx.Response(422, json={"message": "Invalid `to` field"}))
        assert mailer.send(_email()) is False

    def test_transport_error_returns_false(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        assert _mailer(handler).send(_email()) is False

    def test_missing_api_key_sends_nothing(self):
        calls: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200)

        mailer = _mailer(handler, api_key="")
        assert mailer.configured is False
        assert mailer.send(_email()) is False
        assert calls == []

    def test_close(self):
        mailer = _mailer(lambda request: httpx.Response(200))
        mailer.close()
        mailer.close()
