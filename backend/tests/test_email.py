from __future__ import annotations

import json

import httpx
import pytest

from dunning.core.settings import settings
from dunning.models.enums import ReminderFailureCategory
from dunning.services.email import EmailNotificationSender, classify_http_error
from dunning.services.notifications import NotificationSendError


def _config(**overrides):
    values = {
        "email_provider": "resend",
        "email_api_key": "re_test_key",
        "email_from": "billing@acme.test",
        "email_timeout_seconds": 5.0,
    }
    values.update(overrides)
    return settings.model_copy(update=values)


def _sender(handler, **overrides):
    return EmailNotificationSender(_config(**overrides), transport=httpx.MockTransport(handler))


def test_resend_success_returns_message_id():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["payload"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "re_123"})

    result = _sender(handler).send(to="client@example.com", subject="Reminder", body="<p>Pay</p>", text="Pay")

    assert result.provider == "resend"
    assert result.message_id == "re_123"
    assert seen["url"] == "https://api.resend.com/emails"
    assert seen["auth"] == "Bearer re_test_key"
    assert seen["payload"]["to"] == ["client@example.com"]
    assert seen["payload"]["text"] == "Pay"


def test_postmark_success_returns_message_id():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["X-Postmark-Server-Token"] == "re_test_key"
        return httpx.Response(200, json={"MessageID": "pm-1"})

    result = _sender(handler, email_provider="postmark").send(to="client@example.com", subject="s", body="b")

    assert result.provider == "postmark"
    assert result.message_id == "pm-1"


@pytest.mark.parametrize(
    "status_code, body, category",
    [
        (429, "Too many requests", ReminderFailureCategory.RATE_LIMITED),
        (
            403,
            "You can only send testing emails to your own email address",
            ReminderFailureCategory.DOMAIN_RESTRICTED,
        ),
        (422, "Invalid `to` field", ReminderFailureCategory.INVALID_RECIPIENT),
        (400, "Missing subject", ReminderFailureCategory.PROVIDER_REJECTED),
        (403, "API key is restricted", ReminderFailureCategory.PROVIDER_REJECTED),
        (503, "Service unavailable", ReminderFailureCategory.TRANSPORT),
    ],
)
def test_provider_errors_are_categorised(status_code, body, category):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, text=body)

    with pytest.raises(NotificationSendError) as excinfo:
        _sender(handler).send(to="client@example.com", subject="s", body="b")

    assert excinfo.value.category == category
    assert str(status_code) in str(excinfo.value)


def test_timeout_is_transport_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    with pytest.raises(NotificationSendError) as excinfo:
        _sender(handler).send(to="client@example.com", subject="s", body="b")

    assert excinfo.value.category == ReminderFailureCategory.TRANSPORT


def test_connection_error_is_transport_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(NotificationSendError) as excinfo:
        _sender(handler).send(to="client@example.com", subject="s", body="b")

    assert excinfo.value.category == ReminderFailureCategory.TRANSPORT


def test_misconfiguration_is_validation_failure():
    def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover
        raise AssertionError("no request expected")

    for overrides in ({"email_provider": "disabled"}, {"email_from": None}, {"email_api_key": None}):
        with pytest.raises(NotificationSendError) as excinfo:
            _sender(handler, **overrides).send(to="client@example.com", subject="s", body="b")
        assert excinfo.value.category == ReminderFailureCategory.VALIDATION


def test_malformed_recipient_is_rejected_locally():
    def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover
        raise AssertionError("no request expected")

    with pytest.raises(NotificationSendError) as excinfo:
        _sender(handler).send(to="not-an-address", subject="s", body="b")

    assert excinfo.value.category == ReminderFailureCategory.INVALID_RECIPIENT


def test_classify_invalid_address_message_on_other_4xx():
    assert classify_http_error(400, "Invalid email address") == ReminderFailureCategory.INVALID_RECIPIENT
