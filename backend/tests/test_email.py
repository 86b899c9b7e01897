"""Tests for SendGrid delivery."""

from types import SimpleNamespace

import pytest

from core.config import get_settings
from notifications import email as email_module
from notifications.email import send_email


class FakeSendGrid:
    """Stands in for SendGridAPIClient; returns queued status codes in order."""

    status_codes: list[int] = []
    messages: list = []

    def __init__(self, api_key):
        self.api_key = api_key

    def send(self, message):
        FakeSendGrid.messages.append(message)
        return SimpleNamespace(status_code=FakeSendGrid.status_codes.pop(0))


@pytest.fixture
def sendgrid_configured(monkeypatch):
    settings = get_settings()
    monkeypatch.setattr(settings, "sendgrid_api_key", "SG.test-key")
    monkeypatch.setattr(email_module.sendgrid, "SendGridAPIClient", FakeSendGrid)
    FakeSendGrid.messages = []
    return settings


async def test_dry_run_without_api_key(monkeypatch):
    monkeypatch.setattr(get_settings(), "sendgrid_api_key", "")

    result = await send_email("coi@acmeplumbing.com", "Your COI expires in 30 days", "<p>hi</p>")

    assert result.success is True
    assert result.dry_run is True


async def test_accepted_message(sendgrid_configured):
    FakeSendGrid.status_codes = [202]

    result = await send_email("coi@acmeplumbing.com", "Your COI expires in 30 days", "<p>hi</p>")

    assert result.success is True
    assert result.dry_run is False
    assert len(FakeSendGrid.messages) == 1


async def test_failure_reported_after_last_attempt(sendgrid_configured, monkeypatch):
    monkeypatch.setattr(sendgrid_configured, "email_send_attempts", 1)
    FakeSendGrid.status_codes = [500]

    result = await send_email("coi@acmeplumbing.com", "Reminder", "<p>hi</p>")

    assert result.success is False
    assert result.error == "SendGrid returned 500"
    assert len(FakeSendGrid.messages) == 1


async def test_transient_failure_is_retried(sendgrid_configured, monkeypatch):
    monkeypatch.setattr(sendgrid_configured, "email_send_attempts", 2)
    FakeSendGrid.status_codes = [503, 202]

    result = await send_email("coi@acmeplumbing.com", "Reminder", "<p>hi</p>")

    assert result.success is True
    assert len(FakeSendGrid.messages) == 2
