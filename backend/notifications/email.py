"""
Email delivery via SendGrid.

Delivery is retried a bounded number of times (settings.email_send_attempts)
with exponential backoff. The final outcome is reported, never raised, so the
caller can record it in the email log and move on to the next entity.
"""

from dataclasses import dataclass

import sendgrid
import structlog
from sendgrid.helpers.mail import Mail
from tenacity import AsyncRetrying, RetryError, stop_after_attempt, wait_exponential

from core.config import get_settings

logger = structlog.get_logger()


@dataclass
class SendResult:
    success: bool
    error: str | None = None
    dry_run: bool = False


class EmailDeliveryError(Exception):
    """SendGrid accepted the request but did not queue the message."""


def _deliver(client: sendgrid.SendGridAPIClient, message: Mail) -> None:
    response = client.send(message)
    if response.status_code not in (200, 201, 202):
        raise EmailDeliveryError(f"SendGrid returned {response.status_code}")


async def send_email(to_email: str, subject: str, html_content: str) -> SendResult:
    """Send one email; with no API key configured, log a dry run and report success."""
    settings = get_settings()

    if not settings.sendgrid_api_key:
        logger.info("email.dry_run", to=to_email, subject=subject)
        return SendResult(success=True, dry_run=True)

    client = sendgrid.SendGridAPIClient(api_key=settings.sendgrid_api_key)
    message = Mail(
        from_email=settings.notification_from_email,
        to_emails=to_email,
        subject=subject,
        html_content=html_content,
    )

    try:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(max(1, settings.email_send_attempts)),
            wait=wait_exponential(min=1, max=10),
        ):
            with attempt:
                _deliver(client, message)
    except RetryError as exc:
        error = str(exc.last_attempt.exception())
        logger.warning("email.failed", to=to_email, subject=subject, error=error)
        return SendResult(success=False, error=error)

    logger.info("email.sent", to=to_email, subject=subject)
    return SendResult(success=True)
