"""
Expiration Classifier — buckets a certificate by calendar days until its
earliest coverage expiration.

Buckets (mutually exclusive):
  - expired:     days_until < 0
  - due_7:       0 <= days_until <= 7
  - due_30:      8 <= days_until <= 30
  - not_yet_due: days_until > 30, or no expiration on file
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date, datetime
from enum import Enum

from core.config import get_settings


class ExpirationBucket(str, Enum):
    EXPIRED = "expired"
    DUE_7 = "due_7"
    DUE_30 = "due_30"
    NOT_YET_DUE = "not_yet_due"


# One-shot notification kind sent for each due bucket.
BUCKET_NOTIFICATION_KIND = {
    ExpirationBucket.EXPIRED: "expired",
    ExpirationBucket.DUE_7: "expiring_7",
    ExpirationBucket.DUE_30: "expiring_30",
}


def _as_date(value: date | datetime) -> date:
    return value.date() if isinstance(value, datetime) else value


def days_until(expiration: date | datetime, today: date | datetime) -> int:
    return (_as_date(expiration) - _as_date(today)).days


def classify(earliest_expiration: date | datetime | None, today: date | datetime) -> ExpirationBucket:
    """Classify by date only; time of day never matters."""
    if earliest_expiration is None:
        return ExpirationBucket.NOT_YET_DUE

    settings = get_settings()
    remaining = days_until(earliest_expiration, today)
    if remaining < 0:
        return ExpirationBucket.EXPIRED
    if remaining <= settings.urgent_expiration_days:
        return ExpirationBucket.DUE_7
    if remaining <= settings.expiring_soon_days:
        return ExpirationBucket.DUE_30
    return ExpirationBucket.NOT_YET_DUE


def earliest_expiration(dates: Iterable[date | None]) -> date | None:
    known = [d for d in dates if d is not None]
    return min(known) if known else None
