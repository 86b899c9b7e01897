"""Entity Compliance Aggregator — folds requirement results into an entity status."""

from __future__ import annotations

from collections.abc import Iterable

from compliance.expiration import ExpirationBucket
from compliance.matcher import RequirementResult

# Most urgent first.
STATUS_URGENCY = ("expired", "non_compliant", "expiring_soon", "compliant", "pending")

_BUCKET_STATUS = {
    ExpirationBucket.EXPIRED: "expired",
    ExpirationBucket.DUE_7: "expiring_soon",
    ExpirationBucket.DUE_30: "expiring_soon",
    ExpirationBucket.NOT_YET_DUE: None,
}


def aggregate(results: Iterable[RequirementResult]) -> str:
    """compliant iff every required requirement is met; expiration plays no part here."""
    if any(result.is_gap for result in results):
        return "non_compliant"
    return "compliant"


def surface_status(requirement_status: str | None, bucket: ExpirationBucket) -> str:
    """
    Pick the more urgent of the requirement outcome and the expiration state.

    The requirement outcome is stored separately on the entity, so a
    "non_compliant but not yet expired" entity and a "compliant but
    expiring" entity stay distinguishable.
    """
    candidates = [requirement_status or "pending"]
    expiration_status = _BUCKET_STATUS[bucket]
    if expiration_status:
        candidates.append(expiration_status)
    return min(candidates, key=STATUS_URGENCY.index)


def is_out_of_compliance(status: str) -> bool:
    return status in ("non_compliant", "expired")
