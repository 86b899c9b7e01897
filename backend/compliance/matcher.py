"""
Requirement Matcher — evaluates one coverage requirement against the
coverage rows extracted from a certificate.

Statuses:
  - met:          matching coverage found and every sub-condition holds
  - not_met:      matching coverage found, one or more sub-conditions fail
  - missing:      no coverage with the same (coverage_type, limit_type)
  - not_required: no matching coverage, but the requirement is optional

Sub-conditions (independent, each contributes to the gap description):
  - limit sufficiency (skipped for statutory limits or a NULL minimum)
  - additional insured listed
  - waiver of subrogation present
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

GAP_SEPARATOR = "; "


@dataclass(frozen=True)
class RequirementResult:
    requirement_id: uuid.UUID | None
    is_required: bool
    status: str
    gap_description: str | None = None
    extracted_coverage_id: uuid.UUID | None = None

    @property
    def is_gap(self) -> bool:
        return self.is_required and self.status != "met"


def format_amount(amount: int | float | None) -> str:
    return f"${(amount or 0):,.0f}"


def find_match(requirement: Any, coverages: Iterable[Any]) -> Any | None:
    for coverage in coverages:
        if coverage.coverage_type == requirement.coverage_type and coverage.limit_type == requirement.limit_type:
            return coverage
    return None


def limit_sufficient(requirement: Any, coverage: Any) -> bool:
    # Statutory limits have no numeric comparison, even when a minimum was entered.
    if requirement.limit_type == "statutory" or requirement.minimum_limit is None:
        return True
    return coverage.limit_amount is not None and coverage.limit_amount >= requirement.minimum_limit


def evaluate_requirement(requirement: Any, coverages: Iterable[Any]) -> RequirementResult:
    """Evaluate a CoverageRequirement against a certificate's ExtractedCoverage rows."""
    match = find_match(requirement, coverages)
    if match is None:
        return RequirementResult(
            requirement_id=requirement.requirement_id,
            is_required=bool(requirement.is_required),
            status="missing" if requirement.is_required else "not_required",
        )

    gaps: list[str] = []
    if not limit_sufficient(requirement, match):
        gaps.append(
            f"Limit is {format_amount(match.limit_amount)} but requirement is {format_amount(requirement.minimum_limit)}"
        )
    if requirement.requires_additional_insured and match.additional_insured_listed is not True:
        gaps.append("Additional Insured not listed")
    if requirement.requires_waiver_of_subrogation and match.waiver_of_subrogation is not True:
        gaps.append("Waiver of Subrogation not found")

    return RequirementResult(
        requirement_id=requirement.requirement_id,
        is_required=bool(requirement.is_required),
        status="not_met" if gaps else "met",
        gap_description=GAP_SEPARATOR.join(gaps) if gaps else None,
        extracted_coverage_id=match.coverage_id,
    )


def evaluate_all(requirements: Iterable[Any], coverages: Iterable[Any]) -> list[RequirementResult]:
    coverage_rows = list(coverages)
    return [evaluate_requirement(req, coverage_rows) for req in requirements]
