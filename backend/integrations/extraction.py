"""
Certificate Extraction Client

Sends an uploaded certificate (PDF/image bytes, base64-encoded) to the
document-extraction service and maps its JSON answer onto typed coverage
facts. Extraction accuracy is the service's concern; this client only
guarantees that whatever comes back is well-typed:

  - unknown coverage or limit types are dropped
  - malformed amounts, booleans, or dates become None
  - timeouts, transport errors and non-2xx answers produce a failed outcome
"""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from datetime import date
from typing import Any

import httpx
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from core.config import get_settings
from db.models import COVERAGE_TYPES, LIMIT_TYPES

logger = structlog.get_logger()


@dataclass
class ExtractedCoverageData:
    coverage_type: str
    limit_type: str
    limit_amount: int | None = None
    additional_insured_listed: bool | None = None
    waiver_of_subrogation: bool | None = None
    expiration_date: date | None = None
    policy_number: str | None = None
    carrier: str | None = None


@dataclass
class ExtractionOutcome:
    success: bool
    coverages: list[ExtractedCoverageData] = field(default_factory=list)
    insured_name: str | None = None
    certificate_holder_name: str | None = None
    additional_insured_names: list[str] = field(default_factory=list)
    error: str | None = None

    @classmethod
    def failed(cls, error: str) -> ExtractionOutcome:
        return cls(success=False, error=error)


# ── Field coercion ─────────────────────────────────────────────────────────


def _as_amount(value: Any) -> int | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return int(value) if value >= 0 else None
    if isinstance(value, str):
        cleaned = value.replace("$", "").replace(",", "").strip()
        try:
            amount = float(cleaned)
        except ValueError:
            return None
        return int(amount) if amount >= 0 else None
    return None


def _as_flag(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("yes", "y", "true", "x"):
            return True
        if lowered in ("no", "n", "false"):
            return False
    return None


def _as_date(value: Any) -> date | None:
    if not isinstance(value, str):
        return None
    try:
        return date.fromisoformat(value.strip()[:10])
    except ValueError:
        return None


def _as_text(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def parse_coverage(raw: Any) -> ExtractedCoverageData | None:
    """Map one raw coverage object; None when its type pair is unusable."""
    if not isinstance(raw, dict):
        return None
    coverage_type = raw.get("coverage_type")
    limit_type = raw.get("limit_type")
    if coverage_type not in COVERAGE_TYPES or limit_type not in LIMIT_TYPES:
        return None
    return ExtractedCoverageData(
        coverage_type=coverage_type,
        limit_type=limit_type,
        limit_amount=_as_amount(raw.get("limit_amount")),
        additional_insured_listed=_as_flag(raw.get("additional_insured")),
        waiver_of_subrogation=_as_flag(raw.get("waiver_of_subrogation")),
        expiration_date=_as_date(raw.get("expiration_date")),
        policy_number=_as_text(raw.get("policy_number")),
        carrier=_as_text(raw.get("carrier")),
    )


def parse_response(payload: Any) -> ExtractionOutcome:
    """Map the service's JSON body onto an ExtractionOutcome."""
    if not isinstance(payload, dict):
        return ExtractionOutcome.failed("Malformed extraction response")
    if not payload.get("success"):
        return ExtractionOutcome.failed(_as_text(payload.get("error")) or "Extraction failed")

    data = payload.get("data")
    if not isinstance(data, dict):
        return ExtractionOutcome.failed("Malformed extraction response")

    raw_coverages = data.get("coverages")
    coverages = []
    for raw in raw_coverages if isinstance(raw_coverages, list) else []:
        parsed = parse_coverage(raw)
        if parsed is None:
            logger.warning("extraction.coverage_skipped", raw=raw)
            continue
        coverages.append(parsed)

    raw_names = data.get("additional_insured_names")
    names = [n for n in (_as_text(v) for v in raw_names) if n] if isinstance(raw_names, list) else []

    return ExtractionOutcome(
        success=True,
        coverages=coverages,
        insured_name=_as_text(data.get("insured_name")),
        certificate_holder_name=_as_text(data.get("certificate_holder")),
        additional_insured_names=names,
    )


# ── Client ─────────────────────────────────────────────────────────────────


class ExtractionClient:
    """Client for the document-extraction service."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = get_settings()
        self.base_url = (base_url if base_url is not None else settings.extraction_service_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.extraction_api_key
        self.timeout = timeout if timeout is not None else settings.extraction_timeout_seconds
        self.transport = transport
        self.headers = {"Content-Type": "application/json"}
        if self.api_key:
            self.headers["Authorization"] = f"Bearer {self.api_key}"

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(min=1, max=10),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _post(self, body: dict) -> dict:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            response = await client.post(f"{self.base_url}/extract", headers=self.headers, json=body)
            response.raise_for_status()
            return response.json()

    async def extract(self, content: bytes, file_name: str | None = None) -> ExtractionOutcome:
        """Extract coverage facts; never raises for service-side problems."""
        if not self.base_url:
            return ExtractionOutcome.failed("Extraction service is not configured")

        body = {
            "file_base64": base64.b64encode(content).decode("ascii"),
            "file_name": file_name,
        }
        try:
            payload = await self._post(body)
        except httpx.TimeoutException:
            logger.error("extraction.failed", reason="timeout", file_name=file_name)
            return ExtractionOutcome.failed("Extraction timed out")
        except httpx.HTTPStatusError as exc:
            logger.error("extraction.failed", reason="http_status", status_code=exc.response.status_code)
            return ExtractionOutcome.failed(f"Extraction service returned {exc.response.status_code}")
        except httpx.HTTPError as exc:
            logger.error("extraction.failed", reason="transport", error=str(exc))
            return ExtractionOutcome.failed(f"Extraction service unreachable: {exc}")
        except ValueError:
            logger.error("extraction.failed", reason="invalid_json", file_name=file_name)
            return ExtractionOutcome.failed("Malformed extraction response")

        outcome = parse_response(payload)
        logger.info(
            "extraction.completed",
            success=outcome.success,
            coverages=len(outcome.coverages),
            file_name=file_name,
        )
        return outcome
