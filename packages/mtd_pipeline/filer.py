"""Tax-authority filer payloads built from an :class:`AggregationReport`.

Public API:
    - :func:`to_payload`: the period-summary body in the authority's shape
    - :func:`build_filer_submission`: payload plus submission metadata

Self-employment bodies use ``{"incomes": ..., "expenses": ...}`` and property
bodies ``{"income": ..., "expenses": ...}``. Only non-zero categories are
sent. Nothing here talks to the network.
"""

from __future__ import annotations

from datetime import UTC, date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, field_validator

from .categories import BusinessType, schema_for
from .errors import FilerPayloadError
from .logging_setup import get_logger
from .models import AggregationReport
from .periods import Period, parse_tax_year

_MAX_AMOUNT = Decimal("99999999.99")

_INCOME_KEY: dict[BusinessType, str] = {
    BusinessType.SOLE_TRADER: "incomes",
    BusinessType.LANDLORD: "income",
}

_logger = get_logger("mtd_pipeline.filer")


class FilerMetadata(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    period_id: str
    period: str
    tax_year: str
    business_type: str
    generated_at: str
    period_start: date
    period_end: date
    deadline: date

    @field_validator("tax_year")
    @classmethod
    def _tax_year_valid(cls, v: str) -> str:
        parse_tax_year(v)
        return v


class FilerSubmission(BaseModel):
    """Payload and metadata handed to the filer collaborator."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    payload: dict[str, dict[str, float]]
    metadata: FilerMetadata


def _check_amount(code: str, amount: Decimal) -> float:
    if amount < 0 or amount > _MAX_AMOUNT:
        raise FilerPayloadError(
            f"Amount for {code!r} must be between 0 and {_MAX_AMOUNT}, got {amount}"
        )
    return float(amount.quantize(Decimal("0.01")))


def to_payload(report: AggregationReport) -> dict[str, dict[str, float]]:
    schema = schema_for(report.business_type)
    income: dict[str, float] = {}
    expenses: dict[str, float] = {}
    for code, amount in report.category_totals.items():
        if amount == 0:
            continue
        value = _check_amount(code, amount)
        if code in schema.income:
            income[code] = value
        elif code in schema.expense:
            expenses[code] = value
        else:
            raise FilerPayloadError(f"Category {code!r} is not reportable for {report.business_type}")
    return {_INCOME_KEY[report.business_type]: income, "expenses": expenses}


def build_filer_submission(
    report: AggregationReport,
    *,
    period: Period | str | int,
    tax_year: str,
    business_type: BusinessType | str,
    generated_at: datetime | None = None,
) -> FilerSubmission:
    p = Period.parse(period)
    bt = BusinessType.parse(business_type)
    if bt is not report.business_type:
        raise FilerPayloadError(
            f"Report is for {report.business_type}, submission requested for {bt}"
        )
    start, end = p.date_range(tax_year)
    stamp = (generated_at or datetime.now(UTC)).astimezone(UTC)
    submission = FilerSubmission(
        payload=to_payload(report),
        metadata=FilerMetadata(
            period_id=p.period_id(tax_year),
            period=p.name,
            tax_year=tax_year,
            business_type=str(bt),
            generated_at=stamp.isoformat().replace("+00:00", "Z"),
            period_start=start,
            period_end=end,
            deadline=p.deadline(tax_year),
        ),
    )
    _logger.info(
        "filer:submission_built period_id=%s business_type=%s categories=%d",
        submission.metadata.period_id,
        bt,
        sum(len(v) for v in submission.payload.values()),
    )
    return submission


__all__ = ["FilerMetadata", "FilerSubmission", "build_filer_submission", "to_payload"]
