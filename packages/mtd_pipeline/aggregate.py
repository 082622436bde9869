"""Category aggregation and report assembly.

Public API:
    - :func:`sum_by_category`: exact per-code sums plus excluded rows
    - :func:`aggregate`: classified rows → :class:`AggregationReport`
    - :func:`aggregate_totals`: pre-aggregated code → amount mapping →
      :class:`AggregationReport` (box sheets, cumulative subtraction)
    - :func:`frontend_summary`: display rows for non-zero categories

Every non-capital code of the business type appears in the report, zero when
inactive. Capital-allowance codes are excluded from quarterly totals and
listed separately; codes outside the schema are excluded with a warning.
Amounts are summed exactly and rounded half-up to pennies only at the end.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from .categories import BusinessType, describe, schema_for
from .errors import NoClassifiableTransactions
from .logging_setup import get_logger
from .models import (
    AggregationReport,
    ClassificationResult,
    ExcludedItem,
    Exclusions,
    PeriodStrategy,
    Summary,
    TransactionCounts,
    TransactionRow,
)

_logger = get_logger("mtd_pipeline.aggregate")

_ZERO = Decimal("0")
_PENNY = Decimal("0.01")


@dataclass(frozen=True, slots=True)
class CategorySums:
    """Unrounded reportable sums and the rows kept out of them."""

    totals: dict[str, Decimal] = field(default_factory=dict)
    exclusions: Exclusions = field(default_factory=Exclusions)


def _round(d: Decimal) -> Decimal:
    return d.quantize(_PENNY, rounding=ROUND_HALF_UP)


def sum_by_category(
    results: Iterable[tuple[TransactionRow, ClassificationResult]],
    business_type: BusinessType | str,
) -> CategorySums:
    """Sum classified rows per category.

    Rows without a category (personal, manual review) contribute nothing.
    """

    schema = schema_for(business_type)
    totals: dict[str, Decimal] = {}
    capital: list[ExcludedItem] = []
    invalid: list[ExcludedItem] = []
    for row, result in results:
        code = result.category
        if code is None:
            continue
        subset = schema.subset_of(code)
        if subset is None:
            _logger.warning(
                'aggregate:invalid_category category=%s description="%s"',
                code,
                row.description[:40],
            )
            invalid.append(ExcludedItem(row.description, row.amount, code))
        elif subset == "capital":
            capital.append(ExcludedItem(row.description, row.amount, code))
        else:
            totals[code] = totals.get(code, _ZERO) + row.amount
    return CategorySums(
        totals=totals,
        exclusions=Exclusions(invalid_categories=tuple(invalid), capital_items=tuple(capital)),
    )


def aggregate_totals(
    totals: Mapping[str, Decimal],
    business_type: BusinessType | str,
    *,
    counts: TransactionCounts,
    exclusions: Exclusions | None = None,
    strategy: PeriodStrategy | None = None,
    partial: bool = False,
    warnings: Sequence[str] = (),
) -> AggregationReport:
    """Build the report from a code → amount mapping.

    Capital and unknown codes found in ``totals`` are added to
    ``exclusions`` (zero amounts are dropped). Raises
    :class:`~mtd_pipeline.errors.NoClassifiableTransactions` when
    ``counts.successful`` is zero.
    """

    bt = BusinessType.parse(business_type)
    if counts.successful == 0:
        _logger.error(
            "aggregate:no_classifiable_transactions errors=%d manual_review=%d personal=%d",
            counts.errors,
            counts.manual_review,
            counts.personal,
        )
        raise NoClassifiableTransactions()

    schema = schema_for(bt)
    base = exclusions or Exclusions()
    capital = list(base.capital_items)
    invalid = list(base.invalid_categories)
    reportable: dict[str, Decimal] = {}
    for code, value in totals.items():
        amount = Decimal(value)
        subset = schema.subset_of(code)
        if subset in ("income", "expense"):
            reportable[code] = reportable.get(code, _ZERO) + amount
        elif amount == 0:
            continue
        elif subset == "capital":
            capital.append(ExcludedItem(describe(code), amount, code))
        else:
            _logger.warning("aggregate:invalid_category category=%s", code)
            invalid.append(ExcludedItem(describe(code), amount, code))

    category_totals = {
        code: _round(reportable.get(code, _ZERO)) for code in schema.reportable_codes
    }
    total_income = sum((category_totals[c] for c in schema.income), _ZERO)
    total_expenses = sum((category_totals[c] for c in schema.expense), _ZERO)
    summary = Summary(
        total_income=total_income,
        total_expenses=total_expenses,
        net_profit_loss=total_income - total_expenses,
    )
    _logger.info(
        (
            "aggregate:report business_type=%s income=%s expenses=%s net=%s "
            "capital_items=%d invalid=%d partial=%s"
        ),
        bt,
        summary.total_income,
        summary.total_expenses,
        summary.net_profit_loss,
        len(capital),
        len(invalid),
        partial,
    )
    return AggregationReport(
        business_type=bt,
        category_totals=category_totals,
        summary=summary,
        exclusions=Exclusions(invalid_categories=tuple(invalid), capital_items=tuple(capital)),
        transaction_counts=counts,
        strategy=strategy,
        partial=partial,
        warnings=tuple(warnings),
    )


def aggregate(
    results: Iterable[tuple[TransactionRow, ClassificationResult]],
    business_type: BusinessType | str,
    *,
    counts: TransactionCounts,
    strategy: PeriodStrategy | None = None,
    partial: bool = False,
    warnings: Sequence[str] = (),
) -> AggregationReport:
    sums = sum_by_category(results, business_type)
    return aggregate_totals(
        sums.totals,
        business_type,
        counts=counts,
        exclusions=sums.exclusions,
        strategy=strategy,
        partial=partial,
        warnings=warnings,
    )


def _format_gbp(amount: Decimal) -> str:
    sign = "-" if amount < 0 else ""
    return f"{sign}£{abs(amount):,.2f}"


def frontend_summary(report: AggregationReport) -> list[dict[str, Any]]:
    """Return ``{code, description, amount, formatted}`` for non-zero categories.

    Sorted by amount, largest first; ties keep the report's code order.
    """

    rows = [
        {
            "code": code,
            "description": describe(code),
            "amount": amount,
            "formatted": _format_gbp(amount),
        }
        for code, amount in report.category_totals.items()
        if amount != 0
    ]
    rows.sort(key=lambda r: r["amount"], reverse=True)
    return rows


__all__ = [
    "CategorySums",
    "aggregate",
    "aggregate_totals",
    "frontend_summary",
    "sum_by_category",
]
