"""Data models and type aliases for ``mtd_pipeline``.

Frozen dataclasses carry values between pipeline stages; pydantic models are
reserved for data crossing a boundary (remote classifier output, on-disk cache
files, filer payloads) and live beside the code that validates it.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import StrEnum
from typing import Any, Literal

from .categories import BusinessType
from .errors import InvalidDeclaredShape, NormalizationError
from .periods import Period

# ---------------------------------------------------------------------------
# Raw input and normalized rows
# ---------------------------------------------------------------------------

# One loosely-shaped record as produced by the (external) spreadsheet parser.
# Keys are column names; values are raw cell values.
type RawRecord = Mapping[str, Any]

type CategoryCode = str

type CategoryTotals = dict[CategoryCode, Decimal]


class Direction(StrEnum):
    INCOME = "income"
    EXPENSE = "expense"
    UNKNOWN = "unknown"


class DateSource(StrEnum):
    SUPPLIED = "supplied"
    FALLBACK = "fallback"


@dataclass(frozen=True, slots=True)
class TransactionRow:
    """A normalized transaction.

    ``amount`` is always a non-negative magnitude; the sign carried by the
    source (or the column it came from) is expressed through ``direction``.
    ``date_source`` tells a supplied date apart from the processing-date
    fallback.
    """

    amount: Decimal
    description: str
    date: date
    date_source: DateSource = DateSource.SUPPLIED
    direction: Direction = Direction.UNKNOWN
    box_number: str | None = None

    def __post_init__(self) -> None:
        if self.amount < 0:
            raise ValueError("TransactionRow.amount must be a non-negative magnitude")
        if not self.description.strip():
            raise ValueError("TransactionRow.description must be non-empty")


@dataclass(frozen=True, slots=True)
class Ok[T]:
    value: T


@dataclass(frozen=True, slots=True)
class Err[E]:
    error: E


type NormalizeResult = Ok[TransactionRow] | Err[NormalizationError]


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


type ResultSource = Literal["cache", "classifier", "personal_filter"]


@dataclass(frozen=True, slots=True)
class ClassificationResult:
    """Outcome for one row. Exactly one disposition is set.

    Use the ``categorized`` / ``personal`` / ``manual_review`` constructors
    rather than filling the flags by hand.
    """

    category: CategoryCode | None
    is_personal: bool
    requires_manual_review: bool
    confidence: float
    rationale: str
    source: ResultSource = "classifier"

    def __post_init__(self) -> None:
        dispositions = (
            self.category is not None,
            self.is_personal,
            self.requires_manual_review,
        )
        if sum(dispositions) != 1:
            raise ValueError(
                "ClassificationResult requires exactly one of category, is_personal, "
                "requires_manual_review"
            )
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError("confidence must be within [0,1]")

    @classmethod
    def categorized(
        cls,
        category: CategoryCode,
        *,
        confidence: float,
        rationale: str,
        source: ResultSource = "classifier",
    ) -> ClassificationResult:
        return cls(category, False, False, confidence, rationale, source)

    @classmethod
    def personal(
        cls, *, confidence: float, rationale: str, source: ResultSource = "classifier"
    ) -> ClassificationResult:
        return cls(None, True, False, confidence, rationale, source)

    @classmethod
    def manual_review(cls, *, confidence: float, rationale: str) -> ClassificationResult:
        return cls(None, False, True, confidence, rationale, "classifier")


class RowStatus(StrEnum):
    CLASSIFIED = "classified"
    PERSONAL = "personal"
    MANUAL_REVIEW = "manual_review"
    ERROR = "error"
    NOT_PROCESSED = "not_processed"
    SKIPPED = "skipped"


@dataclass(frozen=True, slots=True)
class RowError:
    index: int
    reason: str
    detail: str
    retryable: bool | None = None


@dataclass(frozen=True, slots=True)
class RowOutcome:
    index: int
    status: RowStatus
    row: TransactionRow | None = None
    result: ClassificationResult | None = None
    error: RowError | None = None


@dataclass(frozen=True, slots=True)
class TransactionCounts:
    successful: int = 0
    personal: int = 0
    errors: int = 0
    manual_review: int = 0
    not_processed: int = 0
    skipped: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "successful": self.successful,
            "personal": self.personal,
            "errors": self.errors,
            "manualReview": self.manual_review,
            "notProcessed": self.not_processed,
            "skipped": self.skipped,
        }


@dataclass(frozen=True, slots=True)
class BatchResult:
    """Per-row outcomes of one classification run, in input order."""

    outcomes: tuple[RowOutcome, ...]
    errors: tuple[RowError, ...] = ()
    warnings: tuple[str, ...] = ()
    cancelled: bool = False

    def _with_status(self, status: RowStatus) -> list[RowOutcome]:
        return [o for o in self.outcomes if o.status is status]

    @property
    def classified(self) -> list[RowOutcome]:
        return self._with_status(RowStatus.CLASSIFIED)

    @property
    def personal(self) -> list[RowOutcome]:
        return self._with_status(RowStatus.PERSONAL)

    @property
    def manual_review(self) -> list[RowOutcome]:
        return self._with_status(RowStatus.MANUAL_REVIEW)

    @property
    def not_processed(self) -> list[RowOutcome]:
        return self._with_status(RowStatus.NOT_PROCESSED)

    @property
    def skipped(self) -> list[RowOutcome]:
        """Subtotal, summary and header-echo rows left out of classification."""

        return self._with_status(RowStatus.SKIPPED)

    def counts(self) -> TransactionCounts:
        return TransactionCounts(
            successful=len(self.classified),
            personal=len(self.personal),
            errors=len(self.errors),
            manual_review=len(self.manual_review),
            not_processed=len(self.not_processed),
            skipped=len(self.skipped),
        )


# ---------------------------------------------------------------------------
# Period strategy
# ---------------------------------------------------------------------------


class SheetShape(StrEnum):
    DIRECT = "direct"
    CUMULATIVE = "cumulative"
    MULTI_SECTION = "multi_section"

    @classmethod
    def parse(cls, keyword: SheetShape | str) -> SheetShape:
        """Map a caller-declared shape keyword; unknown keywords are rejected."""

        if isinstance(keyword, SheetShape):
            return keyword
        if not isinstance(keyword, str):
            raise InvalidDeclaredShape(keyword)
        key = "".join(ch for ch in keyword.strip().lower() if ch.isalnum())
        found = _SHAPE_ALIASES.get(key)
        if found is None:
            raise InvalidDeclaredShape(keyword)
        return found


_SHAPE_ALIASES: dict[str, SheetShape] = {
    "direct": SheetShape.DIRECT,
    "single": SheetShape.DIRECT,
    "singleperiod": SheetShape.DIRECT,
    "cumulative": SheetShape.CUMULATIVE,
    "running": SheetShape.CUMULATIVE,
    "runningtotals": SheetShape.CUMULATIVE,
    "ytd": SheetShape.CUMULATIVE,
    "multisection": SheetShape.MULTI_SECTION,
    "sections": SheetShape.MULTI_SECTION,
    "samesheet": SheetShape.MULTI_SECTION,
}


type StrategySource = Literal["first_period", "declared", "analysis", "fallback"]


@dataclass(frozen=True, slots=True)
class PeriodStrategy:
    """How to read the uploaded sheet for ``target``; fixed before classification.

    ``overridden_shape`` holds a declared shape that did not apply (first period).
    """

    kind: SheetShape
    target: Period
    prior_period_totals: Mapping[CategoryCode, Decimal] = field(default_factory=dict)
    source: StrategySource = "declared"
    degraded: bool = False
    confidence: float | None = None
    overridden_shape: SheetShape | None = None


# ---------------------------------------------------------------------------
# Aggregation output
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Summary:
    total_income: Decimal
    total_expenses: Decimal
    net_profit_loss: Decimal


@dataclass(frozen=True, slots=True)
class ExcludedItem:
    description: str
    amount: Decimal
    category: CategoryCode


@dataclass(frozen=True, slots=True)
class Exclusions:
    invalid_categories: tuple[ExcludedItem, ...] = ()
    capital_items: tuple[ExcludedItem, ...] = ()


@dataclass(frozen=True, slots=True)
class AggregationReport:
    """Final period totals for one business type.

    ``category_totals`` holds every non-capital code of the business type
    (zero when inactive), each rounded to 2 decimal places.
    """

    business_type: BusinessType
    category_totals: CategoryTotals
    summary: Summary
    exclusions: Exclusions
    transaction_counts: TransactionCounts
    strategy: PeriodStrategy | None = None
    partial: bool = False
    warnings: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        def _item(x: ExcludedItem) -> dict[str, Any]:
            return {"description": x.description, "amount": str(x.amount), "category": x.category}

        out: dict[str, Any] = {
            "businessType": str(self.business_type),
            "categoryTotals": {k: str(v) for k, v in self.category_totals.items()},
            "summary": {
                "totalIncome": str(self.summary.total_income),
                "totalExpenses": str(self.summary.total_expenses),
                "netProfitLoss": str(self.summary.net_profit_loss),
            },
            "exclusions": {
                "invalidCategories": [_item(x) for x in self.exclusions.invalid_categories],
                "capitalItems": [_item(x) for x in self.exclusions.capital_items],
            },
            "transactionCounts": self.transaction_counts.as_dict(),
            "partial": self.partial,
            "warnings": list(self.warnings),
        }
        if self.strategy is not None:
            out["strategy"] = {
                "kind": str(self.strategy.kind),
                "period": self.strategy.target.name,
                "source": self.strategy.source,
                "degraded": self.strategy.degraded,
            }
        return out


__all__ = [
    "RawRecord",
    "CategoryCode",
    "CategoryTotals",
    "Direction",
    "DateSource",
    "TransactionRow",
    "Ok",
    "Err",
    "NormalizeResult",
    "ClassificationResult",
    "RowStatus",
    "RowError",
    "RowOutcome",
    "TransactionCounts",
    "BatchResult",
    "SheetShape",
    "PeriodStrategy",
    "Summary",
    "ExcludedItem",
    "Exclusions",
    "AggregationReport",
]
