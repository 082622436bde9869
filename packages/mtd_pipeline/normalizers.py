"""Raw record → :class:`TransactionRow` normalization.

Spreadsheet exports name their columns inconsistently, so each field type is
resolved through an ordered list of candidate column names
(:data:`FIELD_PRIORITIES`). The first candidate whose value parses wins.

Public API:
    - :func:`normalize_row` returns ``Ok(TransactionRow)`` or
      ``Err(NormalizationError)``; it never raises for bad data.
    - :func:`is_calculated_total` flags subtotal/summary and header-echo rows.
    - :func:`split_side_by_side` splits rows that carry both an ``Income`` and
      an ``Expense`` value into one record per direction.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from types import MappingProxyType
from typing import Any

from .errors import NormalizationError
from .models import (
    DateSource,
    Direction,
    Err,
    NormalizeResult,
    Ok,
    RawRecord,
    TransactionRow,
)

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

FIELD_PRIORITIES: Mapping[str, tuple[str, ...]] = MappingProxyType(
    {
        "amount": (
            "amount",
            "Amount",
            "AMOUNT",
            "value",
            "Value",
            "Total",
            "total",
            "Income",
            "Expense",
            "Debit",
            "Credit",
            "Money Out",
            "Money In",
            "Paid Out",
            "Paid In",
        ),
        "description": (
            "description",
            "Description",
            "DESCRIPTION",
            "details",
            "Details",
            "memo",
            "Memo",
            "narrative",
            "Narrative",
            "payee",
            "Payee",
            "reference",
            "Reference",
            "rent",
            "Item",
        ),
        "date": (
            "date",
            "Date",
            "DATE",
            "transaction_date",
            "Transaction Date",
            "Posted Date",
            "Value Date",
        ),
        "direction": (
            "direction",
            "Direction",
            "in",
            "In",
            "in/out",
            "in_out",
            "flow",
            "Type",
        ),
        "box": ("Box", "box", "BOX", "Box Number", "box_number"),
    }
)

_INCOME_COLUMNS = frozenset({"Income", "Credit", "Money In", "Paid In"})
_EXPENSE_COLUMNS = frozenset({"Expense", "Debit", "Money Out", "Paid Out"})

_INCOME_WORDS = frozenset({"in", "income", "credit", "cr", "receipt", "received", "inflow"})
_EXPENSE_WORDS = frozenset(
    {"out", "expense", "debit", "dr", "payment", "paid", "outflow", "spend"}
)

_MAX_AMOUNT = Decimal("99999999.99")

_TOTAL_INDICATORS: tuple[str, ...] = (
    "grand total",
    "subtotal",
    "total allowances",
    "total expenses",
    "total income",
    "gross profit",
    "net profit",
    "profit =",
    "loss =",
    "taxable",
    "total",
)

_DATE_FORMATS: tuple[str, ...] = (
    "%Y-%m-%d",
    "%d/%m/%Y",
    "%d-%m-%Y",
    "%d.%m.%Y",
    "%d/%m/%y",
    "%d %b %Y",
    "%d %B %Y",
    "%Y/%m/%d",
)

# ---------------------------------------------------------------------------
# Helpers (amount/date/direction parsing)
# ---------------------------------------------------------------------------


def _to_decimal(raw: Any) -> Decimal:
    """Parse a spreadsheet money cell into a signed ``Decimal``.

    Accepts numbers and strings such as ``"£1,234.56"``, ``"(45.00)"``,
    ``"- $20"`` and ``"12.50 DR"``. Raises ``ValueError`` when nothing numeric
    remains after stripping markers.
    """

    if raw is None or isinstance(raw, bool):
        raise ValueError("amount is required")
    if isinstance(raw, Decimal):
        return raw
    if isinstance(raw, int | float):
        return Decimal(str(raw))
    s = str(raw).strip()
    if not s:
        raise ValueError("amount is empty")

    negative = False
    upper = s.upper()
    if upper.endswith("DR"):
        negative = True
        s = s[:-2].rstrip()
    elif upper.endswith("CR"):
        s = s[:-2].rstrip()

    # Iteratively strip leading sign, currency symbol, and surrounding
    # parentheses until stable so any ordering of these markers works.
    while True:
        changed = False
        if s.startswith("+"):
            s = s[1:].lstrip()
            changed = True
        elif s.startswith("-"):
            negative = True
            s = s[1:].lstrip()
            changed = True
        if s[:1] in {"£", "$", "€"}:
            s = s[1:].lstrip()
            changed = True
        if s.startswith("(") and s.endswith(")") and len(s) >= 2:
            negative = True
            s = s[1:-1].strip()
            changed = True
        if not changed:
            break

    s = s.replace(",", "").replace(" ", "")
    try:
        d = Decimal(s)
    except InvalidOperation as exc:
        raise ValueError(f"invalid amount: {raw!r}") from exc
    if not d.is_finite():
        raise ValueError(f"invalid amount: {raw!r}")
    return -abs(d) if negative else d


def _to_date(raw: Any) -> date | None:
    if raw is None:
        return None
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    s = str(raw).strip()
    if not s:
        return None
    # Also try the date part of ISO datetimes ('YYYY-MM-DDTHH:MM:SS' or space separated)
    candidates = dict.fromkeys((s, s.split("T", 1)[0], s.split()[0]))
    for fmt in _DATE_FORMATS:
        for candidate in candidates:
            try:
                return datetime.strptime(candidate, fmt).date()
            except ValueError:
                continue
    return None


def _direction_from_text(raw: Any) -> Direction:
    if raw is None:
        return Direction.UNKNOWN
    word = str(raw).strip().lower()
    if word in _INCOME_WORDS:
        return Direction.INCOME
    if word in _EXPENSE_WORDS:
        return Direction.EXPENSE
    return Direction.UNKNOWN


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _first_amount(
    record: RawRecord, candidates: Sequence[str]
) -> tuple[Decimal, str] | None:
    for key in candidates:
        value = record.get(key)
        if _is_blank(value):
            continue
        try:
            return _to_decimal(value), key
        except ValueError:
            continue
    return None


def _first_text(record: RawRecord, candidates: Sequence[str]) -> str | None:
    for key in candidates:
        value = record.get(key)
        if _is_blank(value):
            continue
        text = " ".join(str(value).split())
        if text:
            return text
    return None


def _quantize(d: Decimal) -> Decimal:
    return d.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def normalize_row(
    record: RawRecord,
    *,
    field_priorities: Mapping[str, Sequence[str]] = FIELD_PRIORITIES,
    today: date | None = None,
) -> NormalizeResult:
    """Extract ``(amount, description, date)`` from ``record``.

    The amount is returned as a magnitude. Direction comes from an explicit
    direction column when present, otherwise from the column the amount was
    read from (``Income``/``Expense`` style), otherwise from the sign.
    """

    found = _first_amount(record, field_priorities.get("amount", ()))
    if found is None:
        return Err(NormalizationError("MissingAmount", "no parseable amount field"))
    signed, amount_key = found
    magnitude = abs(signed)
    if magnitude > _MAX_AMOUNT:
        return Err(NormalizationError("InvalidAmount", f"amount out of range: {signed}"))

    description = _first_text(record, field_priorities.get("description", ()))
    if description is None:
        return Err(NormalizationError("MissingDescription", "no non-empty description field"))

    direction = Direction.UNKNOWN
    for key in field_priorities.get("direction", ()):
        direction = _direction_from_text(record.get(key))
        if direction is not Direction.UNKNOWN:
            break
    if direction is Direction.UNKNOWN:
        if amount_key in _INCOME_COLUMNS:
            direction = Direction.INCOME
        elif amount_key in _EXPENSE_COLUMNS or signed < 0:
            direction = Direction.EXPENSE

    row_date: date | None = None
    for key in field_priorities.get("date", ()):
        row_date = _to_date(record.get(key))
        if row_date is not None:
            break
    date_source = DateSource.SUPPLIED
    if row_date is None:
        row_date = today or date.today()
        date_source = DateSource.FALLBACK

    box = _first_text(record, field_priorities.get("box", ()))

    return Ok(
        TransactionRow(
            amount=_quantize(magnitude),
            description=description,
            date=row_date,
            date_source=date_source,
            direction=direction,
            box_number=box,
        )
    )


def record_amount(
    record: RawRecord, *, field_priorities: Mapping[str, Sequence[str]] = FIELD_PRIORITIES
) -> Decimal | None:
    """Return the signed amount of ``record`` or ``None`` when no amount field parses."""

    found = _first_amount(record, field_priorities.get("amount", ()))
    return None if found is None else found[0]


def record_text(
    record: RawRecord,
    field: str,
    *,
    field_priorities: Mapping[str, Sequence[str]] = FIELD_PRIORITIES,
) -> str | None:
    return _first_text(record, field_priorities.get(field, ()))


def is_blank_record(record: RawRecord) -> bool:
    return all(_is_blank(v) for v in record.values())


def is_calculated_total(record: RawRecord) -> bool:
    """Return True for subtotal/summary rows and header rows echoed in the data."""

    texts = [str(v).strip().lower() for v in record.values() if isinstance(v, str) and v.strip()]
    if not texts:
        return False
    joined = " | ".join(texts)
    if "box" in joined and "description" in joined:
        return True
    for text in texts:
        for indicator in _TOTAL_INDICATORS:
            if indicator == "total":
                # Plain 'total' only counts as a whole word to keep e.g. 'Totally Fresh Ltd'.
                if text == "total" or text.startswith("total ") or text.endswith(" total"):
                    return True
            elif indicator in text:
                return True
    return False


def split_side_by_side(record: RawRecord) -> Iterator[dict[str, Any]]:
    """Yield one record per direction for rows with both Income and Expense values."""

    income = record.get("Income")
    expense = record.get("Expense")
    if _is_blank(income) or _is_blank(expense):
        yield dict(record)
        return
    base = {k: v for k, v in record.items() if k not in {"Income", "Expense"}}
    yield {**base, "Income": income, "direction": "income"}
    yield {**base, "Expense": expense, "direction": "expense"}


__all__ = [
    "FIELD_PRIORITIES",
    "is_blank_record",
    "is_calculated_total",
    "normalize_row",
    "record_amount",
    "record_text",
    "split_side_by_side",
]
