"""Sheets holding several periods, and tax-form box summaries.

Public API:
    - :func:`find_section_labels` / :func:`extract_section`: slice the target
      period out of a sheet with ``Quarter N`` / ``QN`` section labels
    - :func:`detect_layout`: transaction-level rows vs pre-summarized box rows
    - :func:`aggregate_box_layout`: sum box rows straight into category totals
      (no classifier involved)
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from enum import StrEnum
from typing import Any

from .categories import BusinessType
from .errors import SectionNotFound
from .logging_setup import get_logger
from .models import RawRecord
from .normalizers import FIELD_PRIORITIES, is_blank_record, record_amount, record_text
from .periods import Period

_LAYOUT_SAMPLE_DEFAULT: int = 50

_logger = get_logger("mtd_pipeline.sections")

_LABEL_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\bquarter\s*([1-4])\b", re.IGNORECASE),
    re.compile(r"\bq\s*([1-4])\b", re.IGNORECASE),
    re.compile(r"\b([1-4])(?:st|nd|rd|th)\s+quarter\b", re.IGNORECASE),
)

_BOX_VALUE_RE = re.compile(r"^\s*(?:box\s*)?(\d{1,3})(?:\.0+)?\s*$", re.IGNORECASE)
_BOX_INDICATOR_NUMBERS: frozenset[int] = frozenset({*range(20, 30), 44})
_BOX_COLUMNS: tuple[str, ...] = tuple(FIELD_PRIORITIES["box"])
_AMOUNT_COLUMNS: frozenset[str] = frozenset(k.lower() for k in FIELD_PRIORITIES["amount"])

PROPERTY_BOX_MAP: Mapping[int, str] = {
    20: "periodAmount",
    21: "premiumsOfLeaseGrant",
    22: "premiumsOfLeaseGrant",
    23: "premiumsOfLeaseGrant",
    24: "premisesRunningCosts",
    25: "repairsAndMaintenance",
    27: "professionalFees",
    28: "costOfServices",
    29: "other",
    44: "financialCosts",
}

# SA103F (self-employment, full) boxes 15-30.
SELF_EMPLOYMENT_BOX_MAP: Mapping[int, str] = {
    15: "turnover",
    16: "otherIncome",
    17: "costOfGoodsBought",
    18: "cisPaymentsToSubcontractors",
    19: "staffCosts",
    20: "travelCosts",
    21: "premisesRunningCosts",
    22: "maintenanceCosts",
    23: "adminCosts",
    24: "advertisingCosts",
    25: "interestOnBankOtherLoans",
    26: "financialCharges",
    27: "badDebt",
    28: "professionalFees",
    29: "depreciation",
    30: "other",
}

_BOX_MAPS: dict[BusinessType, Mapping[int, str]] = {
    BusinessType.LANDLORD: PROPERTY_BOX_MAP,
    BusinessType.SOLE_TRADER: SELF_EMPLOYMENT_BOX_MAP,
}


class Layout(StrEnum):
    TRANSACTIONS = "transactions"
    BOX = "box"


@dataclass(frozen=True, slots=True)
class SectionLabel:
    index: int
    period: Period


@dataclass(frozen=True, slots=True)
class LayoutDetection:
    layout: Layout
    confidence: float
    box_indicators: int
    transaction_indicators: int


@dataclass(frozen=True, slots=True)
class UnmappedBox:
    index: int
    box: str
    amount: Decimal | None


@dataclass(frozen=True, slots=True)
class BoxAggregation:
    totals: dict[str, Decimal]
    unmapped: tuple[UnmappedBox, ...] = ()
    mapped_rows: int = 0
    skipped_rows: int = field(default=0)


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


def _label_period(record: RawRecord) -> Period | None:
    for value in record.values():
        if not isinstance(value, str) or not value.strip():
            continue
        for pattern in _LABEL_PATTERNS:
            m = pattern.search(value)
            if m:
                return Period(int(m.group(1)))
    return None


def _is_header_echo(record: RawRecord) -> bool:
    text = " ".join(str(v).lower() for v in record.values() if v is not None)
    return "box" in text and "description" in text


def find_section_labels(records: Sequence[RawRecord]) -> list[SectionLabel]:
    """Return every label row (a period label and no parseable amount), in order."""

    labels: list[SectionLabel] = []
    for i, record in enumerate(records):
        period = _label_period(record)
        if period is None or record_amount(record) is not None:
            continue
        labels.append(SectionLabel(index=i, period=period))
    return labels


def extract_section(records: Sequence[RawRecord], target: Period | str | int) -> list[RawRecord]:
    """Return the data rows between ``target``'s label and the next label.

    The first occurrence of the label wins. Blank rows and column-header rows
    repeated inside the section are dropped.
    """

    period = Period.parse(target)
    labels = find_section_labels(records)
    start_pos = next((pos for pos, lab in enumerate(labels) if lab.period is period), None)
    if start_pos is None:
        _logger.warning(
            "sections:not_found target=%s labels=%s",
            period,
            ",".join(str(lab.period) for lab in labels) or "-",
        )
        raise SectionNotFound(period.number)

    start = labels[start_pos].index + 1
    end = labels[start_pos + 1].index if start_pos + 1 < len(labels) else len(records)
    section = [
        r for r in records[start:end] if not is_blank_record(r) and not _is_header_echo(r)
    ]
    _logger.info(
        "sections:extracted target=%s start=%d end=%d rows=%d dropped=%d",
        period,
        start,
        end,
        len(section),
        (end - start) - len(section),
    )
    return section


# ---------------------------------------------------------------------------
# Layout detection
# ---------------------------------------------------------------------------


def _box_number(value: Any) -> int | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    m = _BOX_VALUE_RE.match(str(value))
    return int(m.group(1)) if m else None


def _box_cell(record: RawRecord) -> str | None:
    for key in _BOX_COLUMNS:
        value = record.get(key)
        if value is not None and str(value).strip():
            return str(value)
    return None


def _has_box_indicator(record: RawRecord) -> bool:
    if _box_cell(record) is not None:
        return True
    return any(_box_number(v) in _BOX_INDICATOR_NUMBERS for v in record.values())


def _has_transaction_indicator(record: RawRecord) -> bool:
    # A numbered box row is never a transaction, whatever its other columns.
    cell = _box_cell(record)
    if cell is not None and _box_number(cell) is not None:
        return False
    keys = [str(k).strip().lower() for k in record]
    if any("date" in k or "transaction" in k for k in keys):
        return True
    has_description = any(
        "description" in k or "details" in k or "merchant" in k for k in keys
    )
    has_amount = any(
        k in _AMOUNT_COLUMNS or "amount" in k or "debit" in k or "credit" in k for k in keys
    )
    return has_description and has_amount


def detect_layout(
    records: Sequence[RawRecord], *, sample: int = _LAYOUT_SAMPLE_DEFAULT
) -> LayoutDetection:
    """Decide whether a sheet section holds transactions or form boxes.

    Box wins only on a strict majority of indicators and only when at least
    one sampled row fills a Box column; without one there is nothing for
    :func:`aggregate_box_layout` to map.
    """

    rows = records[:sample]
    box = sum(1 for r in rows if _has_box_indicator(r))
    tx = sum(1 for r in rows if _has_transaction_indicator(r))
    has_box_column = any(_box_cell(r) is not None for r in rows)
    layout = Layout.BOX if box > tx and has_box_column else Layout.TRANSACTIONS
    confidence = min(1.0, max(box, tx) / len(rows)) if rows else 0.0
    _logger.info(
        "sections:layout layout=%s box_indicators=%d transaction_indicators=%d confidence=%.2f",
        layout,
        box,
        tx,
        confidence,
    )
    return LayoutDetection(
        layout=layout,
        confidence=round(confidence, 4),
        box_indicators=box,
        transaction_indicators=tx,
    )


# ---------------------------------------------------------------------------
# Box aggregation
# ---------------------------------------------------------------------------


def aggregate_box_layout(
    records: Iterable[RawRecord], business_type: BusinessType | str
) -> BoxAggregation:
    """Sum box-numbered rows into category totals using the form's box map.

    Rows without a box number are ignored; rows whose box is not on the map
    are reported in ``unmapped``.
    """

    bt = BusinessType.parse(business_type)
    box_map = _BOX_MAPS[bt]
    totals: dict[str, Decimal] = {}
    unmapped: list[UnmappedBox] = []
    mapped = 0
    skipped = 0
    for i, record in enumerate(records):
        raw_box = record_text(record, "box")
        number = _box_number(raw_box) if raw_box is not None else None
        if number is None:
            skipped += 1
            continue
        amount = record_amount(record)
        code = box_map.get(number)
        if code is None:
            _logger.warning(
                "sections:unmapped_box row_index=%d box=%s business_type=%s", i, raw_box, bt
            )
            unmapped.append(UnmappedBox(index=i, box=str(raw_box), amount=amount))
            continue
        if amount is None:
            skipped += 1
            continue
        totals[code] = totals.get(code, Decimal("0")) + abs(amount)
        mapped += 1
    _logger.info(
        "sections:box_aggregated business_type=%s mapped=%d unmapped=%d skipped=%d",
        bt,
        mapped,
        len(unmapped),
        skipped,
    )
    return BoxAggregation(
        totals=totals, unmapped=tuple(unmapped), mapped_rows=mapped, skipped_rows=skipped
    )


__all__ = [
    "BoxAggregation",
    "Layout",
    "LayoutDetection",
    "PROPERTY_BOX_MAP",
    "SELF_EMPLOYMENT_BOX_MAP",
    "SectionLabel",
    "UnmappedBox",
    "aggregate_box_layout",
    "detect_layout",
    "extract_section",
    "find_section_labels",
]
