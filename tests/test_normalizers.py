# ruff: noqa: E402, I001
from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from mtd_pipeline.models import DateSource, Direction, Err, Ok
from mtd_pipeline.normalizers import (
    is_calculated_total,
    normalize_row,
    record_amount,
    split_side_by_side,
)

_TODAY = date(2024, 8, 1)


def _ok(record: dict) -> object:
    res = normalize_row(record, today=_TODAY)
    assert isinstance(res, Ok), res
    return res.value


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("120.00", Decimal("120.00")),
        ("£1,234.56", Decimal("1234.56")),
        ("(45.00)", Decimal("45.00")),
        ("- $20", Decimal("20.00")),
        ("12.5 DR", Decimal("12.50")),
        (99.999, Decimal("100.00")),
    ],
)
def test_amount_formats_parse_to_magnitudes(raw: object, expected: Decimal) -> None:
    row = _ok({"Description": "Stationery", "Amount": raw, "Date": "2024-07-10"})
    assert row.amount == expected


def test_sign_and_source_column_set_direction() -> None:
    assert _ok({"Description": "Hotel", "Amount": "-120"}).direction is Direction.EXPENSE
    assert _ok({"Description": "Client", "Income": "500"}).direction is Direction.INCOME
    assert _ok({"Description": "Fuel", "Money Out": "40"}).direction is Direction.EXPENSE
    assert _ok({"Description": "Sale", "Amount": "75"}).direction is Direction.UNKNOWN


def test_explicit_direction_column_wins_over_sign() -> None:
    row = _ok({"Description": "Refund", "Amount": "-20", "Type": "Credit"})
    assert row.direction is Direction.INCOME


def test_first_parseable_candidate_wins() -> None:
    # 'amount' is blank, 'Amount' is garbage, 'Total' parses
    row = _ok({"Description": "Mixed", "amount": "", "Amount": "n/a", "Total": "9.99"})
    assert row.amount == Decimal("9.99")


def test_supplied_and_fallback_dates() -> None:
    supplied = _ok({"Description": "Train", "Amount": "30", "Date": "10/07/2024"})
    assert supplied.date == date(2024, 7, 10)
    assert supplied.date_source is DateSource.SUPPLIED

    fallback = _ok({"Description": "Train", "Amount": "30", "Date": "someday"})
    assert fallback.date == _TODAY
    assert fallback.date_source is DateSource.FALLBACK


def test_iso_datetime_uses_date_part() -> None:
    row = _ok({"Description": "Taxi", "Amount": "8", "Date": "2024-07-10T09:15:00"})
    assert row.date == date(2024, 7, 10)


@pytest.mark.parametrize(
    ("record", "reason"),
    [
        ({"Description": "No money here"}, "MissingAmount"),
        ({"Description": "Garbage", "Amount": "abc"}, "MissingAmount"),
        ({"Description": "Too big", "Amount": "100000000"}, "InvalidAmount"),
        ({"Amount": "10", "Description": "   "}, "MissingDescription"),
    ],
)
def test_invalid_rows_return_err_with_reason(record: dict, reason: str) -> None:
    res = normalize_row(record, today=_TODAY)
    assert isinstance(res, Err)
    assert res.error.reason == reason
    assert isinstance(res.error, ValueError)


def test_description_whitespace_is_collapsed() -> None:
    row = _ok({"Description": "  Office   chair  ", "Amount": "80"})
    assert row.description == "Office chair"


def test_custom_field_priorities() -> None:
    priorities = {"amount": ("Cost",), "description": ("What",), "date": (), "direction": ()}
    res = normalize_row({"What": "Paper", "Cost": "3.20", "Amount": "999"}, field_priorities=priorities)
    assert isinstance(res, Ok)
    assert res.value.amount == Decimal("3.20")


def test_record_amount_is_signed() -> None:
    assert record_amount({"Amount": "(5.00)"}) == Decimal("-5.00")
    assert record_amount({"Description": "QUARTER 2"}) is None


@pytest.mark.parametrize(
    ("record", "expected"),
    [
        ({"Description": "Total expenses", "Amount": "420"}, True),
        ({"Description": "GRAND TOTAL", "Amount": "1"}, True),
        ({"Description": "Net profit", "Amount": "1"}, True),
        ({"Description": "Total", "Amount": "1"}, True),
        ({"Description": "Totally Fresh Ltd", "Amount": "12"}, False),
        ({"Box": "Box", "Description": "Description", "Amount": "Amount"}, True),
        ({"Description": "Printer ink", "Amount": "12"}, False),
        ({"Amount": 12}, False),
    ],
)
def test_is_calculated_total(record: dict, expected: bool) -> None:
    assert is_calculated_total(record) is expected


def test_split_side_by_side_yields_one_record_per_direction() -> None:
    parts = list(
        split_side_by_side({"Date": "2024-07-01", "Description": "Stall", "Income": "50", "Expense": "5"})
    )
    assert len(parts) == 2
    income = _ok(parts[0])
    expense = _ok(parts[1])
    assert (income.direction, income.amount) == (Direction.INCOME, Decimal("50.00"))
    assert (expense.direction, expense.amount) == (Direction.EXPENSE, Decimal("5.00"))


def test_split_side_by_side_passes_single_value_rows_through() -> None:
    record = {"Description": "Stall", "Income": "50", "Expense": ""}
    assert list(split_side_by_side(record)) == [record]
