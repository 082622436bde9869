"""Reporting periods (tax-year quarters) with a total ordering.

A UK tax year runs 6 April to 5 April and is written ``"2024-25"``. Quarter
boundaries and filing deadlines (one month after the quarter ends):

====  ==================  ===========
Q1    6 Apr - 5 Jul       5 Aug
Q2    6 Jul - 5 Oct       5 Nov
Q3    6 Oct - 5 Jan       5 Feb
Q4    6 Jan - 5 Apr       5 May
====  ==================  ===========
"""

from __future__ import annotations

import re
from datetime import date
from enum import Enum
from functools import total_ordering

_TAX_YEAR_RE = re.compile(r"^\s*(\d{4})\s*[-/]\s*(\d{2}|\d{4})\s*$")
_PERIOD_TEXT_RE = re.compile(r"^\s*(?:q|quarter)?\s*([1-4])\s*$", re.IGNORECASE)

# (start month, start day, end month, end day); years resolved per tax year
_BOUNDS: dict[int, tuple[int, int, int, int]] = {
    1: (4, 6, 7, 5),
    2: (7, 6, 10, 5),
    3: (10, 6, 1, 5),
    4: (1, 6, 4, 5),
}


def parse_tax_year(tax_year: str) -> tuple[int, int]:
    """Return ``(start_year, end_year)`` for strings like ``"2024-25"``."""

    m = _TAX_YEAR_RE.match(tax_year)
    if not m:
        raise ValueError(f"invalid tax year {tax_year!r}; expected e.g. '2024-25'")
    start = int(m.group(1))
    tail = m.group(2)
    end = int(tail) if len(tail) == 4 else (start // 100) * 100 + int(tail)
    if end != start + 1:
        raise ValueError(f"invalid tax year {tax_year!r}; years must be consecutive")
    return start, end


def tax_year_for(day: date) -> str:
    start = day.year if (day.month, day.day) >= (4, 6) else day.year - 1
    return f"{start}-{str(start + 1)[-2:]}"


@total_ordering
class Period(Enum):
    Q1 = 1
    Q2 = 2
    Q3 = 3
    Q4 = 4

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Period):
            return NotImplemented
        return self.value < other.value

    @classmethod
    def parse(cls, value: Period | str | int) -> Period:
        if isinstance(value, Period):
            return value
        if isinstance(value, int) and not isinstance(value, bool):
            if 1 <= value <= 4:
                return cls(value)
        elif isinstance(value, str):
            m = _PERIOD_TEXT_RE.match(value)
            if m:
                return cls(int(m.group(1)))
        raise ValueError(f"invalid period {value!r}; expected Q1, Q2, Q3 or Q4")

    @property
    def number(self) -> int:
        return self.value

    @property
    def is_first(self) -> bool:
        return self is Period.Q1

    def previous_periods(self) -> tuple[Period, ...]:
        """Strictly earlier periods of the same reporting cycle, in order."""

        return tuple(p for p in Period if p < self)

    def date_range(self, tax_year: str) -> tuple[date, date]:
        start_year, end_year = parse_tax_year(tax_year)
        sm, sd, em, ed = _BOUNDS[self.value]
        start = date(start_year if self.value < 4 else end_year, sm, sd)
        end = date(start_year if self.value < 3 else end_year, em, ed)
        return start, end

    def deadline(self, tax_year: str) -> date:
        _, end = self.date_range(tax_year)
        month = end.month + 1
        year = end.year
        if month > 12:
            month, year = 1, year + 1
        return date(year, month, 5)

    def period_id(self, tax_year: str) -> str:
        start, end = self.date_range(tax_year)
        return f"{start.isoformat()}_{end.isoformat()}"

    def __str__(self) -> str:
        return self.name


__all__ = ["Period", "parse_tax_year", "tax_year_for"]
