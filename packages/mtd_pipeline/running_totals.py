"""Running-total arithmetic for cumulative (year-to-date) sheets.

Public API:
    - :func:`difference`: current period's figures from cumulative totals
    - :func:`calculate_cumulative_totals`: sum several prior periods
    - :func:`validate_previous_periods`: ensure every earlier period is present
"""

from __future__ import annotations

from collections.abc import Mapping
from decimal import Decimal

from .errors import MissingPriorPeriods
from .logging_setup import get_logger
from .periods import Period

_logger = get_logger("mtd_pipeline.running_totals")

_ZERO = Decimal("0")


def difference(
    current: Mapping[str, Decimal], prior: Mapping[str, Decimal]
) -> dict[str, Decimal]:
    """Return ``max(0, current - prior)`` per code over the union of keys.

    A code missing on either side counts as zero. Negative raw differences
    (corrections or misclassification in an earlier period) are clamped and
    logged. Neither input is mutated.
    """

    out: dict[str, Decimal] = {}
    for code in sorted(set(current) | set(prior)):
        raw = Decimal(current.get(code, _ZERO)) - Decimal(prior.get(code, _ZERO))
        if raw < 0:
            _logger.warning(
                "running_totals:negative_difference category=%s current=%s prior=%s",
                code,
                current.get(code, _ZERO),
                prior.get(code, _ZERO),
            )
            raw = _ZERO
        out[code] = raw
    return out


def calculate_cumulative_totals(
    previous: Mapping[Period, Mapping[str, Decimal]],
) -> dict[str, Decimal]:
    totals: dict[str, Decimal] = {}
    for period in sorted(previous):
        for code, amount in previous[period].items():
            totals[code] = totals.get(code, _ZERO) + Decimal(amount)
    return totals


def validate_previous_periods(
    target: Period, previous: Mapping[Period, Mapping[str, Decimal]]
) -> None:
    missing = [p for p in target.previous_periods() if p not in previous]
    if missing:
        names = ", ".join(p.name for p in missing)
        raise MissingPriorPeriods(
            f"Cumulative figures for {target.name} need totals for earlier periods: {names}"
        )


__all__ = ["calculate_cumulative_totals", "difference", "validate_previous_periods"]
