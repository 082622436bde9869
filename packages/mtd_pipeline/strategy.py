"""Decide how an uploaded sheet is read for the requested period.

The strategy is fixed before any row is classified:

1. The first period of the tax year is always read directly.
2. A shape declared by the caller is authoritative.
3. Otherwise a small sample is sent once to the classifier for structural
   analysis; if that fails the sheet is read directly and the strategy is
   marked ``degraded``.

Cumulative sheets for later periods need the earlier periods' totals, which
are subtracted after aggregation.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from decimal import Decimal, InvalidOperation
from typing import Any

from .classifier import ClassifierGateway
from .errors import MissingPriorPeriods, PipelineError
from .logging_setup import get_logger
from .models import PeriodStrategy, RawRecord, SheetShape
from .periods import Period
from .running_totals import calculate_cumulative_totals, validate_previous_periods

_SAMPLE_SIZE_DEFAULT: int = 20

_logger = get_logger("mtd_pipeline.strategy")

type PriorTotals = Mapping[str, Any] | Mapping[Period, Mapping[str, Any]]


def _to_decimal_map(raw: Mapping[str, Any]) -> dict[str, Decimal]:
    out: dict[str, Decimal] = {}
    for code, value in raw.items():
        try:
            out[str(code)] = Decimal(str(value))
        except InvalidOperation as e:
            raise ValueError(f"prior total for {code!r} is not a number: {value!r}") from e
    return out


def _is_per_period(raw: Mapping[Any, Any]) -> bool:
    return bool(raw) and all(isinstance(v, Mapping) for v in raw.values())


def normalize_prior_totals(target: Period, raw: PriorTotals | None) -> dict[str, Decimal] | None:
    """Collapse caller-supplied prior totals into one code → amount mapping.

    Accepts either an already-summed mapping or a ``{period: totals}`` mapping
    (period keys may be :class:`Period` members or text such as ``"Q1"``), in
    which case every earlier period must be present.
    """

    if raw is None:
        return None
    if not _is_per_period(raw):
        return _to_decimal_map(raw)  # type: ignore[arg-type]
    per_period: dict[Period, dict[str, Decimal]] = {}
    for key, totals in raw.items():
        per_period[Period.parse(key)] = _to_decimal_map(totals)  # type: ignore[arg-type]
    validate_previous_periods(target, per_period)
    earlier = {p: t for p, t in per_period.items() if p < target}
    return calculate_cumulative_totals(earlier)


def _analyze(
    gateway: ClassifierGateway | None,
    rows: Sequence[RawRecord],
    target: Period,
    sample_size: int,
) -> tuple[SheetShape, str, bool, float | None]:
    if gateway is None:
        _logger.warning("strategy:degraded target=%s reason=no_gateway", target)
        return SheetShape.DIRECT, "fallback", True, None
    sample = [dict(r) for r in rows[:sample_size]]
    try:
        analysis = gateway.analyze_structure(sample, target)
    except (PipelineError, ValueError) as e:
        _logger.warning(
            "strategy:degraded target=%s reason=analysis_failed error=%s",
            target,
            e.__class__.__name__,
        )
        return SheetShape.DIRECT, "fallback", True, None
    _logger.info(
        "strategy:analysis target=%s shape=%s confidence=%.2f",
        target,
        analysis.detected_shape,
        analysis.confidence,
    )
    return analysis.detected_shape, "analysis", False, analysis.confidence


def resolve_strategy(
    target: Period | str | int,
    *,
    declared_shape: SheetShape | str | None = None,
    rows: Sequence[RawRecord] = (),
    gateway: ClassifierGateway | None = None,
    prior_period_totals: PriorTotals | None = None,
    sample_size: int = _SAMPLE_SIZE_DEFAULT,
) -> PeriodStrategy:
    """Return the :class:`PeriodStrategy` for ``target``.

    Raises :class:`~mtd_pipeline.errors.InvalidDeclaredShape` for an unknown
    declared keyword and :class:`~mtd_pipeline.errors.MissingPriorPeriods`
    when a cumulative sheet arrives without earlier totals.
    """

    period = Period.parse(target)
    declared = SheetShape.parse(declared_shape) if declared_shape is not None else None

    if period.is_first:
        overridden = declared if declared is not SheetShape.DIRECT else None
        if overridden is not None:
            _logger.warning("strategy:first_period_override declared=%s", overridden)
        return PeriodStrategy(
            kind=SheetShape.DIRECT,
            target=period,
            source="first_period",
            overridden_shape=overridden,
        )

    if declared is not None:
        kind, source, degraded, confidence = declared, "declared", False, None
    else:
        kind, source, degraded, confidence = _analyze(gateway, rows, period, sample_size)

    prior: dict[str, Decimal] = {}
    if kind is SheetShape.CUMULATIVE:
        normalized = normalize_prior_totals(period, prior_period_totals)
        if normalized is None:
            raise MissingPriorPeriods(
                f"Cumulative figures for {period.name} need the totals of "
                + ", ".join(p.name for p in period.previous_periods())
            )
        prior = normalized

    _logger.info(
        "strategy:resolved target=%s kind=%s source=%s degraded=%s",
        period,
        kind,
        source,
        degraded,
    )
    return PeriodStrategy(
        kind=kind,
        target=period,
        prior_period_totals=prior,
        source=source,  # type: ignore[arg-type]
        degraded=degraded,
        confidence=confidence,
    )


__all__ = ["normalize_prior_totals", "resolve_strategy"]
