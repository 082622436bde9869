"""Public entry points for the ``mtd_pipeline`` package.

- :func:`classify_batch`: classify raw rows, one outcome per row
- :func:`resolve_and_aggregate`: full period run (strategy → section → layout,
  for multi-section sheets only → classify → aggregate → running-total
  subtraction)
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from .aggregate import aggregate_totals, sum_by_category
from .categories import BusinessType
from .classify import CancelSignal, PipelineContext, ProgressCallback, classify_rows
from .logging_setup import get_logger
from .models import (
    AggregationReport,
    BatchResult,
    Exclusions,
    RawRecord,
    SheetShape,
    TransactionCounts,
)
from .periods import Period
from .running_totals import difference
from .sections import Layout, aggregate_box_layout, detect_layout, extract_section
from .strategy import PriorTotals, resolve_strategy

_logger = get_logger("mtd_pipeline.api")


def classify_batch(
    rows: Iterable[RawRecord],
    business_type: BusinessType | str,
    progress_callback: ProgressCallback | None = None,
    *,
    context: PipelineContext | None = None,
    cancel: CancelSignal = None,
) -> BatchResult:
    """Classify ``rows`` for ``business_type``.

    See :func:`mtd_pipeline.classify.classify_rows` for the per-row flow,
    batching, progress and cancellation semantics.
    """

    return classify_rows(
        rows,
        business_type,
        context=context,
        progress_callback=progress_callback,
        cancel=cancel,
    )


def resolve_and_aggregate(
    rows: Iterable[RawRecord],
    target_period: Period | str | int,
    business_type: BusinessType | str,
    declared_shape: SheetShape | str | None = None,
    prior_period_totals: PriorTotals | None = None,
    *,
    context: PipelineContext | None = None,
    progress_callback: ProgressCallback | None = None,
    cancel: CancelSignal = None,
) -> AggregationReport:
    """Compute the category totals for ``target_period`` from an uploaded sheet.

    Input
    -----
    rows:
        Raw spreadsheet field-maps in sheet order.
    target_period:
        ``Q1``..``Q4`` (``"q2"``, ``2`` and ``Period.Q2`` are accepted).
    declared_shape:
        ``direct``, ``cumulative`` or ``multi_section``. When omitted for a
        later period the shape is inferred by one structural-analysis call.
    prior_period_totals:
        Earlier periods' totals, required for cumulative sheets: one summed
        mapping or a ``{period: totals}`` mapping.

    Output
    ------
    An :class:`~mtd_pipeline.models.AggregationReport`. A cancelled run
    returns the partial report (``partial=True``).

    Raises
    ------
    InvalidDeclaredShape, MissingPriorPeriods, SectionNotFound
        Before any row is classified.
    NoClassifiableTransactions
        When no row could be classified.
    """

    bt = BusinessType.parse(business_type)
    period = Period.parse(target_period)
    records: list[dict[str, Any]] = [dict(r) for r in rows]
    ctx = context or PipelineContext()

    strategy = resolve_strategy(
        period,
        declared_shape=declared_shape,
        rows=records,
        gateway=ctx.gateway,
        prior_period_totals=prior_period_totals,
    )
    warnings: list[str] = []
    if strategy.degraded:
        warnings.append("Sheet structure could not be analyzed; figures were read as one period")
    if strategy.overridden_shape is not None:
        warnings.append(
            f"The declared {strategy.overridden_shape} shape does not apply to "
            f"{period.name}; every row was read as {period.name} figures"
        )

    layout = Layout.TRANSACTIONS
    if strategy.kind is SheetShape.MULTI_SECTION:
        records = extract_section(records, period)
        layout = detect_layout(records).layout

    partial = False
    exclusions: Exclusions | None = None
    if layout is Layout.BOX:
        boxes = aggregate_box_layout(records, bt)
        totals: Mapping[str, Any] = boxes.totals
        counts = TransactionCounts(
            successful=boxes.mapped_rows,
            errors=len(boxes.unmapped),
            skipped=boxes.skipped_rows,
        )
        if boxes.unmapped:
            warnings.append(
                "Unrecognized box numbers were ignored: "
                + ", ".join(sorted({u.box for u in boxes.unmapped}))
            )
    else:
        batch = classify_rows(
            records,
            bt,
            context=ctx,
            progress_callback=progress_callback,
            cancel=cancel,
        )
        warnings.extend(batch.warnings)
        counts = batch.counts()
        partial = batch.cancelled
        if partial:
            warnings.append(
                f"Processing was cancelled; {counts.not_processed} row(s) were not processed"
            )
        sums = sum_by_category(
            ((o.row, o.result) for o in batch.outcomes if o.row is not None and o.result is not None),
            bt,
        )
        totals = sums.totals
        exclusions = sums.exclusions

    if strategy.kind is SheetShape.CUMULATIVE:
        totals = difference(totals, strategy.prior_period_totals)

    _logger.info(
        "resolve_and_aggregate:done period=%s business_type=%s shape=%s layout=%s partial=%s",
        period,
        bt,
        strategy.kind,
        layout,
        partial,
    )
    return aggregate_totals(
        totals,
        bt,
        counts=counts,
        exclusions=exclusions,
        strategy=strategy,
        partial=partial,
        warnings=warnings,
    )


__all__ = ["classify_batch", "resolve_and_aggregate"]
