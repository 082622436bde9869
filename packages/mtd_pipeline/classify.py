"""Batch classification of raw spreadsheet rows.

Public API:
    - :class:`PipelineContext`
    - :func:`classify_rows`

Per row: normalize → personal filter → cache → remote classifier. Rows are
processed in batches (default 10). Rows within a batch run concurrently, and
the pipeline pauses between batches to respect remote throughput limits. A
row's failure never aborts the batch: it is recorded as a
:class:`~mtd_pipeline.models.RowError` and processing continues.

No side effects occur at import time (no client creation, no logging handler
attachment, no environment reads).
"""

from __future__ import annotations

import math
import os
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from .cache import ClassificationCache, key_for
from .categories import BusinessType, vocabulary
from .categorization import Category, ManualReview, Personal, Unrecognized
from .classifier import ClassifierContext, ClassifierGateway
from .errors import ClassificationServiceFailure
from .logging_setup import get_logger
from .models import (
    BatchResult,
    ClassificationResult,
    Err,
    RawRecord,
    RowError,
    RowOutcome,
    RowStatus,
    TransactionRow,
)
from .normalizers import is_calculated_total, normalize_row, split_side_by_side
from .personal import detect_personal
from .pmap import p_map

# ---- Tunables (private) ------------------------------------------------------

_BATCH_SIZE_DEFAULT: int = 10
_BATCH_DELAY_SEC_DEFAULT: float = 1.0
# Share of remote attempts failing structurally before a systemic warning.
_SYSTEMIC_FAILURE_RATIO: float = 0.5

_logger = get_logger("mtd_pipeline.classify")

type ProgressCallback = Callable[[int, int, float], None]
type CancelSignal = Any  # threading.Event-like (``is_set()``) or zero-arg callable


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        value = 0
    if value < 1:
        _logger.warning("config:invalid_env name=%s value=%r using=%d", name, raw, default)
        return default
    return value


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        value = -1.0
    if value < 0 or not math.isfinite(value):
        _logger.warning("config:invalid_env name=%s value=%r using=%s", name, raw, default)
        return default
    return value


@dataclass
class PipelineContext:
    """State owned by one pipeline invocation (or deliberately shared across runs).

    Holds the classifier gateway, the classification cache and the limiter
    settings so concurrent or repeated runs do not interfere, and tests can
    inject isolated instances.
    """

    gateway: ClassifierGateway = field(default_factory=ClassifierGateway)
    cache: ClassificationCache = field(default_factory=ClassificationCache)
    batch_size: int = field(
        default_factory=lambda: _env_int("MTD_BATCH_SIZE", _BATCH_SIZE_DEFAULT)
    )
    batch_delay: float = field(
        default_factory=lambda: _env_float("MTD_BATCH_DELAY_SEC", _BATCH_DELAY_SEC_DEFAULT)
    )
    sleep: Callable[[float], None] = time.sleep
    cache_window: str | None = None
    today: date | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.batch_size, int) or self.batch_size <= 0:
            raise ValueError("batch_size must be a positive integer")
        if self.batch_delay < 0:
            raise ValueError("batch_delay must be non-negative")


def _paginate(n_total: int, page_size: int) -> Iterable[tuple[int, int, int]]:
    """Yield ``(batch_index, base, end)`` using half-open ranges ``[base, end)``."""

    for k in range(math.ceil(n_total / page_size)):
        base = k * page_size
        yield (k, base, min(base + page_size, n_total))


def _is_cancelled(cancel: CancelSignal) -> bool:
    if cancel is None:
        return False
    is_set = getattr(cancel, "is_set", None)
    if callable(is_set):
        return bool(is_set())
    if callable(cancel):
        return bool(cancel())
    raise TypeError("cancel must be a threading.Event-like object or a zero-arg callable")


def _classify_one(
    index: int,
    record: RawRecord,
    *,
    business_type: BusinessType,
    vocab: tuple[str, ...],
    context: PipelineContext,
) -> RowOutcome:
    if is_calculated_total(record):
        _logger.debug("classify_batch:row_skipped row_index=%d reason=calculated_total", index)
        return RowOutcome(index=index, status=RowStatus.SKIPPED)

    normalized = normalize_row(record, today=context.today)
    if isinstance(normalized, Err):
        err = normalized.error
        _logger.info(
            "classify_batch:row_invalid row_index=%d reason=%s", index, err.reason
        )
        return RowOutcome(
            index=index,
            status=RowStatus.ERROR,
            error=RowError(index=index, reason=err.reason, detail=str(err)),
        )
    row: TransactionRow = normalized.value

    match = detect_personal(row.description, row.amount)
    if match.is_personal:
        result = ClassificationResult.personal(
            confidence=match.confidence,
            rationale="personal indicator terms: " + ", ".join(match.matched_terms),
            source="personal_filter",
        )
        return RowOutcome(index=index, status=RowStatus.PERSONAL, row=row, result=result)

    key = key_for(business_type, row.amount, row.description, window=context.cache_window)
    cached = context.cache.get(key)
    if cached is not None:
        _logger.debug("classify_batch:row_cache_hit row_index=%d", index)
        hit = ClassificationResult.categorized(
            str(cached.category),
            confidence=cached.confidence,
            rationale=cached.rationale,
            source="cache",
        )
        return RowOutcome(index=index, status=RowStatus.CLASSIFIED, row=row, result=hit)

    try:
        verdict = context.gateway.classify(
            ClassifierContext(
                amount=row.amount,
                description=row.description,
                date=row.date,
                business_type=business_type,
                vocabulary=vocab,
                direction=row.direction,
            )
        )
    except ClassificationServiceFailure as e:
        return RowOutcome(
            index=index,
            status=RowStatus.ERROR,
            row=row,
            error=RowError(
                index=index,
                reason="ClassificationServiceFailure",
                detail=str(e),
                retryable=e.retryable,
            ),
        )

    outcome = verdict.outcome
    if isinstance(outcome, Category):
        result = ClassificationResult.categorized(
            outcome.code, confidence=verdict.confidence, rationale=verdict.rationale
        )
        context.cache.put(key, result)
        return RowOutcome(index=index, status=RowStatus.CLASSIFIED, row=row, result=result)
    if isinstance(outcome, Personal):
        result = ClassificationResult.personal(
            confidence=verdict.confidence, rationale=verdict.rationale
        )
        return RowOutcome(index=index, status=RowStatus.PERSONAL, row=row, result=result)
    if isinstance(outcome, ManualReview):
        result = ClassificationResult.manual_review(
            confidence=verdict.confidence, rationale=verdict.rationale
        )
        return RowOutcome(index=index, status=RowStatus.MANUAL_REVIEW, row=row, result=result)
    if isinstance(outcome, Unrecognized):
        _logger.info(
            'classify_batch:row_unrecognized row_index=%d raw="%s"', index, outcome.raw[:40]
        )
        result = ClassificationResult.manual_review(
            confidence=verdict.confidence,
            rationale=f"unrecognized category {outcome.raw!r}: {verdict.rationale}",
        )
        return RowOutcome(index=index, status=RowStatus.MANUAL_REVIEW, row=row, result=result)
    raise TypeError(f"unexpected classifier outcome: {outcome!r}")  # pragma: no cover


def _systemic_warnings(outcomes: list[RowOutcome]) -> list[str]:
    remote = [
        o
        for o in outcomes
        if (o.result is not None and o.result.source == "classifier")
        or (o.error is not None and o.error.reason == "ClassificationServiceFailure")
    ]
    structural = [o for o in remote if o.error is not None and o.error.retryable is False]
    if remote and structural and len(structural) / len(remote) >= _SYSTEMIC_FAILURE_RATIO:
        msg = (
            f"{len(structural)} of {len(remote)} classifier calls failed with non-retryable "
            "errors (check credentials, quota and model availability)"
        )
        _logger.warning(
            "classify_batch:systemic_failure structural=%d attempted=%d",
            len(structural),
            len(remote),
        )
        return [msg]
    return []


def classify_rows(
    records: Iterable[RawRecord],
    business_type: BusinessType | str,
    *,
    context: PipelineContext | None = None,
    progress_callback: ProgressCallback | None = None,
    cancel: CancelSignal = None,
) -> BatchResult:
    """Classify ``records`` and return one outcome per row in input order.

    Parameters
    ----------
    records:
        Raw field-maps from the spreadsheet parser. Rows holding both an
        ``Income`` and an ``Expense`` value are split in two first; outcome
        indices refer to positions after that split.
    business_type:
        ``"sole_trader"`` or ``"landlord"`` (aliases accepted).
    context:
        Gateway, cache and limiter settings; a fresh one is created if omitted.
    progress_callback:
        Called as ``(completed, total, percentage)`` after every row. Errors
        raised by the callback are logged and ignored.
    cancel:
        ``threading.Event`` or zero-arg callable checked at each batch
        boundary. Once set, remaining rows are marked ``not_processed`` and
        the partial result is returned.
    """

    bt = BusinessType.parse(business_type)
    ctx = context or PipelineContext()
    rows: list[dict[str, Any]] = [r for rec in records for r in split_side_by_side(rec)]
    n_total = len(rows)
    vocab = vocabulary(bt)

    outcomes: list[RowOutcome | None] = [None] * n_total
    completed = 0
    cancelled = False

    def _on_done(_: int, outcome: RowOutcome) -> None:
        nonlocal completed
        outcomes[outcome.index] = outcome
        completed += 1
        if progress_callback is None:
            return
        pct = round(100.0 * completed / n_total, 2)
        try:
            progress_callback(completed, n_total, pct)
        except Exception:  # noqa: BLE001
            _logger.warning("classify_batch:progress_callback_failed", exc_info=True)

    def _map_row(index: int) -> RowOutcome:
        return _classify_one(
            index, rows[index], business_type=bt, vocab=vocab, context=ctx
        )

    _logger.info(
        "classify_batch:start rows=%d batch_size=%d business_type=%s",
        n_total,
        ctx.batch_size,
        bt,
    )
    t0 = time.perf_counter()
    for batch_index, base, end in _paginate(n_total, ctx.batch_size):
        if batch_index > 0 and ctx.batch_delay > 0:
            ctx.sleep(ctx.batch_delay)
        if _is_cancelled(cancel):
            cancelled = True
            for i in range(base, n_total):
                outcomes[i] = RowOutcome(index=i, status=RowStatus.NOT_PROCESSED)
            _logger.warning(
                "classify_batch:cancelled batch_index=%d not_processed=%d",
                batch_index,
                n_total - base,
            )
            break
        p_map(
            range(base, end),
            _map_row,
            concurrency=end - base,
            stop_on_error=False,
            on_done=_on_done,
        )
        _logger.debug(
            "classify_batch:batch_done batch_index=%d rows=%d completed=%d",
            batch_index,
            end - base,
            completed,
        )

    final: list[RowOutcome] = [o for o in outcomes if o is not None]
    if len(final) != n_total:  # pragma: no cover
        raise RuntimeError("Internal error: missing row outcomes")
    errors = tuple(o.error for o in final if o.error is not None)
    result = BatchResult(
        outcomes=tuple(final),
        errors=errors,
        warnings=tuple(_systemic_warnings(final)),
        cancelled=cancelled,
    )
    counts = result.counts()
    _logger.info(
        (
            "classify_batch:summary rows=%d successful=%d personal=%d manual_review=%d "
            "errors=%d not_processed=%d skipped=%d latency_ms=%.2f"
        ),
        n_total,
        counts.successful,
        counts.personal,
        counts.manual_review,
        counts.errors,
        counts.not_processed,
        counts.skipped,
        (time.perf_counter() - t0) * 1000.0,
    )
    return result


__all__ = ["PipelineContext", "classify_rows"]
