"""Public interface for the ``mtd_pipeline`` package.

This module exposes the package's entry points and public models/types as the
stable import surface. There is no runtime logic here, only symbol re-exports.
"""

from .aggregate import aggregate, aggregate_totals, frontend_summary
from .api import classify_batch, resolve_and_aggregate
from .cache import ClassificationCache
from .categories import BusinessType, schema_for, vocabulary
from .classifier import ClassifierGateway
from .classify import PipelineContext
from .errors import (
    ClassificationServiceFailure,
    FilerPayloadError,
    InvalidDeclaredShape,
    MissingPriorPeriods,
    NoClassifiableTransactions,
    NormalizationError,
    PipelineError,
    SectionNotFound,
)
from .filer import FilerSubmission, build_filer_submission, to_payload
from .models import (
    AggregationReport,
    BatchResult,
    ClassificationResult,
    PeriodStrategy,
    RowStatus,
    SheetShape,
    TransactionCounts,
    TransactionRow,
)
from .periods import Period

__all__ = [
    # Entry points
    "classify_batch",
    "resolve_and_aggregate",
    "aggregate",
    "aggregate_totals",
    "frontend_summary",
    "build_filer_submission",
    "to_payload",
    # Context and collaborators
    "PipelineContext",
    "ClassifierGateway",
    "ClassificationCache",
    # Types
    "AggregationReport",
    "BatchResult",
    "BusinessType",
    "ClassificationResult",
    "FilerSubmission",
    "Period",
    "PeriodStrategy",
    "RowStatus",
    "SheetShape",
    "TransactionCounts",
    "TransactionRow",
    "schema_for",
    "vocabulary",
    # Errors
    "PipelineError",
    "NormalizationError",
    "InvalidDeclaredShape",
    "MissingPriorPeriods",
    "SectionNotFound",
    "ClassificationServiceFailure",
    "NoClassifiableTransactions",
    "FilerPayloadError",
]
