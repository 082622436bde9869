"""Exception taxonomy for the ``mtd_pipeline`` package.

Validation failures subclass ``ValueError`` and are raised before any remote
call. Service failures subclass ``RuntimeError``. Everything derives from
:class:`PipelineError` so hosts can catch the package's errors in one place.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for all errors raised by ``mtd_pipeline``."""


class NormalizationError(PipelineError, ValueError):
    """A raw record could not be turned into a ``TransactionRow``.

    ``reason`` is one of ``MissingAmount``, ``MissingDescription`` or
    ``InvalidAmount``.
    """

    def __init__(self, reason: str, detail: str | None = None) -> None:
        self.reason = reason
        self.detail = detail
        super().__init__(f"{reason}: {detail}" if detail else reason)


class InvalidDeclaredShape(PipelineError, ValueError):
    def __init__(self, keyword: object) -> None:
        self.keyword = keyword
        super().__init__(
            f"Unrecognized spreadsheet shape {keyword!r}; "
            "expected one of: direct, cumulative, multi_section"
        )


class MissingPriorPeriods(PipelineError, ValueError):
    """Cumulative figures were declared without the earlier periods' totals."""


class SectionNotFound(PipelineError, ValueError):
    def __init__(self, period_number: int) -> None:
        self.period_number = period_number
        super().__init__(
            f"Could not find a section for Quarter {period_number}; please ensure the "
            f"sheet contains a Quarter {period_number} label"
        )


class ClassificationServiceFailure(PipelineError, RuntimeError):
    """The remote classifier could not produce a verdict.

    ``retryable`` is ``False`` when the failure was structural (credentials,
    quota, model availability) and remaining attempts were abandoned.
    """

    def __init__(self, message: str, *, retryable: bool, attempts: int) -> None:
        self.retryable = retryable
        self.attempts = attempts
        super().__init__(message)


class NoClassifiableTransactions(PipelineError, RuntimeError):
    def __init__(self, message: str = "No transactions could be classified") -> None:
        super().__init__(message)


class FilerPayloadError(PipelineError, ValueError):
    """The aggregated report cannot be expressed as a valid filer payload."""


__all__ = [
    "PipelineError",
    "NormalizationError",
    "InvalidDeclaredShape",
    "MissingPriorPeriods",
    "SectionNotFound",
    "ClassificationServiceFailure",
    "NoClassifiableTransactions",
    "FilerPayloadError",
]
