"""Retry policy for remote classifier calls.

:class:`RetryPolicy` bundles the attempt ceiling, the capped exponential
backoff and the retryable-error predicate. ``sleep`` is injectable so tests
exercise the schedule without real delays.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass

from .logging_setup import get_logger

_logger = get_logger("mtd_pipeline.retry")

_NON_RETRYABLE_STATUS: frozenset[int] = frozenset({401, 403, 404})

_NON_RETRYABLE_MARKERS: tuple[str, ...] = (
    "authentication",
    "authorization",
    "invalid_api_key",
    "incorrect api key",
    "model_not_found",
    "does not exist",
    "insufficient_quota",
    "exceeded your current quota",
    "missing credentials",
    "api_key client option",
)


def is_retryable_error(exc: BaseException) -> bool:
    """Return False for structural failures (credentials, quota, missing model).

    Everything else (timeouts, connection errors, HTTP 429/5xx, malformed
    model output) is considered transient.
    """

    sc = getattr(exc, "status_code", None)
    if isinstance(sc, int) and sc in _NON_RETRYABLE_STATUS:
        return False
    code = getattr(exc, "code", None)
    haystack = f"{code or ''} {exc}".lower()
    return not any(marker in haystack for marker in _NON_RETRYABLE_MARKERS)


class RetryExhausted(Exception):
    """Raised by :meth:`RetryPolicy.run` once no further attempt will be made."""

    def __init__(self, last_error: BaseException, *, attempts: int, retryable: bool) -> None:
        self.last_error = last_error
        self.attempts = attempts
        self.retryable = retryable
        super().__init__(
            f"gave up after {attempts} attempt(s): {last_error.__class__.__name__}: {last_error}"
        )


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    is_retryable: Callable[[BaseException], bool] = is_retryable_error
    sleep: Callable[[float], None] = time.sleep

    def __post_init__(self) -> None:
        if not isinstance(self.max_attempts, int) or self.max_attempts < 1:
            raise ValueError("max_attempts must be a positive integer")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be non-negative")

    def delay_for(self, attempt: int) -> float:
        """Backoff before retrying after failed ``attempt`` (1-based)."""

        return min(self.max_delay, self.base_delay * 2 ** (attempt - 1))

    def run[T](
        self,
        fn: Callable[[], T],
        *,
        on_retry: Callable[[int, BaseException, float], None] | None = None,
    ) -> T:
        """Call ``fn`` until it succeeds or the policy gives up.

        Raises :class:`RetryExhausted` chained to the last error. Non-retryable
        errors end the loop immediately with ``retryable=False``.
        """

        attempt = 1
        while True:
            try:
                return fn()
            except Exception as e:  # noqa: BLE001
                retryable = self.is_retryable(e)
                if not retryable or attempt >= self.max_attempts:
                    raise RetryExhausted(e, attempts=attempt, retryable=retryable) from e
                delay = self.delay_for(attempt)
                if on_retry is not None:
                    on_retry(attempt, e, delay)
                else:
                    _logger.debug(
                        "retry:attempt_failed attempt=%d delay_sec=%.2f error=%s",
                        attempt,
                        delay,
                        e.__class__.__name__,
                    )
                self.sleep(delay)
                attempt += 1


__all__ = ["RetryExhausted", "RetryPolicy", "is_retryable_error"]
