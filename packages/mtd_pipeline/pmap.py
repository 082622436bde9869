"""Bounded-concurrency map over a ``ThreadPoolExecutor`` that keeps input order.

- ``concurrency``: maximum number of mapper calls in flight.
- ``stop_on_error`` (default True): re-raise the first mapper error and cancel
  pending work; when False every item runs and failures are raised together
  as an ``ExceptionGroup``.
- ``on_done``: called on the submitting thread with ``(position, value)`` as
  each item finishes, in completion order.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from itertools import islice


def p_map[InT, OutT](
    iterable: Iterable[InT],
    mapper: Callable[[InT], OutT],
    *,
    concurrency: int,
    stop_on_error: bool = True,
    on_done: Callable[[int, OutT], None] | None = None,
) -> list[OutT]:
    """Return ``[mapper(x) for x in iterable]`` with at most ``concurrency`` calls running."""

    if not isinstance(concurrency, int) or concurrency < 1:
        raise ValueError("concurrency must be a positive integer")

    pending = enumerate(iterable)
    slots: dict[int, OutT] = {}
    failures: list[Exception] = []
    positions: dict[Future[OutT], int] = {}

    with ThreadPoolExecutor(max_workers=concurrency) as pool:

        def _fill(n: int) -> None:
            for pos, item in islice(pending, n):
                positions[pool.submit(mapper, item)] = pos

        _fill(concurrency)
        while positions:
            finished, _ = wait(positions, return_when=FIRST_COMPLETED)
            for fut in finished:
                pos = positions.pop(fut)
                try:
                    value = fut.result()
                except Exception as e:  # noqa: BLE001
                    if stop_on_error:
                        pool.shutdown(wait=False, cancel_futures=True)
                        raise
                    failures.append(e)
                    continue
                slots[pos] = value
                if on_done is not None:
                    on_done(pos, value)
            _fill(len(finished))

    if failures:
        raise ExceptionGroup(f"p_map: {len(failures)} mapper call(s) failed", failures)
    return [slots[pos] for pos in sorted(slots)]


__all__ = ["p_map"]
