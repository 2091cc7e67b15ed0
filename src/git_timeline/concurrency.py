from __future__ import annotations

from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Callable, Iterable, TypeVar

T = TypeVar("T")
R = TypeVar("R")

MAX_CONCURRENT = 5


def run_bounded(items: Iterable[T], fn: Callable[[T], R], *, limit: int = MAX_CONCURRENT) -> list[R]:
    """
    Run `fn` over `items` with at most `limit` calls in flight.

    Items start in input order; once `limit` are running, the next item is
    admitted as soon as any running call finishes. Every item runs to
    completion even if another one raised. Results come back in input order;
    if any call raised, the first failure (by input order) is re-raised after
    all calls finished.
    """
    limit = max(1, int(limit))
    futures: list[Future[R]] = []
    in_flight: set[Future[R]] = set()
    with ThreadPoolExecutor(max_workers=limit) as ex:
        for item in items:
            if len(in_flight) >= limit:
                _done, pending = wait(in_flight, return_when=FIRST_COMPLETED)
                in_flight = set(pending)
            fut = ex.submit(fn, item)
            futures.append(fut)
            in_flight.add(fut)
        wait(in_flight)

    results: list[R] = []
    first_error: BaseException | None = None
    for fut in futures:
        err = fut.exception()
        if err is not None:
            if first_error is None:
                first_error = err
            continue
        results.append(fut.result())
    if first_error is not None:
        raise first_error
    return results
