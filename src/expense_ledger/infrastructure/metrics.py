import time
from collections.abc import Awaitable, Callable
from functools import wraps
from typing import ParamSpec, TypeVar

from prometheus_client import Counter, Histogram


LEDGER_OPERATIONS_TOTAL = Counter(
    "ledger_operations_total",
    "Total number of ledger operations",
    ["operation", "outcome"],
)

LEDGER_ROLLBACKS_TOTAL = Counter(
    "ledger_rollbacks_total",
    "Total number of ledger rollbacks after a failed step",
    ["operation", "result"],
)

LEDGER_OPERATION_DURATION_SECONDS = Histogram(
    "ledger_operation_duration_seconds",
    "Ledger operation duration",
    ["operation"],
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5],
)

CSV_IMPORTED_ROWS_TOTAL = Counter(
    "csv_imported_rows_total",
    "Rows processed by CSV import",
    ["result"],
)

P = ParamSpec("P")
R = TypeVar("R")


def track_ledger_duration(
    operation: str,
) -> Callable[[Callable[P, Awaitable[R]]], Callable[P, Awaitable[R]]]:
    def decorator(func: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R]]:
        @wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            start = time.perf_counter()
            try:
                return await func(*args, **kwargs)
            finally:
                duration = time.perf_counter() - start
                LEDGER_OPERATION_DURATION_SECONDS.labels(operation=operation).observe(duration)

        return wrapper

    return decorator
