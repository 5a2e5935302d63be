"""Thread-pool helpers for timed port calls and per-candidate fan-out."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from typing import Any, Callable, Sequence


# Batch members issue timed port calls of their own and must not share the call pool.
_CALL_EXECUTOR = ThreadPoolExecutor(max_workers=8, thread_name_prefix="port-call")
_BATCH_EXECUTOR = ThreadPoolExecutor(max_workers=20, thread_name_prefix="port-batch")


def run_with_timeout(operation: str, fn: Callable[[], Any], timeout_seconds: float) -> Any:
    safe_timeout = max(0.05, float(timeout_seconds))
    future = _CALL_EXECUTOR.submit(fn)
    try:
        return future.result(timeout=safe_timeout)
    except FutureTimeoutError as exc:
        future.cancel()
        raise TimeoutError(f"{operation} timed out after {safe_timeout:g}s.") from exc


def run_batch(
    operation: str,
    fns: Sequence[Callable[[], Any]],
    timeout_seconds: float,
) -> list[Any]:
    """Runs every callable concurrently and waits for all of them.

    Results come back in input order; a member that raised or timed out is
    represented by its exception instance instead of a value.
    """
    if not fns:
        return []
    safe_timeout = max(0.05, float(timeout_seconds))
    futures = [_BATCH_EXECUTOR.submit(fn) for fn in fns]
    out: list[Any] = []
    for future in futures:
        try:
            out.append(future.result(timeout=safe_timeout))
        except FutureTimeoutError:
            future.cancel()
            out.append(TimeoutError(f"{operation} member timed out after {safe_timeout:g}s."))
        except Exception as exc:
            out.append(exc)
    return out
