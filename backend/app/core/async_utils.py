"""
Async helpers shared by the device-facing services.

- with_timeout: race an awaitable against a per-operation timer
- run_with_concurrency: fixed-size worker pool over a list of items

Timed-out operations are abandoned, not cancelled: the underlying call
(typically a blocking SOAP request running in the default executor) may
still complete later and its result or error is discarded. SOAP has no
cancel primitive, so this is a known leak boundary.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')
R = TypeVar('R')


class OperationTimeoutError(TimeoutError):
    """Raised when a device operation does not settle within its budget."""

    def __init__(self, operation: str, timeout_ms: int):
        self.operation = operation
        self.timeout_ms = timeout_ms
        super().__init__(f"{operation} timeout after {timeout_ms}ms")


def _discard_outcome(future: "asyncio.Future[Any]") -> None:
    """Consume the late outcome of an abandoned operation."""
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.debug(
            f"Abandoned operation finished with error: {exc}",
            extra={"event_type": "abandoned_operation_error", "error_type": type(exc).__name__},
        )


async def with_timeout(
    awaitable: Awaitable[T],
    timeout_ms: int,
    operation: str,
) -> T:
    """
    Await ``awaitable`` for at most ``timeout_ms`` milliseconds.

    Args:
        awaitable: Coroutine or future to wait on
        timeout_ms: Wait bound in milliseconds
        operation: Operation name used in the timeout error

    Returns:
        The awaitable's result if it settled first

    Raises:
        OperationTimeoutError: If the timer fired first
        Exception: Whatever the operation raised, if it settled first with an error
    """
    future = asyncio.ensure_future(awaitable)
    try:
        done, _ = await asyncio.wait({future}, timeout=timeout_ms / 1000)
    except asyncio.CancelledError:
        future.cancel()
        raise

    if future in done:
        return future.result()

    future.add_done_callback(_discard_outcome)
    logger.warning(
        f"{operation} timed out after {timeout_ms}ms",
        extra={"event_type": "operation_timeout", "operation": operation, "timeout_ms": timeout_ms},
    )
    raise OperationTimeoutError(operation, timeout_ms)


async def run_with_concurrency(
    items: Sequence[T],
    limit: int,
    worker: Callable[[T], Awaitable[R]],
) -> List[R]:
    """
    Run ``worker`` over ``items`` with at most ``limit`` calls in flight.

    A fixed pool of ``min(limit, len(items))`` runners pulls items from a
    shared cursor, so the bound holds regardless of how long each call takes.
    Results keep the order of ``items``. A worker exception propagates, so
    workers that must not fail the batch have to handle their own errors.

    Args:
        items: Work items
        limit: Maximum concurrent worker calls (values below 1 are treated as 1)
        worker: Async function applied to each item

    Returns:
        List of worker results in input order
    """
    if not items:
        return []

    limit = max(1, limit)
    results: List[Any] = [None] * len(items)
    cursor = iter(range(len(items)))

    async def runner() -> None:
        for index in cursor:
            results[index] = await worker(items[index])

    await asyncio.gather(*(runner() for _ in range(min(limit, len(items)))))
    return results
