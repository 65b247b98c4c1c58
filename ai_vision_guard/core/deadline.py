"""
Deadline-bounded execution of a single pending operation.

Races the operation against a wall-clock deadline and reports exactly
one outcome: the operation's value, the operation's own exception, or
OperationTimedOut.
"""

import asyncio
import inspect
import logging
from typing import Awaitable, TypeVar

from .errors import OperationTimedOut

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _validate_timeout(timeout: float) -> float:
    if isinstance(timeout, bool) or not isinstance(timeout, (int, float)):
        raise ValueError(f"timeout must be a positive number of seconds, got {timeout!r}")
    if timeout <= 0:
        raise ValueError(f"timeout must be a positive duration, got {timeout}")
    return float(timeout)


def _discard_outcome(task: "asyncio.Future") -> None:
    # The abandoned operation may still fail after we returned; mark its
    # exception as retrieved so the loop does not report it.
    if not task.cancelled():
        task.exception()


async def run_with_deadline(operation: Awaitable[T], timeout: float) -> T:
    """Run an awaitable with a hard timeout.

    Args:
        operation: Coroutine, task or future producing the result
        timeout: Positive number of seconds allotted to the operation

    Returns:
        The operation's result

    Raises:
        ValueError: If timeout is not a positive duration
        OperationTimedOut: If the deadline passes first
        Exception: Whatever the operation raised, unchanged
    """
    try:
        seconds = _validate_timeout(timeout)
    except ValueError:
        # Never start work that was handed to a misconfigured guard.
        if inspect.iscoroutine(operation):
            operation.close()
        raise

    task = asyncio.ensure_future(operation)
    try:
        done, _ = await asyncio.wait({task}, timeout=seconds)
    except asyncio.CancelledError:
        task.cancel()
        raise

    if task in done or task.done():
        return task.result()

    task.cancel()
    task.add_done_callback(_discard_outcome)
    logger.warning("Operation abandoned after %.1fs deadline", seconds)
    raise OperationTimedOut(seconds)
