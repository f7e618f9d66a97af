"""Cooperative polling loop used by the eventual-expectation helpers."""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PollResult:
    """Outcome of a polling loop.

    ``value`` is the last value the expression produced and ``error`` the
    exception raised by the last attempt, if it raised.
    """

    satisfied: bool
    value: Any
    error: Optional[Exception]
    attempts: int


async def evaluate(expression: Callable[[], Any]) -> Any:
    """Call ``expression``, awaiting the result if it is awaitable."""
    value = expression()
    if inspect.isawaitable(value):
        value = await value
    return value


async def poll(
    expression: Callable[[], Any],
    accept: Callable[[Any], bool],
    timeout: float,
    interval: float,
    time_source: Callable[[], float] = time.monotonic,
    sleep_func: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> PollResult:
    """
    Evaluate ``expression`` until ``accept`` approves its value or ``timeout``
    seconds pass.

    The expression is always evaluated at least once. An attempt that raises,
    or an awaitable one still pending at the deadline, counts as unmet and
    polling continues; the error is kept in the result so
    the caller can report it. Between attempts the loop sleeps for
    ``interval`` seconds, yielding to the event loop.
    """
    deadline = time_source() + timeout
    attempts = 0
    value = None
    error = None

    while True:
        attempts += 1
        try:
            # An async expression may not outlive the deadline.
            async with asyncio.timeout(max(deadline - time_source(), 0)):
                value = await evaluate(expression)
        except Exception as e:
            error = e
            logger.debug(f"Polling attempt {attempts} raised {e!r}")
        else:
            error = None
            if accept(value):
                return PollResult(True, value, None, attempts)

        if time_source() >= deadline:
            logger.debug(f"Polling gave up after {attempts} attempts")
            return PollResult(False, value, error, attempts)

        await sleep_func(interval)
