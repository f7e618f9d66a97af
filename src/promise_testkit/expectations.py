"""Eventual expectations and awaitable wrappers for async tests."""

import asyncio
import logging
import time
from enum import Enum, auto
from typing import Any, Awaitable, Callable, Optional, TypeVar

import logfire

from .config import ExpectationSettings
from .errors import ExpectedError, error_matches
from .polling import evaluate, poll
from .recorder import FailureKind, FailureRecorder, SourceLocation
from .unhandled import UnhandledErrorHandler

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Outcome(Enum):
    """How a registered async test body finished."""

    COMPLETED = auto()
    REJECTED = auto()
    TIMED_OUT = auto()


class Expectations:
    """
    Per-test entry point for async expectations.

    Failures are recorded into ``recorder`` rather than raised, so a chain of
    awaits keeps going after one expectation is missed. Every public method
    captures the caller's source location when it is called (not when the
    returned awaitable first runs), so reports point at the test line.
    """

    def __init__(
        self,
        recorder: Optional[FailureRecorder] = None,
        settings: Optional[ExpectationSettings] = None,
        time_source: Callable[[], float] = time.monotonic,
        sleep_func: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.recorder = recorder if recorder is not None else FailureRecorder()
        self.settings = settings if settings is not None else ExpectationSettings()
        self._time_source = time_source
        self._sleep_func = sleep_func

    def fail(
        self,
        message: str,
        location: Optional[SourceLocation] = None,
        error: Optional[BaseException] = None,
    ):
        """Record a test failure without interrupting the test."""
        location = location or SourceLocation.caller()
        self.recorder.record(FailureKind.TEST, message, location, error)

    def verify(self):
        """Raise if anything was recorded so far."""
        __tracebackhide__ = True
        self.recorder.raise_if_failed()

    # --- Polling ---

    def wait_until(
        self,
        expression: Callable[[], Any],
        *,
        timeout: Optional[float] = None,
        location: Optional[SourceLocation] = None,
    ) -> Awaitable[bool]:
        """Poll ``expression`` until it returns True.

        Resolves to True on success. On timeout an expectation failure is
        recorded and the result is False.
        """
        location = location or SourceLocation.caller()
        return self._wait_until(expression, self._timeout(timeout), location)

    async def _wait_until(self, expression, timeout: float, location: SourceLocation):
        result = await self._poll(expression, lambda value: value is True, timeout)
        if result.satisfied:
            return True

        if result.error is not None:
            got = f"unexpected error thrown: <{result.error!r}>"
        else:
            got = f"<{result.value!r}>"
        self.recorder.record(
            FailureKind.EXPECTATION,
            f"expected to eventually be true, got {got}",
            location,
            result.error,
        )
        return False

    def wait_for(
        self,
        expression: Callable[[], Optional[T]],
        *,
        timeout: Optional[float] = None,
        location: Optional[SourceLocation] = None,
    ) -> Awaitable[Optional[T]]:
        """Poll ``expression`` until it returns something other than None.

        The value returned comes from evaluating ``expression`` once more after
        the wait succeeds, so the expression has to be idempotent.
        """
        location = location or SourceLocation.caller()
        return self._wait_for(expression, self._timeout(timeout), location)

    async def _wait_for(self, expression, timeout: float, location: SourceLocation):
        result = await self._poll(expression, lambda value: value is not None, timeout)
        if not result.satisfied:
            if result.error is not None:
                got = f"unexpected error thrown: <{result.error!r}>"
            else:
                got = "<None>"
            self.recorder.record(
                FailureKind.EXPECTATION,
                f"expected to eventually not be None, got {got}",
                location,
                result.error,
            )
            return None

        try:
            return await evaluate(expression)
        except Exception as e:
            self.recorder.record(
                FailureKind.TEST,
                f"Error thrown while retrieving value: {e!r}",
                location,
                e,
            )
            return None

    async def _poll(self, expression, accept, timeout: float):
        return await poll(
            expression,
            accept,
            timeout=timeout,
            interval=self.settings.poll_interval,
            time_source=self._time_source,
            sleep_func=self._sleep_func,
        )

    # --- Awaitable wrappers ---

    def to_succeed(
        self, awaitable: Awaitable[Any], *, location: Optional[SourceLocation] = None
    ) -> Awaitable[None]:
        """Wrap ``awaitable`` so that raising records a failure instead."""
        location = location or SourceLocation.caller()
        return self._to_succeed(awaitable, location)

    async def _to_succeed(self, awaitable, location: SourceLocation):
        try:
            await awaitable
        except Exception as e:
            self.recorder.record(
                FailureKind.TEST,
                f"Expected to succeed, but failed with {e!r}",
                location,
                e,
            )

    def to_fail(
        self,
        awaitable: Awaitable[Any],
        error: Optional[ExpectedError] = None,
        *,
        location: Optional[SourceLocation] = None,
    ) -> Awaitable[None]:
        """Wrap ``awaitable`` and expect it to raise.

        With ``error`` given (an exception class or instance) the raised error
        must also match it; see ``error_matches``.
        """
        location = location or SourceLocation.caller()
        return self._to_fail(awaitable, error, location)

    async def _to_fail(self, awaitable, expected, location: SourceLocation):
        try:
            await awaitable
        except Exception as e:
            if expected is None:
                # Anything raised here is an error; nothing more to check.
                return
            if not error_matches(e, expected):
                self.recorder.record(
                    FailureKind.EXPECTATION,
                    f"expected to throw error <{expected!r}>, got <{e!r}>",
                    location,
                    e,
                )
            return

        if expected is None:
            message = "Expected to fail, but succeeded"
        else:
            message = f"Expected to fail with error {expected!r}, but succeeded"
        self.recorder.record(FailureKind.TEST, message, location)

    # --- Unhandled errors ---

    def catch_unhandled_errors(
        self,
        location: Optional[SourceLocation] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> UnhandledErrorHandler:
        """Record exceptions nobody retrieved while the returned context is active."""
        location = location or SourceLocation.caller()
        return UnhandledErrorHandler(self.recorder, location, loop)

    # --- Async test bodies ---

    def run(
        self,
        body: Callable[[], Awaitable[Any]],
        *,
        description: Optional[str] = None,
        timeout: Optional[float] = None,
        fail_on_error: Optional[bool] = None,
        location: Optional[SourceLocation] = None,
    ) -> Awaitable[Outcome]:
        """Run an async test body and wait for it to settle.

        The body's awaitable is scheduled as a task. If it raises and
        ``fail_on_error`` holds, a test failure carrying the error is
        recorded. If it does not settle within ``timeout`` an expectation
        failure is recorded; the task is left running.
        """
        location = location or SourceLocation.caller()
        if fail_on_error is None:
            fail_on_error = self.settings.fail_on_error
        if description is None:
            description = getattr(body, "__qualname__", repr(body))
        return self._run(body, description, self._timeout(timeout), fail_on_error, location)

    async def _run(
        self,
        body,
        description: str,
        timeout: float,
        fail_on_error: bool,
        location: SourceLocation,
    ) -> Outcome:
        done = asyncio.Event()
        outcome = Outcome.TIMED_OUT
        timed_out = False

        def on_settled(task: asyncio.Future):
            nonlocal outcome
            if task.cancelled():
                error = asyncio.CancelledError()
            else:
                error = task.exception()

            if timed_out:
                logger.debug(f"Async test {description!r} settled after timing out: {error!r}")
            elif error is None:
                outcome = Outcome.COMPLETED
            else:
                outcome = Outcome.REJECTED
                logger.info(f"Async test {description!r} raised {error!r}")
                if fail_on_error:
                    self.recorder.record(
                        FailureKind.TEST,
                        f"Promise failed with error {error!r}",
                        location,
                        error,
                    )
            done.set()

        with self.catch_unhandled_errors(location):
            with logfire.span("async test {description}", description=description):
                task = asyncio.ensure_future(body())
                task.add_done_callback(on_settled)
                if not await self._wait_until(done.is_set, timeout, location):
                    timed_out = True
                    logger.warning(
                        f"Async test {description!r} still running after {timeout}s"
                    )

        return outcome

    def _timeout(self, timeout: Optional[float]) -> float:
        return self.settings.timeout if timeout is None else timeout
