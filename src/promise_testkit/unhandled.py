"""Routes exceptions nobody retrieved from a task or future to test failures."""

import asyncio
import logging
from typing import Any, Callable, Dict, Optional

from .recorder import FailureKind, FailureRecorder, SourceLocation

logger = logging.getLogger(__name__)

ExceptionHandler = Callable[[asyncio.AbstractEventLoop, Dict[str, Any]], None]


class UnhandledErrorHandler:
    """
    Context manager that owns the event loop's exception handler.

    While active, every exception the loop reports (typically "Task exception
    was never retrieved") is recorded as a test failure attributed to
    ``location``. Contexts without an exception go to the handler that was
    installed before. The previous handler is restored on exit, so nested
    handlers unwind in order.
    """

    def __init__(
        self,
        recorder: FailureRecorder,
        location: SourceLocation,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self._recorder = recorder
        self._location = location
        self._loop = loop
        self._previous: Optional[ExceptionHandler] = None

    def __enter__(self) -> "UnhandledErrorHandler":
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        self._previous = self._loop.get_exception_handler()
        self._loop.set_exception_handler(self._handle)
        return self

    def __exit__(self, exc_type, exc, tb):
        self._loop.set_exception_handler(self._previous)
        self._previous = None
        return False

    def _handle(self, loop: asyncio.AbstractEventLoop, context: Dict[str, Any]):
        error = context.get("exception")
        if error is None:
            self._delegate(loop, context)
            return

        logger.warning(f"Unhandled error reported by event loop: {context.get('message')}")
        self._recorder.record(
            FailureKind.TEST,
            f"Unhandled error returned from promise: {error!r}",
            self._location,
            error,
        )

    def _delegate(self, loop: asyncio.AbstractEventLoop, context: Dict[str, Any]):
        if self._previous is not None:
            self._previous(loop, context)
        else:
            loop.default_exception_handler(context)
