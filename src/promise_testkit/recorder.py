"""Failure records and the recorder that collects them during a test."""

import inspect
import logging
import sys
from dataclasses import dataclass
from enum import Enum, auto
from typing import Callable, List, Optional

import logfire

from .errors import ExpectationFailed

logger = logging.getLogger(__name__)

failures_counter = logfire.metric_counter("expectations.failures")


@dataclass(frozen=True)
class SourceLocation:
    """File and line a failure should be attributed to."""

    file: str
    line: int

    def __str__(self):
        return f"{self.file}:{self.line}"

    @classmethod
    def caller(cls, depth: int = 1) -> "SourceLocation":
        """Location of the frame ``depth`` levels above the function calling this."""
        frame = sys._getframe(depth + 1)
        return cls(frame.f_code.co_filename, frame.f_lineno)

    @classmethod
    def of(cls, func: Callable) -> "SourceLocation":
        """Location where ``func`` is defined."""
        code = inspect.unwrap(func).__code__
        return cls(code.co_filename, code.co_firstlineno)


class FailureKind(Enum):
    """Channel a failure was reported through."""

    EXPECTATION = auto()
    TEST = auto()


@dataclass(frozen=True)
class Failure:
    kind: FailureKind
    message: str
    location: SourceLocation
    error: Optional[BaseException] = None

    def __str__(self):
        return f"{self.location}: {self.message}"


class FailureRecorder:
    """
    Collects failures without interrupting the test that produced them.

    Helpers record into this instead of raising, so an await chain keeps
    running after a failed expectation. Whoever owns the recorder (usually the
    pytest plugin) calls ``raise_if_failed`` once the test is over.
    """

    def __init__(self):
        self.failures: List[Failure] = []

    def record(
        self,
        kind: FailureKind,
        message: str,
        location: SourceLocation,
        error: Optional[BaseException] = None,
    ) -> Failure:
        failure = Failure(kind, message, location, error)
        self.failures.append(failure)
        failures_counter.add(1, {"kind": kind.name})
        logger.warning(f"{kind.name.lower()} failure at {location}: {message}")
        return failure

    def of_kind(self, kind: FailureKind) -> List[Failure]:
        return [failure for failure in self.failures if failure.kind == kind]

    def clear(self):
        self.failures.clear()

    def raise_if_failed(self):
        """Raise ``ExpectationFailed`` listing every recorded failure, if any."""
        __tracebackhide__ = True
        if self.failures:
            raise ExpectationFailed(self.failures)
