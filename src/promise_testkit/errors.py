"""Error types shared by the expectation helpers."""

from typing import Union


class TestError(Exception):
    """Raise from a test to abort execution, e.g. in the middle of an await chain.

    Two instances compare equal when their descriptions match, so a
    ``TestError`` can be passed as the expected error to ``to_fail``.
    """

    # Not a test class, despite the name.
    __test__ = False

    def __init__(self, description: str):
        super().__init__(description)
        self._description = description

    @property
    def description(self) -> str:
        return self._description

    def __eq__(self, other):
        if not isinstance(other, TestError):
            return NotImplemented
        return self._description == other._description

    def __hash__(self):
        return hash((TestError, self._description))

    def __str__(self):
        return self._description

    def __repr__(self):
        return f"TestError({self._description!r})"


class ExpectationFailed(AssertionError):
    """Raised when a test finishes with recorded failures."""

    def __init__(self, failures):
        self.failures = list(failures)
        lines = [f"{len(self.failures)} expectation(s) failed:"]
        lines.extend(f"  {failure}" for failure in self.failures)
        super().__init__("\n".join(lines))


ExpectedError = Union[BaseException, type]


def error_matches(actual: BaseException, expected: ExpectedError) -> bool:
    """Check a captured error against an expected error class or instance.

    A class matches any instance of it. An instance matches errors of exactly
    the same type that compare equal or carry the same ``args``.
    """
    if isinstance(expected, type):
        return isinstance(actual, expected)
    if type(actual) is not type(expected):
        return False
    return actual == expected or actual.args == expected.args
