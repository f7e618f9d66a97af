"""Decorator that turns an async body into a pytest test with a settle timeout."""

import functools
import inspect
from typing import Any, Awaitable, Callable, Optional

import pytest

from .recorder import SourceLocation

EXPECTATIONS_FIXTURE = "expectations"


def async_it(
    description: Optional[str] = None,
    *,
    timeout: Optional[float] = None,
    fail_on_error: Optional[bool] = None,
):
    """Register an async test body.

    The body runs through ``Expectations.run``: it is failed if it raises
    (unless ``fail_on_error`` is False) or if it has not settled after
    ``timeout`` seconds. Defaults come from ``ExpectationSettings``.

    Args:
        description: Name used in logs and spans; defaults to the docstring
        timeout: Seconds the body may take to settle
        fail_on_error: Whether the body raising fails the test

    Usage:
        @async_it("loads the window list", timeout=2.0)
        async def test_windows(app, expectations):
            await expectations.to_succeed(app.refresh())
    """

    def decorator(body: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
        location = SourceLocation.of(body)
        signature = inspect.signature(body)
        body_wants_expectations = EXPECTATIONS_FIXTURE in signature.parameters
        text = description or _first_line(body.__doc__) or body.__name__

        @functools.wraps(body)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            if body_wants_expectations:
                expectations = kwargs[EXPECTATIONS_FIXTURE]
            else:
                expectations = kwargs.pop(EXPECTATIONS_FIXTURE)
            await expectations.run(
                lambda: body(*args, **kwargs),
                description=text,
                timeout=timeout,
                fail_on_error=fail_on_error,
                location=location,
            )

        wrapper.__signature__ = _with_expectations(signature)
        wrapper.description = text
        return pytest.mark.asyncio(wrapper)

    return decorator


def _with_expectations(signature: inspect.Signature) -> inspect.Signature:
    if EXPECTATIONS_FIXTURE in signature.parameters:
        return signature

    parameters = list(signature.parameters.values())
    extra = inspect.Parameter(EXPECTATIONS_FIXTURE, inspect.Parameter.KEYWORD_ONLY)
    # Keyword-only parameters must come before **kwargs.
    if parameters and parameters[-1].kind == inspect.Parameter.VAR_KEYWORD:
        parameters.insert(len(parameters) - 1, extra)
    else:
        parameters.append(extra)
    return signature.replace(parameters=parameters)


def _first_line(doc: Optional[str]) -> Optional[str]:
    if not doc:
        return None
    return doc.strip().splitlines()[0]
