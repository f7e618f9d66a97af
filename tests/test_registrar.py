"""Tests for running and registering async test bodies."""

import asyncio
import inspect

import pytest

from promise_testkit.errors import TestError
from promise_testkit.expectations import Outcome
from promise_testkit.recorder import FailureKind, FailureRecorder, SourceLocation
from promise_testkit.registrar import async_it
from tests.fakes import MockAsyncSleep, MockTime, create_test_expectations


@pytest.fixture
def mock_time():
    """Create a mock time source."""
    return MockTime(start_time=1000.0)


@pytest.fixture
def mock_sleep(mock_time):
    """Create a mock async sleep function."""
    return MockAsyncSleep(mock_time)


@pytest.fixture
def recorder():
    return FailureRecorder()


@pytest.fixture
def expect(mock_time, mock_sleep, recorder):
    return create_test_expectations(mock_time, mock_sleep, recorder)


async def succeed(value=None):
    await asyncio.sleep(0)
    return value


async def fail_with(error):
    await asyncio.sleep(0)
    raise error


# --- Expectations.run ---


@pytest.mark.asyncio
async def test_run_completes_when_body_succeeds(expect, recorder):
    outcome = await expect.run(lambda: succeed("done"))

    assert outcome == Outcome.COMPLETED
    assert recorder.failures == []


@pytest.mark.asyncio
async def test_run_records_rejection_when_failing_on_error(expect, recorder):
    line = inspect.currentframe().f_lineno + 1
    outcome = await expect.run(lambda: fail_with(TestError("boom")))

    assert outcome == Outcome.REJECTED
    assert len(recorder.failures) == 1
    failure = recorder.failures[0]
    assert failure.kind == FailureKind.TEST
    assert failure.message == "Promise failed with error TestError('boom')"
    assert failure.error == TestError("boom")
    assert failure.location.line == line


@pytest.mark.asyncio
async def test_run_ignores_rejection_when_not_failing_on_error(expect, recorder):
    outcome = await expect.run(lambda: fail_with(TestError("boom")), fail_on_error=False)

    assert outcome == Outcome.REJECTED
    assert recorder.failures == []


@pytest.mark.asyncio
async def test_run_uses_configured_failure_policy(mock_time, mock_sleep, recorder):
    expect = create_test_expectations(mock_time, mock_sleep, recorder, fail_on_error=False)

    assert await expect.run(lambda: fail_with(TestError("boom"))) == Outcome.REJECTED
    assert recorder.failures == []


@pytest.mark.asyncio
async def test_run_times_out_when_body_never_settles(expect, recorder, mock_sleep):
    never = asyncio.get_running_loop().create_future()

    async def body():
        await never

    outcome = await expect.run(body, timeout=0.5)

    assert outcome == Outcome.TIMED_OUT
    assert len(recorder.failures) == 1
    assert recorder.failures[0].kind == FailureKind.EXPECTATION
    assert recorder.failures[0].message == "expected to eventually be true, got <False>"
    assert mock_sleep.get_total_sleep_time() == pytest.approx(0.5, abs=0.011)
    never.cancel()


@pytest.mark.asyncio
async def test_run_uses_configured_timeout(mock_time, mock_sleep, recorder):
    expect = create_test_expectations(mock_time, mock_sleep, recorder, timeout=0.25)
    never = asyncio.get_running_loop().create_future()

    async def body():
        await never

    assert await expect.run(body) == Outcome.TIMED_OUT
    assert mock_sleep.get_total_sleep_time() == pytest.approx(0.25, abs=0.011)
    never.cancel()


@pytest.mark.asyncio
async def test_body_settling_after_timeout_is_not_reported(expect, recorder):
    gate = asyncio.get_running_loop().create_future()

    async def body():
        await gate

    assert await expect.run(body, timeout=0.1) == Outcome.TIMED_OUT

    # The body keeps running after the timeout; its late failure is ignored.
    gate.set_exception(TestError("late"))
    for _ in range(3):
        await asyncio.sleep(0)

    assert len(recorder.failures) == 1
    assert recorder.failures[0].kind == FailureKind.EXPECTATION


@pytest.mark.asyncio
async def test_run_treats_cancelled_body_as_rejection(expect, recorder):
    async def body():
        raise asyncio.CancelledError()

    assert await expect.run(body) == Outcome.REJECTED
    assert len(recorder.failures) == 1
    assert recorder.failures[0].message.startswith("Promise failed with error CancelledError")


@pytest.mark.asyncio
async def test_run_routes_unhandled_errors_to_its_location(expect, recorder):
    location = SourceLocation("test_windows.py", 40)
    loop = asyncio.get_running_loop()
    original = loop.get_exception_handler()

    async def body():
        loop.call_exception_handler({"message": "lost", "exception": TestError("lost")})

    assert await expect.run(body, location=location) == Outcome.COMPLETED

    assert [str(failure) for failure in recorder.failures] == [
        "test_windows.py:40: Unhandled error returned from promise: TestError('lost')"
    ]
    assert loop.get_exception_handler() is original


@pytest.mark.asyncio
async def test_run_requires_body_to_return_awaitable(expect):
    with pytest.raises(TypeError):
        await expect.run(lambda: 42)


# --- async_it ---


@async_it("runs a body that succeeds")
async def test_async_it_runs_body(expectations):
    await expectations.to_succeed(succeed())
    assert await expectations.wait_until(lambda: True)


@async_it("passes when a rejection is suppressed", fail_on_error=False)
async def test_async_it_ignores_rejection_when_suppressed():
    raise TestError("ignored")


@async_it(timeout=2.0)
async def test_async_it_passes_other_fixtures(tmp_path, expectations):
    """Body fixtures are still injected."""
    target = tmp_path / "ready"

    async def create_later():
        await asyncio.sleep(0.01)
        target.write_text("ok")

    asyncio.ensure_future(create_later())
    assert await expectations.wait_for(lambda: target.read_text() if target.exists() else None) == "ok"


def test_async_it_requests_expectations_fixture():
    parameters = inspect.signature(test_async_it_ignores_rejection_when_suppressed).parameters

    assert list(parameters) == ["expectations"]
    assert parameters["expectations"].kind == inspect.Parameter.KEYWORD_ONLY


def test_async_it_keeps_body_fixtures():
    parameters = inspect.signature(test_async_it_passes_other_fixtures).parameters

    assert list(parameters) == ["tmp_path", "expectations"]


def test_async_it_description_defaults_to_docstring():
    assert test_async_it_runs_body.description == "runs a body that succeeds"
    assert test_async_it_passes_other_fixtures.description == "Body fixtures are still injected."


def test_async_it_marks_test_for_asyncio():
    marks = [mark.name for mark in test_async_it_runs_body.pytestmark]
    assert "asyncio" in marks
