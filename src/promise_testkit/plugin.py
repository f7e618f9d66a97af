"""pytest plugin providing the ``expectations`` fixture.

Installing the package registers it through the ``pytest11`` entry point.
Without installing, enable it with ``-p promise_testkit.plugin`` or
``pytest_plugins = ["promise_testkit.plugin"]`` in a top-level conftest.
"""

import logging

import pytest

from .config import ExpectationSettings
from .errors import ExpectationFailed
from .expectations import Expectations
from .recorder import FailureRecorder

logger = logging.getLogger(__name__)

recorder_key = pytest.StashKey[FailureRecorder]()


@pytest.fixture
def expectation_settings() -> ExpectationSettings:
    """Settings for the current test, read from the environment."""
    return ExpectationSettings()


@pytest.fixture
def expectations(request, expectation_settings) -> Expectations:
    """Expectations whose recorded failures fail the current test when it ends."""
    recorder = FailureRecorder()
    request.node.stash[recorder_key] = recorder
    return Expectations(recorder=recorder, settings=expectation_settings)


@pytest.hookimpl(wrapper=True)
def pytest_runtest_call(item):
    recorder = item.stash.get(recorder_key, None)
    try:
        result = yield
    except Exception as e:
        # Failures recorded before the test raised are reported alongside it.
        if recorder is not None and recorder.failures:
            logger.debug(f"{item.nodeid} raised after {len(recorder.failures)} failure(s)")
            raise ExpectationFailed(recorder.failures) from e
        raise

    if recorder is not None and recorder.failures:
        logger.debug(f"{item.nodeid} finished with {len(recorder.failures)} failure(s)")
        recorder.raise_if_failed()
    return result
