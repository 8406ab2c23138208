"""Retry policy tests: backoff schedule and which errors are retried."""

import os
import sys

# Ensure the backend package is importable
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import asyncio

import pytest

from idea_viability.errors import ConfigurationError, GenerationError, RetrievalError
from idea_viability.services.retry import RetryPolicy, run_with_retry


class _Flaky:
    """Raises the queued exceptions in order, then returns "done"."""

    def __init__(self, *errors):
        self.errors = list(errors)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return "done"


def _run(fn, policy, **kwargs):
    delays = []

    async def fake_sleep(seconds):
        delays.append(seconds)

    result = asyncio.run(run_with_retry(fn, policy, sleep=fake_sleep, **kwargs))
    return result, delays


def test_delay_schedule_is_capped():
    policy = RetryPolicy(max_attempts=5, initial_delay=1.0, factor=2.0, max_delay=3.0)
    assert [policy.delay_for(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 3.0, 3.0]


def test_invalid_policy_rejected():
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)


def test_succeeds_after_transient_failures():
    fn = _Flaky(RetrievalError("503"), RetrievalError("503"))
    result, delays = _run(fn, RetryPolicy(max_attempts=3, initial_delay=0.5))
    assert result == "done"
    assert fn.calls == 3
    assert delays == [0.5, 1.0]


def test_reraises_last_error_when_exhausted():
    fn = _Flaky(GenerationError("first"), GenerationError("second"))
    with pytest.raises(GenerationError, match="second"):
        _run(fn, RetryPolicy(max_attempts=2, initial_delay=0))
    assert fn.calls == 2


def test_configuration_error_never_retried():
    fn = _Flaky(ConfigurationError("no key"))
    with pytest.raises(ConfigurationError):
        _run(fn, RetryPolicy(max_attempts=5))
    assert fn.calls == 1


def test_errors_outside_retry_on_propagate_immediately():
    fn = _Flaky(ValueError("bad input"))
    with pytest.raises(ValueError):
        _run(fn, RetryPolicy(max_attempts=5), retry_on=(RetrievalError,))
    assert fn.calls == 1


def test_on_retry_callback_sees_attempt_numbers():
    seen = []
    fn = _Flaky(RetrievalError("a"), RetrievalError("b"))
    _run(fn, RetryPolicy(max_attempts=3, initial_delay=0), on_retry=lambda n, exc: seen.append((n, str(exc))))
    assert seen == [(1, "a"), (2, "b")]
