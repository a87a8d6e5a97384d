"""
tests/test_retry.py — Timeout + Retry-Once Tests
=================================================
"""

from __future__ import annotations

import asyncio

import pytest
from sqlalchemy.exc import OperationalError

from conftest import run
from photoquest.database.engine import run_db, run_db_retrying
from photoquest.services.retry import with_retry


class Flaky:
    """Fails with *error* for the first *failures* calls."""

    def __init__(self, failures: int, error: BaseException) -> None:
        self.failures = failures
        self.error = error
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "ok"


class TestWithRetry:
    def test_success_first_time(self):
        flaky = Flaky(0, ConnectionError())
        assert run(with_retry(flaky, backoff=0)) == "ok"
        assert flaky.calls == 1

    def test_transient_retried_once(self):
        flaky = Flaky(1, ConnectionError("reset"))
        assert run(with_retry(flaky, backoff=0)) == "ok"
        assert flaky.calls == 2

    def test_gives_up_after_one_retry(self):
        flaky = Flaky(2, ConnectionError("reset"))
        with pytest.raises(ConnectionError):
            run(with_retry(flaky, backoff=0))
        assert flaky.calls == 2

    def test_non_transient_propagates_immediately(self):
        flaky = Flaky(1, ValueError("bad input"))
        with pytest.raises(ValueError):
            run(with_retry(flaky, backoff=0))
        assert flaky.calls == 1

    def test_timeout_is_transient(self):
        calls = []

        async def slow():
            calls.append(1)
            await asyncio.sleep(1)

        with pytest.raises(TimeoutError):
            run(with_retry(slow, timeout=0.01, backoff=0))
        assert len(calls) == 2


class TestRunDb:
    def test_runs_in_thread(self):
        assert run(run_db(lambda a, b=0: a + b, 2, b=3)) == 5

    def test_operational_error_retried(self):
        calls = []

        def query():
            calls.append(1)
            if len(calls) == 1:
                raise OperationalError("SELECT 1", {}, Exception("server closed the connection"))
            return 42

        assert run(run_db_retrying(query, timeout=5)) == 42
        assert len(calls) == 2
