"""Tests for the transient-failure retry policy."""

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from dineflow.errors import DependencyUnavailable, TableOccupied
from dineflow.storage.retry import backoff_delays, is_transient, retry_transient


def _locked():
    return OperationalError("UPDATE restaurant_tables ...", {}, Exception("database is locked"))


class TestRetryTransient:

    def test_succeeds_after_transient_failures(self):
        calls, slept = [], []

        @retry_transient(attempts=3, base_delay=0.1, max_delay=1.0, sleep=slept.append)
        def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise _locked()
            return "ok"

        assert flaky() == "ok"
        assert len(calls) == 3
        assert slept == [0.1, 0.2]

    def test_exhaustion_raises_dependency_unavailable(self):
        slept = []

        @retry_transient(attempts=3, base_delay=1, max_delay=10, sleep=slept.append)
        def always_locked():
            raise _locked()

        with pytest.raises(DependencyUnavailable) as exc_info:
            always_locked()
        assert exc_info.value.details["attempts"] == 3
        assert isinstance(exc_info.value.__cause__, OperationalError)
        assert slept == [1, 2]

    def test_domain_errors_are_not_retried(self):
        calls = []

        @retry_transient(attempts=5, sleep=lambda s: None)
        def occupied():
            calls.append(1)
            raise TableOccupied(7)

        with pytest.raises(TableOccupied):
            occupied()
        assert len(calls) == 1

    def test_integrity_errors_are_not_transient(self):
        error = IntegrityError("INSERT ...", {}, Exception("UNIQUE constraint failed"))
        assert is_transient(error) is False
        assert is_transient(_locked()) is True
        assert is_transient(ValueError("nope")) is False

    def test_bare_decorator(self):
        @retry_transient
        def plain():
            return 42

        assert plain() == 42
        assert plain.__name__ == "plain"


class TestBackoffDelays:

    def test_default_three_attempts(self):
        assert backoff_delays(3, 1, 4) == [1, 2]

    def test_capped_at_max_delay(self):
        assert backoff_delays(5, 1, 3) == [1, 2, 3, 3]

    def test_single_attempt_never_sleeps(self):
        assert backoff_delays(1, 1, 4) == []
