"""
Unit tests for RetryPolicy

Tests the attempt bound, backoff window and error classification rules.
"""

import asyncio

import pytest

from docvault.application.retry_policy import RetryPolicy
from docvault.domain.errors import (
    FileValidationError,
    StorageErrorKind,
    StorageNotFoundError,
    StorageOperationError,
)
from tests.fixtures.fakes import make_retry_policy


def _flaky(failures, error_factory=lambda: ConnectionError("reset"), result="ok"):
    """Coroutine factory failing `failures` times before succeeding."""
    calls = {"count": 0}

    async def func():
        calls["count"] += 1
        if calls["count"] <= failures:
            raise error_factory()
        return result

    return func, calls


def _classify(error):
    if isinstance(error, KeyError):
        return StorageErrorKind.NOT_FOUND
    if isinstance(error, ConnectionError):
        return StorageErrorKind.IO_ERROR
    return StorageErrorKind.UNKNOWN


class TestRetryBound:
    """Test that max_attempts counts every attempt."""

    @pytest.mark.parametrize("max_attempts", [1, 2, 3, 5])
    def test_n_minus_one_failures_then_success_makes_n_attempts(self, max_attempts):
        policy = make_retry_policy(max_attempts)
        func, calls = _flaky(max_attempts - 1)

        result = asyncio.run(policy.run(func, classify=_classify))

        assert result == "ok"
        assert calls["count"] == max_attempts
        assert len(policy.delays) == max_attempts - 1

    @pytest.mark.parametrize("max_attempts", [1, 3])
    def test_n_failures_raise_with_attempt_count(self, max_attempts):
        policy = make_retry_policy(max_attempts)
        func, calls = _flaky(max_attempts)

        with pytest.raises(StorageOperationError) as exc_info:
            asyncio.run(policy.run(func, classify=_classify, operation="upload", backend="aws",
                                   correlation_id="cid"))

        error = exc_info.value
        assert calls["count"] == max_attempts
        assert error.attempts == max_attempts
        assert error.kind == StorageErrorKind.IO_ERROR
        assert error.operation == "upload"
        assert error.backend == "aws"
        assert error.correlation_id == "cid"
        assert isinstance(error.original_error, ConnectionError)

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)


class TestClassification:
    """Test which errors are retried."""

    def test_not_found_is_raised_immediately(self):
        policy = make_retry_policy(3)
        func, calls = _flaky(3, lambda: KeyError("missing"))

        with pytest.raises(StorageNotFoundError) as exc_info:
            asyncio.run(policy.run(func, classify=_classify))

        assert calls["count"] == 1
        assert exc_info.value.kind == StorageErrorKind.NOT_FOUND

    def test_unknown_errors_are_not_retried(self):
        policy = make_retry_policy(3)
        func, calls = _flaky(3, lambda: RuntimeError("bad credentials"))

        with pytest.raises(StorageOperationError) as exc_info:
            asyncio.run(policy.run(func, classify=_classify))

        assert calls["count"] == 1
        assert exc_info.value.kind == StorageErrorKind.UNKNOWN
        assert not exc_info.value.transient

    def test_domain_errors_propagate_untouched(self):
        policy = make_retry_policy(3)
        func, calls = _flaky(3, lambda: FileValidationError("File already exists"))

        with pytest.raises(FileValidationError):
            asyncio.run(policy.run(func, classify=_classify))

        assert calls["count"] == 1

    def test_default_classifier_treats_errors_as_io(self):
        policy = make_retry_policy(2)
        func, calls = _flaky(1, lambda: ValueError("smtp hiccup"))

        assert asyncio.run(policy.run(func)) == "ok"
        assert calls["count"] == 2


class TestBackoff:
    """Test the exponential backoff window."""

    def test_backoff_doubles_and_caps(self):
        policy = RetryPolicy(max_attempts=5, min_backoff=1.0, max_backoff=5.0, rng=lambda: 1.0)

        assert [policy.backoff(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 5.0]

    @pytest.mark.parametrize("attempt", [1, 2, 3, 6])
    def test_jitter_stays_in_upper_half(self, attempt):
        low = RetryPolicy(min_backoff=1.0, max_backoff=5.0, rng=lambda: 0.0)
        high = RetryPolicy(min_backoff=1.0, max_backoff=5.0, rng=lambda: 1.0)

        delay = high.backoff(attempt)
        assert low.backoff(attempt) == pytest.approx(delay / 2)

    def test_sleeps_follow_the_backoff_schedule(self, caplog):
        policy = make_retry_policy(3)
        func, _ = _flaky(2)

        with caplog.at_level("WARNING", logger="docvault.application.retry_policy"):
            asyncio.run(policy.run(func, classify=_classify, operation="upload", backend="aws",
                                   correlation_id="cid"))

        assert policy.delays == [policy.backoff(1), policy.backoff(2)] == [0.75, 1.5]
        assert "[cid] upload on aws failed with io_error (attempt 1/3), retrying in 0.75s" in caplog.text

    def test_single_attempt_keeps_backoff(self):
        policy = RetryPolicy(max_attempts=4, min_backoff=0.5, max_backoff=2.0)
        single = policy.single_attempt()

        assert single.max_attempts == 1
        assert single.min_backoff == 0.5
        assert single.max_backoff == 2.0
