"""Unit tests for utils.backoff (policy delays and retry loop)."""

import pytest

from config import RetrySettings
from errors import ContractViolationError, ProviderError
from utils.backoff import BackoffPolicy, run_with_retry


def test_policy_delays_grow_by_factor():
    """delays() yields attempts - 1 waits, multiplied by factor each time."""
    assert list(BackoffPolicy(attempts=4, delay=1.0, factor=2.0).delays()) == [1.0, 2.0, 4.0]
    assert list(BackoffPolicy(attempts=1, delay=1.0, factor=2.0).delays()) == []


def test_policy_from_settings():
    """from_settings copies attempts, delay and factor from RetrySettings."""
    policy = BackoffPolicy.from_settings(RetrySettings(attempts=5, delay=0.5, factor=3))
    assert policy == BackoffPolicy(attempts=5, delay=0.5, factor=3.0)


def test_run_with_retry_succeeds_after_transient_failures():
    """ProviderError is retried; the eventual result is returned and sleeps follow the policy."""
    calls = []
    sleeps = []

    def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise ProviderError("quota")
        return "ok"

    result = run_with_retry(flaky, BackoffPolicy(attempts=3, delay=1.0, factor=2.0), sleep=sleeps.append)
    assert result == "ok"
    assert len(calls) == 3
    assert sleeps == [1.0, 2.0]


def test_run_with_retry_reraises_last_provider_error():
    """After the last attempt the final ProviderError propagates unchanged."""
    errors = [ProviderError("first"), ProviderError("second")]
    sleeps = []

    def always_fails():
        raise errors.pop(0)

    with pytest.raises(ProviderError) as exc_info:
        run_with_retry(always_fails, BackoffPolicy(attempts=2, delay=0.1), sleep=sleeps.append)
    assert str(exc_info.value) == "second"
    assert sleeps == [0.1]


def test_run_with_retry_does_not_retry_contract_violation():
    """ContractViolationError is raised on the first attempt without sleeping."""
    calls = []
    sleeps = []

    def bad():
        calls.append(1)
        raise ContractViolationError("not a list")

    with pytest.raises(ContractViolationError):
        run_with_retry(bad, BackoffPolicy(attempts=5), sleep=sleeps.append)
    assert calls == [1]
    assert sleeps == []


def test_run_with_retry_honors_retry_after_hint():
    """A provider retry_after hint raises the wait to at least that many seconds."""
    sleeps = []
    outcomes = [ProviderError("429", retry_after=30), "done"]

    def fn():
        outcome = outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    assert run_with_retry(fn, BackoffPolicy(attempts=2, delay=1.0), sleep=sleeps.append) == "done"
    assert sleeps == [30]
