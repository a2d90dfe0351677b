"""Tests for the retry policy and state machine."""

import pytest

from debrepo.common.errors import FetchError, IntegrityViolation, NotFound, Unreachable
from debrepo.sources.retry import RetryPolicy, RetryState, is_retryable


class TestRetryPolicy:
    """Tests for RetryPolicy."""

    def test_exponential_delays(self):
        """Delays grow by the multiplier."""
        policy = RetryPolicy(max_retries=4, backoff=1.0, multiplier=2.0, max_backoff=60.0)
        assert [policy.delay_for(n) for n in range(1, 5)] == [1.0, 2.0, 4.0, 8.0]

    def test_delay_capped(self):
        """No delay exceeds max_backoff."""
        policy = RetryPolicy(max_retries=10, backoff=5.0, multiplier=3.0, max_backoff=20.0)
        assert policy.delay_for(5) == 20.0

    @pytest.mark.parametrize(
        "kwargs",
        [{"max_retries": -1}, {"backoff": -1.0}, {"multiplier": 0.5}],
    )
    def test_invalid_policy(self, kwargs):
        """Nonsensical settings are rejected."""
        with pytest.raises(ValueError):
            RetryPolicy(**kwargs)


class TestRetryState:
    """Tests for per-task retry bookkeeping."""

    def test_three_failures_then_budget_spent(self):
        """With max_retries=3 the fourth transient failure ends the task."""
        state = RetryState(RetryPolicy(max_retries=3, backoff=1.0))
        delays = []
        for _ in range(4):
            state.start_attempt()
            delays.append(state.record_failure(FetchError("HTTP 503")))

        assert delays == [1.0, 2.0, 4.0, None]
        assert state.retries == 3
        assert state.exhausted

    def test_success_after_three_retries(self):
        """Three transient failures leave the fourth attempt allowed."""
        state = RetryState(RetryPolicy(max_retries=3))
        for _ in range(3):
            state.start_attempt()
            assert state.record_failure(FetchError("timeout")) is not None
        state.start_attempt()

        assert state.attempts == 4
        assert state.retries == 3
        assert state.remaining == 0

    def test_terminal_error_not_retried(self):
        """Non-transient failures end the task immediately."""
        state = RetryState(RetryPolicy(max_retries=3))
        state.start_attempt()

        assert state.record_failure(NotFound("HTTP 404")) is None
        assert state.delays == []
        assert not state.exhausted

    def test_zero_retries(self):
        """A zero budget allows a single attempt."""
        state = RetryPolicy(max_retries=0).new_state()
        state.start_attempt()
        assert state.record_failure(FetchError("reset")) is None


class TestIsRetryable:
    """Tests for error classification."""

    def test_classification(self):
        """Only transient errors are retried."""
        assert is_retryable(FetchError("503"))
        assert is_retryable(Unreachable("gave up"))
        assert not is_retryable(NotFound("404"))
        assert not is_retryable(IntegrityViolation("bad sum"))
        assert not is_retryable(RuntimeError("bug"))
