"""Unit tests for RetryPolicy."""

from __future__ import annotations

import threading

import pytest

from webharness.executor.retry import DEFAULT_MAX_ATTEMPTS, RetryPolicy


class TestShouldRetry:
    @pytest.mark.parametrize("attempts, expected", [(0, True), (1, True), (2, False), (3, False)])
    def test_bound(self, attempts, expected):
        assert RetryPolicy(2).should_retry("suite:test_a", attempts) is expected

    def test_default_bound(self):
        assert DEFAULT_MAX_ATTEMPTS == 2
        assert RetryPolicy().max_attempts == 2

    def test_zero_never_retries(self):
        policy = RetryPolicy(0)
        assert not policy.should_retry("a", 0)
        assert not policy.claim_retry("a")

    def test_negative_rejected(self):
        with pytest.raises(ValueError):
            RetryPolicy(-1)


class TestClaimRetry:
    def test_claims_until_bound(self):
        policy = RetryPolicy(2)

        assert policy.claim_retry("a")
        assert policy.claim_retry("a")
        assert not policy.claim_retry("a")
        assert policy.attempts("a") == 2

    def test_identities_are_independent(self):
        policy = RetryPolicy(1)

        assert policy.claim_retry("a")
        assert policy.claim_retry("b")
        assert not policy.claim_retry("a")

    def test_reset_clears_counters(self):
        policy = RetryPolicy(1)
        policy.claim_retry("a")

        policy.reset()

        assert policy.attempts("a") == 0
        assert policy.claim_retry("a")

    def test_concurrent_claims_respect_bound(self):
        """Parallel repeats of one identity share the counter; exactly max_attempts claims win."""
        policy = RetryPolicy(2)
        barrier = threading.Barrier(16)
        wins: list[bool] = []
        lock = threading.Lock()

        def claim() -> None:
            barrier.wait()
            won = policy.claim_retry("shared")
            with lock:
                wins.append(won)

        threads = [threading.Thread(target=claim) for _ in range(16)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert wins.count(True) == 2
        assert policy.attempts("shared") == 2
