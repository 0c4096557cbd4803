"""
Retry Policy.

Decides whether a failed test identity gets another full lifecycle pass.
"""

import threading
from typing import Dict

from loguru import logger

DEFAULT_MAX_ATTEMPTS = 2


class RetryPolicy:
    """
    Bounded retry counter keyed by test identity.

    The counter is shared by every parallel instance of the same identity and
    is never shared between identities. reset() clears it between suite runs.
    """

    def __init__(self, max_attempts: int = DEFAULT_MAX_ATTEMPTS) -> None:
        if max_attempts < 0:
            raise ValueError(f"max_attempts must be non-negative, got {max_attempts}")
        self.max_attempts = max_attempts
        self._attempts: Dict[str, int] = {}
        self._lock = threading.Lock()

    def should_retry(self, test_id: str, attempts_so_far: int) -> bool:
        """True iff attempts_so_far < max_attempts."""
        return attempts_so_far < self.max_attempts

    def attempts(self, test_id: str) -> int:
        """Retries claimed so far for an identity."""
        with self._lock:
            return self._attempts.get(test_id, 0)

    def claim_retry(self, test_id: str) -> bool:
        """
        Atomically check the bound and record one more retry.

        Returns:
            True if the caller may re-run the test, False once the bound is reached.
        """
        with self._lock:
            used = self._attempts.get(test_id, 0)
            if not self.should_retry(test_id, used):
                return False
            self._attempts[test_id] = used + 1

        logger.warning(f"Retrying test: {test_id} (attempt {used + 1}/{self.max_attempts})")
        return True

    def reset(self) -> None:
        with self._lock:
            self._attempts.clear()
