"""
Worker Identity and Test Data Isolation.

Derives the identity used as the join key for all per-worker state, and
provides an isolated data scope for each test execution so that tests running
on different worker threads do not interfere with each other.
"""

import contextvars
import itertools
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterator, Optional

from loguru import logger

from webharness.executor.types import WorkerId


# =============================================================================
# 1. Worker identity
# =============================================================================

_worker_override: contextvars.ContextVar[Optional[WorkerId]] = \
    contextvars.ContextVar("worker_override", default=None)


def current_worker_id() -> WorkerId:
    """
    Get the identity of the calling worker.

    Returns the identity pinned with bind_worker() if any, otherwise
    "<thread name>#<thread ident>". Only one live thread holds an ident at a
    time, so two concurrently running workers never share an identity.
    """
    pinned = _worker_override.get()
    if pinned is not None:
        return pinned
    thread = threading.current_thread()
    return f"{thread.name}#{threading.get_ident()}"


@contextmanager
def bind_worker(worker_id: WorkerId) -> Iterator[WorkerId]:
    """Pin an explicit worker identity for the current context."""
    token = _worker_override.set(worker_id)
    try:
        yield worker_id
    finally:
        _worker_override.reset(token)


# =============================================================================
# 2. Per-test data scope
# =============================================================================

@dataclass
class ExecutionScope:
    """
    Scratch data owned by one test execution.

    A fresh scope is opened for every execution, retries included, so values
    a test stores here never leak into another test or another attempt.
    """
    worker_id: Optional[WorkerId] = None
    test_name: Optional[str] = None
    token: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    values: Dict[str, Any] = field(default_factory=dict)
    opened_at: datetime = field(default_factory=datetime.now)
    _ids: Iterator[int] = field(default_factory=lambda: itertools.count(1), repr=False)

    def get(self, key: str, default: Any = None) -> Any:
        return self.values.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self.values[key] = value

    def unique_id(self, prefix: str = "") -> str:
        """
        Build an identifier no other execution will produce, for test data
        such as user names or order references: "<prefix>_<token>_<n>".
        """
        ident = f"{self.token}_{next(self._ids)}"
        return f"{prefix}_{ident}" if prefix else ident


_current_scope: contextvars.ContextVar[Optional[ExecutionScope]] = \
    contextvars.ContextVar("current_scope", default=None)


def get_current_scope() -> Optional[ExecutionScope]:
    """Scope of the test running in this context, or None outside a test."""
    return _current_scope.get()


@contextmanager
def isolated_scope(
    worker_id: Optional[WorkerId] = None,
    test_name: Optional[str] = None,
) -> Iterator[ExecutionScope]:
    """
    Open a fresh ExecutionScope for the duration of one test body.

    Example:
        with isolated_scope("worker_0#1", "test_login") as scope:
            scope.set("user", scope.unique_id("user"))
    """
    scope = ExecutionScope(worker_id=worker_id, test_name=test_name)
    token = _current_scope.set(scope)
    logger.debug(f"Opened data scope {scope.token} for {test_name}")
    try:
        yield scope
    finally:
        _current_scope.reset(token)
        logger.debug(f"Closed data scope {scope.token}")
