"""
Session Registry.

Owns one exclusive automation session per worker, keyed by worker identity.
Creates, validates, and tears down sessions; never hands a session to a
worker other than its owner.
"""

import threading
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from loguru import logger

from webharness.executor.errors import SessionInitError, SessionNotFoundError
from webharness.executor.types import WorkerId


@runtime_checkable
class Driver(Protocol):
    """Automation backend capability. The harness only ever calls these four operations."""

    def open(self) -> Any:
        ...

    def close(self, handle: Any) -> None:
        ...

    def screenshot(self, handle: Any) -> bytes:
        ...

    def is_alive(self, handle: Any) -> bool:
        ...


class Session:
    """
    Exclusive automation handle owned by one worker.

    Wraps the raw driver handle so callers never talk to the driver with a
    handle they do not own.
    """

    def __init__(self, owner: WorkerId, driver: Driver, handle: Any) -> None:
        self.owner = owner
        self.opened_at = datetime.now()
        self._driver = driver
        self._handle = handle
        self._closed = False

    @property
    def handle(self) -> Any:
        return self._handle

    @property
    def closed(self) -> bool:
        return self._closed

    def is_alive(self) -> bool:
        """Round-trip liveness probe; a closed session is never alive."""
        if self._closed:
            return False
        return bool(self._driver.is_alive(self._handle))

    def screenshot(self) -> bytes:
        if self._closed:
            raise RuntimeError(f"Session for worker {self.owner} is closed")
        return self._driver.screenshot(self._handle)

    def close(self) -> None:
        """Close the underlying handle. Calling twice is a no-op."""
        if self._closed:
            return
        self._closed = True
        self._driver.close(self._handle)

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"Session(owner={self.owner!r}, {state})"


# Placeholder held in the registry while a driver is starting
_PENDING = object()


class SessionRegistry:
    """
    Per-worker session registry.

    Thread-safe implementation using threading.Lock for synchronization. The
    lock only guards the worker map; driver calls run outside it so a slow
    browser start on one worker never blocks the others.
    """

    def __init__(self, driver: Driver) -> None:
        """
        Initialize the session registry.

        Args:
            driver: Automation backend used to open sessions.
        """
        self._driver = driver
        self._sessions: Dict[WorkerId, Any] = {}
        self._lock = threading.Lock()

    def acquire(self, worker_id: WorkerId) -> Session:
        """
        Open and validate a new session for a worker.

        Args:
            worker_id: The worker that will own the session.

        Returns:
            The validated Session.

        Raises:
            SessionInitError: If the worker already holds a session, the driver
                cannot start, or the new session fails its liveness probe.
        """
        with self._lock:
            if worker_id in self._sessions:
                raise SessionInitError(
                    worker_id,
                    "a live session already exists; release it before acquiring another",
                )
            self._sessions[worker_id] = _PENDING

        session: Optional[Session] = None
        try:
            try:
                handle = self._driver.open()
            except Exception as e:
                raise SessionInitError(worker_id, f"driver failed to start: {e}", cause=e)

            session = Session(worker_id, self._driver, handle)

            try:
                alive = session.is_alive()
            except Exception as e:
                raise SessionInitError(worker_id, f"validation call failed: {e}", cause=e)
            if not alive:
                raise SessionInitError(worker_id, "session did not respond to validation")

        except SessionInitError:
            if session is not None:
                self._close_quietly(session)
            with self._lock:
                self._sessions.pop(worker_id, None)
            raise

        with self._lock:
            self._sessions[worker_id] = session

        logger.info(f"Session opened for worker {worker_id}")
        return session

    def current(self, worker_id: WorkerId) -> Session:
        """
        Get the live session bound to a worker.

        Raises:
            SessionNotFoundError: If the worker has no live session.
        """
        with self._lock:
            session = self._sessions.get(worker_id)
        if session is None or session is _PENDING:
            raise SessionNotFoundError(worker_id)
        return session

    def has_session(self, worker_id: WorkerId) -> bool:
        with self._lock:
            session = self._sessions.get(worker_id)
        return session is not None and session is not _PENDING

    def release(self, worker_id: WorkerId) -> None:
        """
        Close and forget the worker's session.

        Idempotent. Close errors are logged, never raised, so teardown cannot
        mask the original test outcome.
        """
        with self._lock:
            session = self._sessions.get(worker_id)
            if session is None or session is _PENDING:
                return
            del self._sessions[worker_id]

        self._close_quietly(session)
        logger.info(f"Session released for worker {worker_id}")

    def active_workers(self) -> List[WorkerId]:
        """Get the workers currently holding a live session."""
        with self._lock:
            return [w for w, s in self._sessions.items() if s is not _PENDING]

    def close_all(self) -> None:
        """Release every remaining session. Used at suite shutdown."""
        for worker_id in self.active_workers():
            logger.warning(f"Session for worker {worker_id} still open at shutdown")
            self.release(worker_id)

    def _close_quietly(self, session: Session) -> None:
        try:
            session.close()
        except Exception as e:
            logger.error(f"Failed to close session for worker {session.owner}: {e}")

    def __len__(self) -> int:
        return len(self.active_workers())
