"""
Error definitions for the parallel execution harness.

Contains the exception classes raised by the session registry, report tree,
artifact capture and suite controller, plus the skip signal used by test bodies.
"""

from typing import List, Optional


class HarnessError(Exception):
    """Base exception for harness errors."""
    pass


class SessionInitError(HarnessError):
    """Raised when an automation session cannot be started or validated."""

    def __init__(self, worker_id: str, message: str, cause: Exception = None):
        self.worker_id = worker_id
        self.cause = cause
        super().__init__(f"Session initialization failed for worker {worker_id}: {message}")


class SessionNotFoundError(HarnessError):
    """Raised when a worker asks for a session it never acquired."""

    def __init__(self, worker_id: str):
        self.worker_id = worker_id
        super().__init__(f"No live session bound to worker: {worker_id}")


class CaptureError(HarnessError):
    """Raised when a diagnostic artifact cannot be captured or persisted."""

    def __init__(self, label: str, message: str, cause: Exception = None):
        self.label = label
        self.cause = cause
        super().__init__(f"Artifact capture '{label}' failed: {message}")


class ReportWriteError(HarnessError):
    """Raised when the report tree cannot be mutated."""
    pass


class NoActiveNodeError(ReportWriteError):
    """Raised when a worker has no report node bound."""

    def __init__(self, worker_id: str):
        self.worker_id = worker_id
        super().__init__(
            f"No active report node for worker {worker_id}. Create a node first"
        )


class ArchiveError(HarnessError):
    """Raised when the suite archive cannot be produced."""

    def __init__(self, path: str, message: str, cause: Exception = None):
        self.path = path
        self.cause = cause
        super().__init__(f"Archive {path} failed: {message}")


class SuiteInitError(HarnessError):
    """Raised when shared suite state (directories, report tree) cannot be prepared."""

    def __init__(self, message: str, cause: Optional[Exception] = None):
        self.cause = cause
        super().__init__(f"Suite initialization failed: {message}")


class WorkersStillActiveError(HarnessError):
    """Raised when the suite cannot finish because workers are still running."""

    def __init__(self, workers: List[str], timeout: Optional[float]):
        self.workers = workers
        self.timeout = timeout
        super().__init__(
            f"{len(workers)} worker(s) still active after {timeout}s: {', '.join(workers)}"
        )


class TestSkipped(Exception):
    """Raised by a test body to end the execution as skipped."""

    __test__ = False

    def __init__(self, reason: str = "Test was skipped"):
        self.reason = reason
        super().__init__(reason)
