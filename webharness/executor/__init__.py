"""
Parallel Execution Harness.

This module provides per-worker session management, a shared thread-safe report
tree, failure screenshot capture, bounded retries and suite-level archiving for
UI tests running in parallel.
"""

from webharness.executor.capture import (
    CHECKPOINT_PREFIX,
    FAILURE_PREFIX,
    SUCCESS_PREFIX,
    ArtifactCapture,
    sanitize_label,
)
from webharness.executor.errors import (
    ArchiveError,
    CaptureError,
    HarnessError,
    NoActiveNodeError,
    ReportWriteError,
    SessionInitError,
    SessionNotFoundError,
    SuiteInitError,
    WorkersStillActiveError,
    TestSkipped,
)
from webharness.executor.isolation import (
    ExecutionScope,
    bind_worker,
    current_worker_id,
    get_current_scope,
    isolated_scope,
)
from webharness.executor.lifecycle import LifecycleCoordinator, TestContext
from webharness.executor.report import ReportNode, ReportTree, SerializedReport
from webharness.executor.retry import RetryPolicy
from webharness.executor.runner import (
    ParallelRunner,
    RunResult,
    TestCase,
    TestSuite,
    clear_registered_tests,
    get_registered_tests,
    get_test_scope,
    run_registered_tests,
    test,
)
from webharness.executor.sessions import Driver, Session, SessionRegistry
from webharness.executor.suite import SuiteController, SuiteState, collect_system_info
from webharness.executor.types import (
    Artifact,
    ExecutionRecord,
    LifecycleState,
    LogLevel,
    ReportEntry,
    SuiteSummary,
    TestDescriptor,
    TestStatus,
    WorkerId,
)

__all__ = [
    # Sessions
    "Driver",
    "Session",
    "SessionRegistry",
    # Report
    "ReportNode",
    "ReportTree",
    "SerializedReport",
    # Capture
    "ArtifactCapture",
    "sanitize_label",
    "FAILURE_PREFIX",
    "CHECKPOINT_PREFIX",
    "SUCCESS_PREFIX",
    # Lifecycle
    "LifecycleCoordinator",
    "TestContext",
    # Retry
    "RetryPolicy",
    # Suite
    "SuiteController",
    "SuiteState",
    "collect_system_info",
    # Runner
    "ParallelRunner",
    "RunResult",
    "TestCase",
    "TestSuite",
    "test",
    "get_registered_tests",
    "clear_registered_tests",
    "run_registered_tests",
    "get_test_scope",
    # Isolation
    "ExecutionScope",
    "bind_worker",
    "current_worker_id",
    "get_current_scope",
    "isolated_scope",
    # Types
    "Artifact",
    "ExecutionRecord",
    "LifecycleState",
    "LogLevel",
    "ReportEntry",
    "SuiteSummary",
    "TestDescriptor",
    "TestStatus",
    "WorkerId",
    # Errors
    "HarnessError",
    "SessionInitError",
    "SessionNotFoundError",
    "CaptureError",
    "ReportWriteError",
    "NoActiveNodeError",
    "ArchiveError",
    "SuiteInitError",
    "WorkersStillActiveError",
    "TestSkipped",
]
