"""
WebHarness - parallel UI test execution harness

Runs UI tests on a pool of worker threads with one exclusive automation
session per worker, a shared report tree, failure screenshots taken before
teardown, bounded retries and a zipped report archive per run.
"""

from .config import HarnessConfig
from .executor import (
    Driver,
    ExecutionRecord,
    HarnessError,
    ParallelRunner,
    RunResult,
    SuiteSummary,
    TestContext,
    TestDescriptor,
    TestSkipped,
    TestSuite,
    test,
)
from .logging import configure_logging

__version__ = "0.1.0"

__all__ = [
    # Configuration
    "HarnessConfig",
    "configure_logging",
    # Running tests
    "Driver",
    "ParallelRunner",
    "RunResult",
    "TestSuite",
    "TestContext",
    "TestDescriptor",
    "TestSkipped",
    "test",
    # Results
    "ExecutionRecord",
    "SuiteSummary",
    "HarnessError",
]
