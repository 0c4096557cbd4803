"""
Type definitions for the parallel execution harness.

Contains enums, dataclasses, and type definitions used throughout the executor module.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

WorkerId = str


class LogLevel(str, Enum):
    """Report entry level."""
    INFO = "info"
    PASS = "pass"
    FAIL = "fail"
    WARNING = "warning"
    SKIP = "skip"


# Display severity of a node: the highest-ranked entry level wins
LEVEL_RANK: Dict[LogLevel, int] = {
    LogLevel.INFO: 0,
    LogLevel.PASS: 1,
    LogLevel.WARNING: 2,
    LogLevel.SKIP: 3,
    LogLevel.FAIL: 4,
}


class TestStatus(str, Enum):
    """Terminal outcome of one test execution."""
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"

    __test__ = False


class LifecycleState(str, Enum):
    """States of a single pass through the lifecycle coordinator."""
    IDLE = "idle"
    SETTING_UP = "setting_up"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"
    TEARING_DOWN = "tearing_down"
    DONE = "done"


@dataclass(frozen=True)
class TestDescriptor:
    """Test metadata supplied by the runner at the start of each execution."""
    test_id: str
    name: str
    description: str = "No description provided"
    tags: Tuple[str, ...] = ()

    __test__ = False

    def __post_init__(self) -> None:
        """Validate descriptor fields."""
        if not self.test_id or not self.test_id.strip():
            raise ValueError("test_id cannot be empty")
        if not self.name or not self.name.strip():
            raise ValueError("name cannot be empty")


@dataclass(frozen=True)
class Artifact:
    """Immutable captured diagnostic file."""
    name: str
    relative_path: str                  # relative to the reports root, posix style
    data: bytes = field(repr=False)
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class ReportEntry:
    """One timestamped step inside a report node."""
    level: LogLevel
    message: str
    timestamp: datetime = field(default_factory=datetime.now)
    artifact_path: Optional[str] = None


@dataclass
class ExecutionRecord:
    """Outcome of one pass through the lifecycle state machine."""
    descriptor: TestDescriptor
    worker_id: WorkerId
    attempt: int = 1
    status: Optional[TestStatus] = None
    error: Optional[str] = None
    error_traceback: Optional[str] = None
    artifacts: List[Artifact] = field(default_factory=list)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    history: List[LifecycleState] = field(default_factory=lambda: [LifecycleState.IDLE])
    teardown_errors: List[str] = field(default_factory=list)

    @property
    def duration_ms(self) -> int:
        """Get execution duration in milliseconds."""
        if self.start_time is None or self.end_time is None:
            return 0
        delta = self.end_time - self.start_time
        return int(delta.total_seconds() * 1000)

    @property
    def state(self) -> LifecycleState:
        return self.history[-1]

    @property
    def failed(self) -> bool:
        return self.status == TestStatus.FAILED


@dataclass
class SuiteSummary:
    """Result of closing a suite."""
    name: str
    total_tests: int
    passed: int
    failed: int
    skipped: int
    report_path: Optional[Path] = None
    archive_path: Optional[Path] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    @property
    def success(self) -> bool:
        return self.failed == 0


TestBody = Callable[[Any], Any]
