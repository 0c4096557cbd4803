"""
Report Tree.

Shared, append-only hierarchical report (suite -> test -> step) that many
workers write into concurrently. Each worker holds exactly one current test
node at a time; insertion into the tree and every node mutation are serialized
by a single lock.
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import PurePosixPath, PureWindowsPath
from typing import Any, Dict, List, Optional

from loguru import logger

from webharness.executor.errors import NoActiveNodeError, ReportWriteError
from webharness.executor.types import (
    LEVEL_RANK,
    Artifact,
    LogLevel,
    ReportEntry,
    TestStatus,
    WorkerId,
)


class ReportNode:
    """One test's entry in the report tree."""

    def __init__(
        self,
        node_id: int,
        name: str,
        description: str,
        worker_id: WorkerId,
    ) -> None:
        self.node_id = node_id
        self.name = name
        self.description = description
        self.worker_id = worker_id
        self.created_at = datetime.now()
        self.detached_at: Optional[datetime] = None
        self.outcome: Optional[TestStatus] = None
        self._entries: List[ReportEntry] = []

    @property
    def entries(self) -> List[ReportEntry]:
        return list(self._entries)

    @property
    def severity(self) -> LogLevel:
        """Highest-ranked level among the entries; INFO for an empty node."""
        severity = LogLevel.INFO
        for entry in self._entries:
            if LEVEL_RANK[entry.level] > LEVEL_RANK[severity]:
                severity = entry.level
        return severity

    @property
    def status(self) -> TestStatus:
        """
        The test's result.

        The outcome recorded by the lifecycle wins. Nodes written without one
        fall back to their severity.
        """
        if self.outcome is not None:
            return self.outcome
        severity = self.severity
        if severity == LogLevel.FAIL:
            return TestStatus.FAILED
        if severity == LogLevel.SKIP:
            return TestStatus.SKIPPED
        return TestStatus.PASSED

    @property
    def artifact_paths(self) -> List[str]:
        return [e.artifact_path for e in self._entries if e.artifact_path]

    def _append(self, entry: ReportEntry) -> None:
        self._entries.append(entry)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.node_id,
            "name": self.name,
            "description": self.description,
            "worker_id": self.worker_id,
            "status": self.status.value,
            "severity": self.severity.value,
            "created_at": self.created_at.isoformat(),
            "detached_at": self.detached_at.isoformat() if self.detached_at else None,
            "entries": [
                {
                    "level": e.level.value,
                    "message": e.message,
                    "timestamp": e.timestamp.isoformat(),
                    "artifact": e.artifact_path,
                }
                for e in self._entries
            ],
        }

    def __repr__(self) -> str:
        return f"ReportNode(id={self.node_id}, name={self.name!r}, entries={len(self._entries)})"


@dataclass(frozen=True)
class SerializedReport:
    """Rendered form of the whole tree, produced once by ReportTree.flush()."""
    title: str
    generated_at: datetime
    system_info: Dict[str, str]
    tests: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def summary(self) -> Dict[str, int]:
        counts = {"total": len(self.tests), "passed": 0, "failed": 0, "skipped": 0, "warning": 0}
        for test in self.tests:
            counts[test["status"]] += 1
            # warnings are counted on top of the outcome, not instead of it
            if test["severity"] == LogLevel.WARNING.value:
                counts["warning"] += 1
        return counts

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "generated_at": self.generated_at.isoformat(),
            "system_info": dict(self.system_info),
            "summary": self.summary,
            "tests": self.tests,
        }


class ReportTree:
    """
    Shared report for a whole suite run.

    Example:
        tree = ReportTree("Regression")
        node = tree.create_node(worker_id, "test_login", "Valid credentials")
        tree.log_event(worker_id, LogLevel.INFO, "Opened login page")
        tree.remove_node(worker_id)
        report = tree.flush()
    """

    def __init__(self, title: str = "Test Execution Report") -> None:
        self.title = title
        self._nodes: List[ReportNode] = []
        self._bindings: Dict[WorkerId, ReportNode] = {}
        self._system_info: Dict[str, str] = {}
        self._lock = threading.Lock()
        self._next_id = 1
        self._flushed: Optional[SerializedReport] = None

    def set_system_info(self, key: str, value: Optional[str]) -> None:
        """Record a metadata pair shown alongside the results."""
        with self._lock:
            self._system_info[key] = value if value else "Not Configured"

    def create_node(
        self,
        worker_id: WorkerId,
        name: str,
        description: Optional[str] = None,
    ) -> ReportNode:
        """
        Append a test node to the tree and bind it to the worker.

        Args:
            worker_id: Worker that will own the node.
            name: Test name; the worker tag is appended for readability.
            description: Optional test description.

        Returns:
            The new ReportNode.

        Raises:
            ReportWriteError: If the name is empty or the tree is already flushed.
        """
        if not name or not name.strip():
            raise ReportWriteError("Test name cannot be null or empty")
        description = description if description and description.strip() else "No description provided"

        with self._lock:
            if self._flushed is not None:
                raise ReportWriteError(f"Report already flushed; cannot add test '{name}'")
            previous = self._bindings.get(worker_id)
            if previous is not None:
                logger.warning(
                    f"Worker {worker_id} still bound to node '{previous.name}'; rebinding"
                )
            node = ReportNode(self._next_id, f"{name} [{worker_id}]", description, worker_id)
            self._next_id += 1
            self._nodes.append(node)
            self._bindings[worker_id] = node

        logger.debug(f"Report node created: {name} on worker {worker_id}")
        return node

    def current_node(self, worker_id: WorkerId) -> ReportNode:
        """
        Get the node bound to a worker.

        Raises:
            NoActiveNodeError: If the worker has not created a node.
        """
        with self._lock:
            node = self._bindings.get(worker_id)
        if node is None:
            raise NoActiveNodeError(worker_id)
        return node

    def has_node(self, worker_id: WorkerId) -> bool:
        with self._lock:
            return worker_id in self._bindings

    def log_event(
        self,
        worker_id: WorkerId,
        level: LogLevel,
        message: Optional[str],
    ) -> ReportEntry:
        """
        Append a timestamped entry to the worker's current node.

        Raises:
            NoActiveNodeError: If the worker has no node bound.
        """
        if message is None:
            message = f"{LogLevel(level).value.capitalize()} message was null"
        entry = ReportEntry(level=LogLevel(level), message=message)
        self._append(worker_id, entry)
        return entry

    def attach_artifact(
        self,
        worker_id: WorkerId,
        artifact: Artifact,
        message: str,
        level: LogLevel = LogLevel.FAIL,
    ) -> ReportEntry:
        """
        Link an artifact into a FAIL or INFO entry of the worker's current node.

        The stored path is the artifact's path relative to the report root, so
        the archived report stays portable.

        Raises:
            ReportWriteError: If the level is not FAIL or INFO, or the artifact
                path is absolute.
            NoActiveNodeError: If the worker has no node bound.
        """
        level = LogLevel(level)
        if level not in (LogLevel.FAIL, LogLevel.INFO):
            raise ReportWriteError(f"Artifacts attach to fail or info entries, not {level.value}")
        path = artifact.relative_path
        if PurePosixPath(path).is_absolute() or PureWindowsPath(path).is_absolute():
            raise ReportWriteError(f"Artifact path must be relative to the report root: {path}")

        entry = ReportEntry(level=level, message=message, artifact_path=path)
        self._append(worker_id, entry)
        logger.debug(f"Artifact {artifact.name} attached for worker {worker_id}")
        return entry

    def set_outcome(self, worker_id: WorkerId, status: TestStatus) -> ReportNode:
        """
        Record the test's terminal result on the worker's current node.

        Raises:
            NoActiveNodeError: If the worker has no node bound.
        """
        with self._lock:
            node = self._bindings.get(worker_id)
            if node is None:
                raise NoActiveNodeError(worker_id)
            node.outcome = TestStatus(status)
        return node

    def remove_node(self, worker_id: WorkerId) -> Optional[ReportNode]:
        """Detach the worker's binding. The node itself stays in the tree."""
        with self._lock:
            node = self._bindings.pop(worker_id, None)
            if node is not None:
                node.detached_at = datetime.now()
        if node is None:
            logger.debug(f"No report node bound to worker {worker_id}")
        return node

    def nodes(self) -> List[ReportNode]:
        """Snapshot of every node in insertion order."""
        with self._lock:
            return list(self._nodes)

    def active_bindings(self) -> Dict[WorkerId, str]:
        with self._lock:
            return {w: n.name for w, n in self._bindings.items()}

    @property
    def flushed(self) -> bool:
        return self._flushed is not None

    def flush(self) -> SerializedReport:
        """
        Render the whole tree.

        Must only be called once every worker has finished. A second call
        returns the report produced by the first one.
        """
        with self._lock:
            if self._flushed is not None:
                logger.debug("Report tree already flushed; returning cached report")
                return self._flushed

            if self._bindings:
                logger.warning(
                    f"Flushing with {len(self._bindings)} node(s) still bound: "
                    f"{', '.join(n.name for n in self._bindings.values())}"
                )
                self._bindings.clear()

            self._flushed = SerializedReport(
                title=self.title,
                generated_at=datetime.now(),
                system_info=dict(self._system_info),
                tests=[node.to_dict() for node in self._nodes],
            )
            count = len(self._nodes)

        logger.info(f"Report tree flushed with {count} test node(s)")
        return self._flushed

    def _append(self, worker_id: WorkerId, entry: ReportEntry) -> None:
        with self._lock:
            node = self._bindings.get(worker_id)
            if node is None:
                raise NoActiveNodeError(worker_id)
            node._append(entry)
