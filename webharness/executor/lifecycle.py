"""
Lifecycle Coordinator.

Drives one test execution through setup, the external test body and teardown:

    IDLE -> SETTING_UP -> RUNNING -> (PASSED | FAILED | SKIPPED) -> TEARING_DOWN -> DONE

On the failure path the screenshot is taken with the worker's live session
before any teardown step runs. Teardown always runs and never raises.
"""

import os
import traceback
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from loguru import logger

from webharness.config import HarnessConfig
from webharness.executor.capture import (
    CHECKPOINT_PREFIX,
    FAILURE_PREFIX,
    SUCCESS_PREFIX,
    ArtifactCapture,
)
from webharness.executor.errors import ReportWriteError, TestSkipped
from webharness.executor.isolation import (
    ExecutionScope,
    bind_worker,
    current_worker_id,
    isolated_scope,
)
from webharness.executor.report import ReportTree
from webharness.executor.sessions import Session, SessionRegistry
from webharness.executor.suite import SuiteState
from webharness.executor.types import (
    Artifact,
    ExecutionRecord,
    LifecycleState,
    LogLevel,
    TestBody,
    TestDescriptor,
    TestStatus,
    WorkerId,
)

_LOGURU_LEVELS = {
    LogLevel.INFO: "INFO",
    LogLevel.PASS: "SUCCESS",
    LogLevel.FAIL: "ERROR",
    LogLevel.WARNING: "WARNING",
    LogLevel.SKIP: "INFO",
}


class TestContext:
    """
    Handle passed to a test body.

    Exposes the worker's session and report helpers bound to the worker's
    current report node. Report write failures inside these helpers are logged
    and never interrupt the test body.
    """

    __test__ = False

    def __init__(
        self,
        descriptor: TestDescriptor,
        worker_id: WorkerId,
        attempt: int,
        session: Session,
        tree: ReportTree,
        capture: ArtifactCapture,
        scope: ExecutionScope,
        record: ExecutionRecord,
    ) -> None:
        self.descriptor = descriptor
        self.worker_id = worker_id
        self.attempt = attempt
        self.session = session
        self.scope = scope
        self._tree = tree
        self._capture = capture
        self._record = record
        self.log = logger.bind(worker_id=worker_id, test_id=descriptor.test_id)

    def _report(self, level: LogLevel, message: Optional[str]) -> None:
        try:
            entry = self._tree.log_event(self.worker_id, level, message)
        except ReportWriteError as e:
            self.log.warning(f"Could not write report entry: {e}")
            return
        self.log.log(_LOGURU_LEVELS[level], entry.message)

    def log_info(self, message: Optional[str]) -> None:
        self._report(LogLevel.INFO, message)

    def log_pass(self, message: Optional[str]) -> None:
        self._report(LogLevel.PASS, message)

    def log_warning(self, message: Optional[str]) -> None:
        self._report(LogLevel.WARNING, message)

    def log_skip(self, message: Optional[str]) -> None:
        self._report(LogLevel.SKIP, message)

    def log_step(self, description: str) -> None:
        self.log_info(f"STEP: {description}")

    def log_step_pass(self, description: str) -> None:
        self.log_pass(f"STEP PASSED: {description}")

    def log_step_warning(self, description: str) -> None:
        self.log_warning(f"STEP WARNING: {description}")

    def log_step_fail(self, description: str, details: Optional[str] = None) -> Optional[Artifact]:
        """
        Record a failed step with a screenshot.

        Falls back to a plain FAIL entry when the screenshot cannot be taken.
        Does not end the test; raise to do that.

        Returns:
            The attached Artifact, or None on the degraded path.
        """
        message = f"STEP FAILED: {description}"
        if details:
            message += f" - {details}"
        self.log.error(message)
        return self._attach(description, FAILURE_PREFIX, message, LogLevel.FAIL)

    def checkpoint(self, name: str) -> Optional[Artifact]:
        """Take a CHECKPOINT screenshot and attach it to an INFO entry."""
        return self._attach(name, CHECKPOINT_PREFIX, f"Checkpoint: {name}", LogLevel.INFO)

    def _attach(
        self,
        label: str,
        prefix: str,
        message: str,
        level: LogLevel,
    ) -> Optional[Artifact]:
        artifact = self._capture.try_capture(self.session, label, prefix)
        if artifact is None:
            self._report(level, message)
            return None
        try:
            self._tree.attach_artifact(self.worker_id, artifact, message, level)
        except ReportWriteError as e:
            self.log.warning(f"Could not attach {artifact.name}: {e}")
            return None
        self._record.artifacts.append(artifact)
        return artifact


class LifecycleCoordinator:
    """
    Per-test state machine.

    One coordinator is shared by every worker of a suite; all per-execution
    state lives in the ExecutionRecord returned by execute().

    Example:
        coordinator = LifecycleCoordinator(sessions, suite_state)
        record = coordinator.execute(descriptor, body)
        if record.failed and retry.claim_retry(descriptor.test_id):
            record = coordinator.execute(descriptor, body, attempt=2)
    """

    def __init__(
        self,
        sessions: SessionRegistry,
        state: SuiteState,
        config: Optional[HarnessConfig] = None,
    ) -> None:
        """
        Initialize the coordinator.

        Args:
            sessions: Registry that opens one session per worker.
            state: Shared suite state (report tree, capture, worker counter).
            config: Harness configuration. Defaults to the suite state's config.
        """
        self.sessions = sessions
        self.state = state
        self.tree = state.report_tree
        self.capture = state.capture
        self.config = config or state.config

    def execute(
        self,
        descriptor: TestDescriptor,
        body: TestBody,
        worker_id: Optional[WorkerId] = None,
        attempt: int = 1,
    ) -> ExecutionRecord:
        """
        Run one full pass of the lifecycle for a test.

        Args:
            descriptor: Identity and metadata of the test.
            body: Callable receiving a TestContext. Raising fails the test;
                raising TestSkipped skips it.
            worker_id: Worker identity. Defaults to the calling thread's identity.
            attempt: 1 for the first run, incremented by the caller on retries.

        Returns:
            ExecutionRecord in state DONE with exactly one terminal status.
        """
        worker_id = worker_id or current_worker_id()
        record = ExecutionRecord(descriptor=descriptor, worker_id=worker_id, attempt=attempt)
        log = logger.bind(worker_id=worker_id, test_id=descriptor.test_id)

        with bind_worker(worker_id):
            counted = False
            acquired = False
            try:
                self._transition(record, LifecycleState.SETTING_UP, log)
                record.start_time = datetime.now()
                active = self.state.worker_started(worker_id)
                counted = True
                self._log_parallel_stats(active, log)

                session, acquired = self._setup(record, log)
                if session is not None:
                    self._transition(record, LifecycleState.RUNNING, log)
                    self._run_body(record, session, body, log)
            finally:
                self._teardown(record, counted, acquired, log)

        return record

    def skip(
        self,
        descriptor: TestDescriptor,
        reason: str,
        worker_id: Optional[WorkerId] = None,
    ) -> ExecutionRecord:
        """
        Record a test that will not run as skipped.

        No session is opened. The test still gets its own report node with the
        skip reason.
        """
        worker_id = worker_id or current_worker_id()
        record = ExecutionRecord(descriptor=descriptor, worker_id=worker_id)
        log = logger.bind(worker_id=worker_id, test_id=descriptor.test_id)

        with bind_worker(worker_id):
            record.start_time = datetime.now()
            record.status = TestStatus.SKIPPED
            record.error = reason
            self._transition(record, LifecycleState.SKIPPED, log)
            try:
                self.tree.create_node(worker_id, descriptor.name, descriptor.description)
                self.tree.log_event(worker_id, LogLevel.SKIP, f"Test skipped: {reason}")
                self.tree.set_outcome(worker_id, TestStatus.SKIPPED)
            except ReportWriteError as e:
                log.error(f"Could not record skipped test in report: {e}")
            finally:
                self.tree.remove_node(worker_id)
            record.end_time = datetime.now()
            self._transition(record, LifecycleState.DONE, log)

        log.info(f"Test skipped without running: {descriptor.name} - {reason}")
        return record

    # =========================================================================
    # Setup
    # =========================================================================

    def _setup(self, record: ExecutionRecord, log) -> Tuple[Optional[Session], bool]:
        """
        Acquire the session and create the report node.

        Returns:
            The session (None on failure) and whether this execution acquired one.
        """
        descriptor = record.descriptor
        session: Optional[Session] = None
        try:
            session = self.sessions.acquire(record.worker_id)
            self.tree.create_node(record.worker_id, descriptor.name, descriptor.description)
        except Exception as e:
            self._fail_setup(record, e, log)
            return None, session is not None

        log.info(f"Test setup completed for: {descriptor.name} (attempt {record.attempt})")
        if record.attempt > 1:
            self._report(record, LogLevel.INFO, f"Retry attempt {record.attempt}", log)
        return session, True

    def _fail_setup(self, record: ExecutionRecord, error: Exception, log) -> None:
        record.status = TestStatus.FAILED
        record.error = f"Setup failed: {error}"
        record.error_traceback = traceback.format_exc()
        self._transition(record, LifecycleState.FAILED, log)
        log.error(f"Test setup failed for {record.descriptor.name}: {error}")

        # Best effort: the failure must still show up in the report
        if not self.tree.has_node(record.worker_id):
            try:
                self.tree.create_node(
                    record.worker_id,
                    record.descriptor.name,
                    record.descriptor.description,
                )
            except ReportWriteError as e:
                log.error(f"Could not record setup failure in report: {e}")
                return
        self._report(record, LogLevel.FAIL, record.error, log)
        self._mark_outcome(record, log)

    # =========================================================================
    # Test body
    # =========================================================================

    def _run_body(self, record: ExecutionRecord, session: Session, body: TestBody, log) -> None:
        descriptor = record.descriptor
        with isolated_scope(record.worker_id, descriptor.name) as scope:
            context = TestContext(
                descriptor=descriptor,
                worker_id=record.worker_id,
                attempt=record.attempt,
                session=session,
                tree=self.tree,
                capture=self.capture,
                scope=scope,
                record=record,
            )
            try:
                body(context)
            except TestSkipped as e:
                record.status = TestStatus.SKIPPED
                self._transition(record, LifecycleState.SKIPPED, log)
                self._report(record, LogLevel.SKIP, f"Test skipped: {e.reason}", log)
                self._mark_outcome(record, log)
            except Exception as e:
                record.status = TestStatus.FAILED
                record.error = str(e) or type(e).__name__
                record.error_traceback = traceback.format_exc()
                self._transition(record, LifecycleState.FAILED, log)
                log.error(f"Test failed: {descriptor.name} - {record.error}")
                self._record_failure(record, session, log)
                self._mark_outcome(record, log)
            else:
                record.status = TestStatus.PASSED
                self._transition(record, LifecycleState.PASSED, log)
                self._report(record, LogLevel.PASS, "Test passed", log)
                self._mark_outcome(record, log)
                if self.config.capture_on_success:
                    self._capture_success(record, session, log)

    def _record_failure(self, record: ExecutionRecord, session: Session, log) -> None:
        """Capture while the session is still live, then attach or degrade."""
        message = f"Test failed: {record.error}"
        artifact = self.capture.try_capture(session, record.descriptor.name, FAILURE_PREFIX)
        if artifact is not None:
            try:
                self.tree.attach_artifact(record.worker_id, artifact, message, LogLevel.FAIL)
            except ReportWriteError as e:
                log.error(f"Could not attach failure screenshot: {e}")
            else:
                record.artifacts.append(artifact)
                return
        self._report(record, LogLevel.FAIL, message, log)

    def _capture_success(self, record: ExecutionRecord, session: Session, log) -> None:
        artifact = self.capture.try_capture(session, record.descriptor.name, SUCCESS_PREFIX)
        if artifact is None:
            return
        try:
            self.tree.attach_artifact(
                record.worker_id, artifact, "Screenshot on success", LogLevel.INFO
            )
        except ReportWriteError as e:
            log.warning(f"Could not attach success screenshot: {e}")
            return
        record.artifacts.append(artifact)

    # =========================================================================
    # Teardown
    # =========================================================================

    def _teardown(self, record: ExecutionRecord, counted: bool, acquired: bool, log) -> None:
        """
        Run every cleanup step in order. A failing step is logged and the
        remaining steps still run.

        Only a session this execution acquired is released.

        The worker counter is decremented last so that a finished barrier wait
        implies every worker has released its session and node.
        """
        self._transition(record, LifecycleState.TEARING_DOWN, log)
        worker_id = record.worker_id

        steps: List[Tuple[str, Callable[[], None]]] = [
            ("log duration", lambda: self._log_duration(record, log)),
        ]
        if acquired:
            steps.append(("release session", lambda: self.sessions.release(worker_id)))
        steps.append(("detach report node", lambda: self.tree.remove_node(worker_id)))
        if counted:
            steps.append(("decrement active workers", lambda: self.state.worker_finished(worker_id)))

        for name, step in steps:
            try:
                step()
            except Exception as e:
                record.teardown_errors.append(f"{name}: {e}")
                log.error(f"Teardown step '{name}' failed: {e}")

        self._transition(record, LifecycleState.DONE, log)
        outcome = record.status.value if record.status else "interrupted"
        log.info(
            f"Test finished: {record.descriptor.name} -> {outcome} "
            f"({record.duration_ms}ms, attempt {record.attempt})"
        )

    def _log_duration(self, record: ExecutionRecord, log) -> None:
        record.end_time = datetime.now()
        duration = record.duration_ms
        limit = self.config.max_test_duration_ms
        if not self.tree.has_node(record.worker_id):
            log.debug(f"Test duration: {duration}ms (no report node)")
            return
        if duration > limit:
            log.warning(f"Test exceeded maximum duration: {duration}ms > {limit}ms")
            self.tree.log_event(
                record.worker_id,
                LogLevel.WARNING,
                f"Test exceeded maximum duration: {duration}ms > {limit}ms",
            )
        else:
            self.tree.log_event(record.worker_id, LogLevel.INFO, f"Test duration: {duration}ms")

    # =========================================================================
    # Helpers
    # =========================================================================

    def _report(self, record: ExecutionRecord, level: LogLevel, message: str, log) -> None:
        try:
            self.tree.log_event(record.worker_id, level, message)
        except ReportWriteError as e:
            log.error(f"Could not write report entry: {e}")

    def _mark_outcome(self, record: ExecutionRecord, log) -> None:
        try:
            self.tree.set_outcome(record.worker_id, record.status)
        except ReportWriteError as e:
            log.error(f"Could not record outcome in report: {e}")

    def _transition(self, record: ExecutionRecord, new_state: LifecycleState, log) -> None:
        log.debug(f"{record.descriptor.name}: {record.state.value} -> {new_state.value}")
        record.history.append(new_state)

    def _log_parallel_stats(self, active: int, log) -> None:
        cpus = os.cpu_count() or 1
        log.debug(f"Parallel execution stats - active: {active}, CPU threads: {cpus}")
        if active > cpus:
            log.warning(f"High thread usage: {active} active > {cpus} CPU threads")
