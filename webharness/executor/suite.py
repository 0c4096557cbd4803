"""
Suite Controller.

Runs once at suite start and finish: prepares the shared report directories,
owns the shared ReportTree and active-worker bookkeeping, and at the end
flushes the report and archives the whole reports tree.
"""

import getpass
import os
import platform
import shutil
import threading
import zipfile
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

from loguru import logger

from webharness.config import HarnessConfig
from webharness.executor.capture import ArtifactCapture
from webharness.executor.errors import (
    ArchiveError,
    ReportWriteError,
    SuiteInitError,
    WorkersStillActiveError,
)
from webharness.executor.report import ReportTree, SerializedReport
from webharness.executor.types import SuiteSummary, WorkerId
from webharness.logging import add_file_sink, remove_sink
from webharness.reporting import ReportSink, create_sink

ARCHIVE_PREFIX = "TestReport_"
LOG_FILE_NAME = "harness.log"


class SuiteState:
    """
    Process-wide state for one suite run.

    The active-worker counter is guarded by a condition variable so the
    controller can block until every worker has finished.
    """

    def __init__(
        self,
        config: HarnessConfig,
        report_tree: ReportTree,
        capture: ArtifactCapture,
    ) -> None:
        self.config = config
        self.report_tree = report_tree
        self.capture = capture
        self.reports_dir = config.reports_path
        self.screenshots_dir = config.screenshots_path
        self.logs_dir = config.logs_path
        self.started_at = datetime.now()
        self._active = 0
        self._started = 0
        self._workers: Dict[WorkerId, datetime] = {}
        self._cond = threading.Condition()

    def worker_started(self, worker_id: WorkerId) -> int:
        """Increment the active-worker count. Returns the new count."""
        with self._cond:
            self._active += 1
            self._started += 1
            self._workers[worker_id] = datetime.now()
            return self._active

    def worker_finished(self, worker_id: WorkerId) -> int:
        """Decrement the active-worker count and wake waiters when it reaches zero."""
        with self._cond:
            if self._active == 0:
                logger.warning(f"Worker {worker_id} finished but no workers were active")
                return 0
            self._active -= 1
            self._workers.pop(worker_id, None)
            if self._active == 0:
                self._cond.notify_all()
            return self._active

    @property
    def active_workers(self) -> int:
        with self._cond:
            return self._active

    @property
    def executions_started(self) -> int:
        with self._cond:
            return self._started

    def active_worker_ids(self) -> Dict[WorkerId, datetime]:
        with self._cond:
            return dict(self._workers)

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """
        Block until no worker is active.

        Returns:
            True once idle, False if the timeout elapsed first.
        """
        with self._cond:
            return self._cond.wait_for(lambda: self._active == 0, timeout=timeout)


def collect_system_info(config: HarnessConfig) -> Dict[str, str]:
    """Platform and configuration metadata shown in the report header."""
    try:
        user = getpass.getuser()
    except (KeyError, OSError):
        user = "unknown"
    return {
        "Operating System": platform.system(),
        "OS Version": platform.release(),
        "Python Version": platform.python_version(),
        "User Name": user,
        "Browser": config.browser,
        "Environment": config.environment,
        "Started At": datetime.now().strftime("%b %d, %Y %H:%M:%S"),
    }


class SuiteController:
    """
    Suite-level start/finish operations.

    Example:
        controller = SuiteController(config)
        state = controller.on_suite_start()
        ... run every test with state ...
        summary = controller.on_suite_finish()
    """

    def __init__(
        self,
        config: Optional[HarnessConfig] = None,
        sink: Optional[ReportSink] = None,
    ) -> None:
        self.config = config or HarnessConfig()
        self.sink = sink or create_sink(self.config.report_format)
        self._state: Optional[SuiteState] = None
        self._log_sink_id: Optional[int] = None
        self._summary: Optional[SuiteSummary] = None
        self._lock = threading.Lock()

    @property
    def state(self) -> SuiteState:
        if self._state is None:
            raise RuntimeError("Suite not started. Call on_suite_start() first.")
        return self._state

    def on_suite_start(self) -> SuiteState:
        """
        Prepare directories and shared state for a new run.

        Raises:
            SuiteInitError: If the directories or the report tree cannot be set up.
        """
        with self._lock:
            logger.info(f"Suite starting: {self.config.suite_name}")
            self.prepare_directories()

            try:
                tree = ReportTree(self.config.suite_name)
                for key, value in collect_system_info(self.config).items():
                    tree.set_system_info(key, value)
            except Exception as e:
                raise SuiteInitError(f"report tree: {e}", cause=e)

            capture = ArtifactCapture(self.config.screenshots_path, self.config.reports_path)
            self._state = SuiteState(self.config, tree, capture)
            self._summary = None

            try:
                self._log_sink_id = add_file_sink(
                    self.config.logs_path / LOG_FILE_NAME, level=self.config.log_level
                )
            except (OSError, ValueError) as e:
                logger.warning(f"Could not attach run log file: {e}")
                self._log_sink_id = None

            logger.info(f"Suite environment initialized for: {self.config.suite_name}")
            return self._state

    def prepare_directories(self) -> None:
        """
        Clear the previous run and create reports/, screenshots/ and logs/.

        Idempotent: missing or already-empty directories are fine.
        """
        reports_dir = self.config.reports_path
        if reports_dir.is_dir():
            items = list(reports_dir.iterdir())
            if items:
                logger.info(f"Cleaning {len(items)} item(s) from previous run in {reports_dir}")
            for item in items:
                try:
                    if item.is_dir() and not item.is_symlink():
                        shutil.rmtree(item)
                    else:
                        item.unlink()
                except OSError as e:
                    logger.warning(f"Could not delete {item}: {e}")
        elif reports_dir.exists():
            raise SuiteInitError(f"{reports_dir} exists and is not a directory")

        for directory in (reports_dir, self.config.screenshots_path, self.config.logs_path):
            try:
                directory.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise SuiteInitError(f"cannot create directory {directory}: {e}", cause=e)
        logger.debug(f"Report directories ready under {reports_dir}")

    def on_suite_finish(self, timeout: Optional[float] = None) -> SuiteSummary:
        """
        Wait for every worker, flush the report once, write it and archive it.

        Args:
            timeout: Optional bound in seconds on the wait for active workers.

        Returns:
            SuiteSummary with counts and output paths.

        Raises:
            WorkersStillActiveError: If workers are still running when the
                timeout elapses. Nothing is flushed or archived and the call
                can be repeated once they finish.
        """
        with self._lock:
            if self._summary is not None:
                return self._summary
            state = self.state
            logger.info(f"Suite finishing: {self.config.suite_name}")

            if not state.wait_idle(timeout):
                error = WorkersStillActiveError(list(state.active_worker_ids()), timeout)
                logger.error(f"Suite cannot finish: {error}")
                raise error

            report = state.report_tree.flush()
            report_path = self._write_report(report)

            remove_sink(self._log_sink_id)
            self._log_sink_id = None

            archive_path: Optional[Path] = None
            try:
                archive_path = self.create_archive()
            except ArchiveError as e:
                logger.error(f"Archive creation failed: {e}")

            counts = report.summary
            self._summary = SuiteSummary(
                name=self.config.suite_name,
                total_tests=counts["total"],
                passed=counts["passed"],
                failed=counts["failed"],
                skipped=counts["skipped"],
                report_path=report_path,
                archive_path=archive_path,
                start_time=state.started_at,
                end_time=datetime.now(),
            )
            logger.info(
                f"Suite summary for '{self.config.suite_name}': {counts['total']} test node(s), "
                f"{self._summary.passed} passed, {self._summary.failed} failed, "
                f"{self._summary.skipped} skipped"
            )
            return self._summary

    def _write_report(self, report: SerializedReport) -> Optional[Path]:
        try:
            path = self.sink.write(report, self.config.reports_path)
        except (OSError, ReportWriteError) as e:
            logger.error(f"Failed to write report: {e}")
            return None
        logger.info(f"Report saved at: {path}")
        return path

    def create_archive(self) -> Path:
        """
        Zip the whole reports tree into a timestamped archive inside it.

        The archive being written is skipped so it never contains itself.

        Raises:
            ArchiveError: If the directory is missing or the zip cannot be written.
        """
        reports_dir = self.config.reports_path
        if not reports_dir.is_dir():
            raise ArchiveError(str(reports_dir), "reports directory not found")

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        archive_path = reports_dir / f"{ARCHIVE_PREFIX}{timestamp}.zip"
        suffix = 1
        while archive_path.exists():
            archive_path = reports_dir / f"{ARCHIVE_PREFIX}{timestamp}_{suffix}.zip"
            suffix += 1
        archive_resolved = archive_path.resolve()
        root_name = reports_dir.resolve().name

        added = 0
        try:
            with zipfile.ZipFile(archive_path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
                for dirpath, dirnames, filenames in os.walk(reports_dir):
                    dirnames.sort()
                    for filename in sorted(filenames):
                        path = Path(dirpath) / filename
                        if path.resolve() == archive_resolved:
                            continue
                        arcname = Path(root_name) / path.relative_to(reports_dir)
                        zf.write(path, arcname.as_posix())
                        added += 1
                        logger.debug(f"Added file: {arcname.as_posix()}")
        except (OSError, zipfile.BadZipFile) as e:
            try:
                archive_path.unlink(missing_ok=True)
            except OSError as cleanup_error:
                logger.debug(f"Could not remove partial archive: {cleanup_error}")
            raise ArchiveError(str(archive_path), str(e), cause=e)

        logger.info(
            f"Archive created: {archive_path} ({added} file(s), "
            f"{archive_path.stat().st_size} bytes)"
        )
        return archive_path
