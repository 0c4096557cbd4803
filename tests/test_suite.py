"""Unit tests for SuiteController: directory preparation, flush and archive."""

from __future__ import annotations

import json
import threading
import time
import zipfile

import pytest

from webharness.config import HarnessConfig
from webharness.executor.errors import ArchiveError, SuiteInitError, WorkersStillActiveError
from webharness.executor.sessions import SessionRegistry
from webharness.executor.suite import SuiteController, collect_system_info
from webharness.executor.types import LogLevel, TestStatus


def _archive_names(path) -> list[str]:
    with zipfile.ZipFile(path) as zf:
        return zf.namelist()


# ── Suite start ───────────────────────────────────────────────────────────────

class TestSuiteStart:
    def test_creates_directory_layout(self, controller, reports_dir):
        controller.on_suite_start()

        assert reports_dir.is_dir()
        assert (reports_dir / "screenshots").is_dir()
        assert (reports_dir / "logs").is_dir()

    def test_prepare_is_idempotent(self, controller, reports_dir):
        controller.prepare_directories()
        controller.prepare_directories()

        assert (reports_dir / "screenshots").is_dir()

    def test_clears_previous_run(self, controller, reports_dir):
        (reports_dir / "screenshots").mkdir(parents=True)
        (reports_dir / "old_report.html").write_text("old")
        (reports_dir / "screenshots" / "FAILURE_old.png").write_bytes(b"old")

        controller.on_suite_start()

        assert not (reports_dir / "old_report.html").exists()
        assert list((reports_dir / "screenshots").iterdir()) == []

    def test_reports_path_is_a_file(self, tmp_path):
        blocker = tmp_path / "reports"
        blocker.write_text("not a directory")
        controller = SuiteController(HarnessConfig(reports_dir=str(blocker)))

        with pytest.raises(SuiteInitError):
            controller.on_suite_start()

    def test_system_info_recorded(self, controller):
        state = controller.on_suite_start()

        info = state.report_tree.flush().system_info

        assert info["Python Version"]
        assert info["Browser"] == "Not Configured"
        assert {"Operating System", "OS Version", "User Name", "Environment"} <= set(info)

    def test_state_before_start_raises(self, config):
        with pytest.raises(RuntimeError):
            SuiteController(config).state


# ── Suite finish ──────────────────────────────────────────────────────────────

class TestSuiteFinish:
    def _record_failure(self, state, driver, worker_id: str) -> str:
        session = SessionRegistry(driver).acquire(worker_id)
        artifact = state.capture.capture(session, f"test_{worker_id}")
        state.report_tree.create_node(worker_id, f"test_{worker_id}")
        state.report_tree.attach_artifact(worker_id, artifact, "Test failed: boom")
        state.report_tree.remove_node(worker_id)
        return artifact.relative_path

    def test_archive_contains_report_and_artifacts(self, controller, driver):
        """Every artifact present at barrier time is archived, the archive itself is not."""
        state = controller.on_suite_start()
        artifacts = [self._record_failure(state, driver, f"w{i}") for i in range(3)]

        summary = controller.on_suite_finish()

        assert summary.archive_path is not None
        assert summary.archive_path.name.startswith("TestReport_")
        names = _archive_names(summary.archive_path)
        for relative in artifacts:
            assert f"reports/{relative}" in names
        assert f"reports/{summary.report_path.name}" in names
        assert "reports/logs/harness.log" in names
        assert not any(name.endswith(summary.archive_path.name) for name in names)

    def test_summary_counts(self, controller, driver):
        state = controller.on_suite_start()
        self._record_failure(state, driver, "w1")
        state.report_tree.create_node("w2", "test_ok")
        state.report_tree.log_event("w2", LogLevel.PASS, "ok")
        state.report_tree.remove_node("w2")

        summary = controller.on_suite_finish()

        assert (summary.total_tests, summary.passed, summary.failed) == (2, 1, 1)
        assert not summary.success
        assert summary.report_path.is_file()

    def test_finish_is_idempotent(self, controller):
        controller.on_suite_start()

        first = controller.on_suite_finish()
        second = controller.on_suite_finish()

        assert first is second
        assert len(list(first.archive_path.parent.glob("TestReport_*.zip"))) == 1

    def test_finish_waits_for_active_workers(self, controller):
        """Flush happens only after the last worker has finished."""
        state = controller.on_suite_start()
        started = threading.Event()

        def late_worker() -> None:
            state.worker_started("late")
            state.report_tree.create_node("late", "test_late")
            started.set()
            time.sleep(0.1)
            state.report_tree.log_event("late", LogLevel.PASS, "finished late")
            state.report_tree.remove_node("late")
            state.worker_finished("late")

        t = threading.Thread(target=late_worker)
        t.start()
        started.wait()

        summary = controller.on_suite_finish(timeout=5)
        t.join()

        report = state.report_tree.flush()
        assert summary.passed == 1
        assert report.tests[0]["entries"][0]["message"] == "finished late"

    def test_finish_timeout_leaves_report_open(self, controller):
        """A timed-out wait neither flushes nor archives, and finish can be retried."""
        state = controller.on_suite_start()
        state.worker_started("stuck")

        with pytest.raises(WorkersStillActiveError) as exc_info:
            controller.on_suite_finish(timeout=0.05)

        assert exc_info.value.workers == ["stuck"]
        assert not state.report_tree.flushed
        assert list(state.reports_dir.glob("TestReport_*")) == []

        state.worker_finished("stuck")
        summary = controller.on_suite_finish(timeout=5)

        assert state.report_tree.flushed
        assert summary.archive_path.is_file()

    def test_summary_uses_recorded_outcome(self, controller):
        state = controller.on_suite_start()
        tree = state.report_tree
        tree.create_node("w1", "test_coupon")
        tree.log_event("w1", LogLevel.FAIL, "STEP FAILED: coupon rejected")
        tree.set_outcome("w1", TestStatus.PASSED)
        tree.remove_node("w1")

        summary = controller.on_suite_finish()

        assert (summary.passed, summary.failed, summary.skipped) == (1, 0, 0)

    def test_archive_failure_is_not_fatal(self, controller, monkeypatch):
        controller.on_suite_start()

        def broken_archive():
            raise ArchiveError("reports/x.zip", "disk full")

        monkeypatch.setattr(controller, "create_archive", broken_archive)

        summary = controller.on_suite_finish()

        assert summary.archive_path is None
        assert summary.report_path is not None

    def test_create_archive_without_directory(self, tmp_path):
        controller = SuiteController(HarnessConfig(reports_dir=str(tmp_path / "missing")))

        with pytest.raises(ArchiveError):
            controller.create_archive()

    def test_json_report_format(self, reports_dir):
        config = HarnessConfig(reports_dir=str(reports_dir), report_format="json")
        controller = SuiteController(config)
        state = controller.on_suite_start()
        state.report_tree.create_node("w1", "test_json")
        state.report_tree.remove_node("w1")

        summary = controller.on_suite_finish()

        assert summary.report_path.suffix == ".json"
        data = json.loads(summary.report_path.read_text(encoding="utf-8"))
        assert data["tests"][0]["name"] == "test_json [w1]"
        assert data["summary"]["total"] == 1


def test_collect_system_info_uses_config():
    info = collect_system_info(HarnessConfig(environment="staging", browser="firefox"))
    assert info["Environment"] == "staging"
    assert info["Browser"] == "firefox"
