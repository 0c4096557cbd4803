"""Unit tests for ArtifactCapture."""

from __future__ import annotations

from pathlib import Path

import pytest

from tests.conftest import PNG_BYTES, FakeDriver
from webharness.executor.capture import (
    CHECKPOINT_PREFIX,
    ArtifactCapture,
    sanitize_label,
)
from webharness.executor.errors import CaptureError
from webharness.executor.sessions import SessionRegistry


@pytest.fixture
def capture(reports_dir: Path) -> ArtifactCapture:
    return ArtifactCapture(reports_dir / "screenshots", reports_dir)


class TestSanitizeLabel:
    @pytest.mark.parametrize(
        "label, expected",
        [
            ("test_login", "test_login"),
            ("login test/#1", "login_test__1"),
            ("checkout-flow", "checkout-flow"),
            ("///", "artifact"),
            ("", "artifact"),
        ],
    )
    def test_sanitize(self, label, expected):
        assert sanitize_label(label) == expected

    def test_long_labels_are_truncated(self):
        assert len(sanitize_label("x" * 500)) == 80


class TestCapture:
    def test_capture_writes_file_and_relative_path(self, driver, capture, reports_dir):
        """A capture lands under screenshots/ and is referenced relative to the report root."""
        session = SessionRegistry(driver).acquire("w1")

        artifact = capture.capture(session, "test login")

        assert artifact.relative_path.startswith("screenshots/FAILURE_test_login_")
        assert artifact.relative_path.endswith(".png")
        stored = reports_dir / artifact.relative_path
        assert stored.read_bytes() == PNG_BYTES
        assert artifact.size == len(PNG_BYTES)
        assert not list((reports_dir / "screenshots").glob(".*.part"))

    def test_rapid_captures_get_distinct_names(self, driver, capture):
        session = SessionRegistry(driver).acquire("w1")

        names = {capture.capture(session, "same").name for _ in range(25)}

        assert len(names) == 25

    def test_checkpoint_prefix(self, driver, capture):
        session = SessionRegistry(driver).acquire("w1")

        artifact = capture.capture(session, "cart", CHECKPOINT_PREFIX)

        assert artifact.name.startswith("CHECKPOINT_cart_")

    def test_dead_session_raises_and_writes_nothing(self, capture, reports_dir):
        driver = FakeDriver()
        session = SessionRegistry(driver).acquire("w1")
        driver.alive = False

        with pytest.raises(CaptureError):
            capture.capture(session, "dead")

        assert not (reports_dir / "screenshots").exists() or not any(
            (reports_dir / "screenshots").iterdir()
        )

    def test_screenshot_failure_raises(self, capture):
        driver = FakeDriver(fail_screenshot=True)
        session = SessionRegistry(driver).acquire("w1")

        with pytest.raises(CaptureError) as exc_info:
            capture.capture(session, "broken")

        assert isinstance(exc_info.value.cause, RuntimeError)
        assert exc_info.value.label == "broken"

    def test_empty_screenshot_raises(self, capture):
        session = SessionRegistry(FakeDriver(image=b"")).acquire("w1")

        with pytest.raises(CaptureError):
            capture.capture(session, "empty")


class TestTryCapture:
    def test_no_session_returns_none(self, capture):
        assert capture.try_capture(None, "no session") is None

    def test_failure_returns_none(self, capture):
        session = SessionRegistry(FakeDriver(fail_screenshot=True)).acquire("w1")
        assert capture.try_capture(session, "broken") is None

    def test_success_returns_artifact(self, driver, capture):
        session = SessionRegistry(driver).acquire("w1")
        assert capture.try_capture(session, "ok") is not None
