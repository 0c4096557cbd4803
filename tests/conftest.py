"""Shared pytest fixtures for webharness tests."""

from __future__ import annotations

import itertools
import threading
from pathlib import Path
from typing import Iterator

import pytest

from webharness.config import HarnessConfig
from webharness.executor.suite import SuiteController, SuiteState

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


# ── Fake automation backend ───────────────────────────────────────────────────

class FakeDriver:
    """In-memory driver with switchable failures. Thread-safe."""

    def __init__(
        self,
        *,
        fail_open: bool = False,
        alive: bool = True,
        fail_screenshot: bool = False,
        fail_close: bool = False,
        image: bytes = PNG_BYTES,
    ) -> None:
        self.fail_open = fail_open
        self.alive = alive
        self.fail_screenshot = fail_screenshot
        self.fail_close = fail_close
        self.image = image
        self.opened = 0
        self.closed: list[int] = []
        self.events: list[tuple[str, int]] = []
        self.live: set[int] = set()
        self.max_live = 0
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def open(self) -> int:
        if self.fail_open:
            raise RuntimeError("browser failed to start")
        with self._lock:
            handle = next(self._ids)
            self.opened += 1
            self.live.add(handle)
            self.max_live = max(self.max_live, len(self.live))
            self.events.append(("open", handle))
        return handle

    def close(self, handle: int) -> None:
        with self._lock:
            self.closed.append(handle)
            self.live.discard(handle)
            self.events.append(("close", handle))
        if self.fail_close:
            raise RuntimeError("close failed")

    def screenshot(self, handle: int) -> bytes:
        with self._lock:
            self.events.append(("screenshot", handle))
        if self.fail_screenshot:
            raise RuntimeError("screenshot failed")
        return self.image

    def is_alive(self, handle: int) -> bool:
        with self._lock:
            return self.alive and handle in self.live


@pytest.fixture
def driver() -> FakeDriver:
    return FakeDriver()


# ── Configuration and suite state ─────────────────────────────────────────────

@pytest.fixture
def reports_dir(tmp_path: Path) -> Path:
    return tmp_path / "reports"


@pytest.fixture
def config(reports_dir: Path) -> HarnessConfig:
    """Config rooted in a temporary reports directory."""
    return HarnessConfig(
        suite_name="Unit Suite",
        reports_dir=str(reports_dir),
        max_workers=4,
    )


@pytest.fixture
def controller(config: HarnessConfig) -> Iterator[SuiteController]:
    """Suite controller; finished on teardown so the log file sink is detached."""
    ctrl = SuiteController(config)
    yield ctrl
    if ctrl._state is not None:
        ctrl.on_suite_finish(timeout=5)


@pytest.fixture
def suite_state(controller: SuiteController) -> SuiteState:
    return controller.on_suite_start()
