"""Unit tests for loguru sink helpers."""

from __future__ import annotations

from loguru import logger

from webharness.logging import add_file_sink, remove_sink


def test_file_sink_includes_worker_and_test_ids(tmp_path):
    path = tmp_path / "logs" / "harness.log"
    sink_id = add_file_sink(path)

    logger.bind(worker_id="worker_3#42", test_id="login:test_valid").info("session opened")
    logger.info("unbound record")
    remove_sink(sink_id)

    lines = path.read_text(encoding="utf-8").splitlines()
    assert any("worker_3#42 | login:test_valid | session opened" in line for line in lines)
    assert any("- | - | unbound record" in line for line in lines)


def test_remove_sink_tolerates_missing_ids():
    remove_sink(None)
    sink_id = logger.add(lambda message: None)
    remove_sink(sink_id)
    remove_sink(sink_id)
