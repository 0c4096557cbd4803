"""Report sinks: render a flushed report tree to durable storage."""

from webharness.reporting.sinks import (
    HtmlReportSink,
    JsonReportSink,
    ReportSink,
    create_sink,
)

__all__ = [
    "ReportSink",
    "HtmlReportSink",
    "JsonReportSink",
    "create_sink",
]
