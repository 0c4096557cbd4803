"""Report sinks for the serialized report tree."""

import json
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from jinja2 import Environment, FileSystemLoader, TemplateError

from webharness.executor.errors import ReportWriteError
from webharness.executor.report import SerializedReport

REPORT_PREFIX = "TestReport_"


class ReportSink(ABC):
    """Writes a SerializedReport, including its system metadata, into a directory."""

    extension = ""

    @abstractmethod
    def render(self, report: SerializedReport) -> str:
        """Render the report to text."""
        pass

    def write(self, report: SerializedReport, output_dir: Path) -> Path:
        """
        Render and persist the report.

        Args:
            report: Flushed report.
            output_dir: Directory that receives the file.

        Returns:
            Path of the written file.

        Raises:
            ReportWriteError: If rendering fails.
            OSError: If the file cannot be written.
        """
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        content = self.render(report)

        stamp = report.generated_at.strftime("%Y-%m-%d_%H-%M-%S")
        path = output_dir / f"{REPORT_PREFIX}{stamp}{self.extension}"
        suffix = 1
        while path.exists():
            path = output_dir / f"{REPORT_PREFIX}{stamp}_{suffix}{self.extension}"
            suffix += 1

        path.write_text(content, encoding="utf-8")
        return path


class HtmlReportSink(ReportSink):
    """Self-contained HTML document rendered with jinja2."""

    extension = ".html"

    def __init__(
        self,
        templates_dir: Optional[Path] = None,
        template_name: str = "report.html.j2",
    ) -> None:
        """Initialize the HTML sink."""
        if templates_dir is None:
            templates_dir = Path(__file__).parent / "templates"
        self.template_name = template_name
        self.env = Environment(
            loader=FileSystemLoader(str(templates_dir)),
            autoescape=True,
        )
        self.env.filters["format_datetime"] = self._format_datetime
        self.env.filters["status_class"] = self._status_class

    def render(self, report: SerializedReport) -> str:
        try:
            template = self.env.get_template(self.template_name)
            return template.render(**report.to_dict())
        except TemplateError as e:
            raise ReportWriteError(f"Could not render {self.template_name}: {e}")

    @staticmethod
    def _format_datetime(value: Optional[str]) -> str:
        """Format an ISO timestamp for display."""
        if not value:
            return "N/A"
        return datetime.fromisoformat(value).strftime("%Y-%m-%d %H:%M:%S")

    @staticmethod
    def _status_class(status: str) -> str:
        """Get CSS class for a test status or entry level."""
        return {
            "passed": "status-passed",
            "failed": "status-failed",
            "skipped": "status-skipped",
            "pass": "status-passed",
            "fail": "status-failed",
            "warning": "status-warning",
            "skip": "status-skipped",
            "info": "status-info",
        }.get(status.lower(), "status-unknown")


class JsonReportSink(ReportSink):
    """Machine-readable JSON document."""

    extension = ".json"

    def render(self, report: SerializedReport) -> str:
        data: Dict[str, Any] = report.to_dict()
        return json.dumps(data, indent=2, default=str)


def create_sink(report_format: str = "html") -> ReportSink:
    """
    Get the sink for a configured report format.

    Raises:
        ValueError: If the format is unknown.
    """
    sinks = {
        "html": HtmlReportSink,
        "json": JsonReportSink,
    }
    try:
        return sinks[report_format.lower()]()
    except KeyError:
        raise ValueError(f"Unsupported report format: {report_format}")
