"""
Harness configuration.

Flat key/value configuration consumed by the executor: retry bound, capture
toggles, duration ceiling, directory roots and report metadata.
"""

import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from loguru import logger
from pydantic import BaseModel, ValidationError, field_validator

# Property names understood by from_properties(), mapped to model fields
PROPERTY_KEYS: Dict[str, str] = {
    "retry.count": "max_retry_attempts",
    "screenshot.onSuccess": "capture_on_success",
    "maxTestTimeMs": "max_test_duration_ms",
    "reportsDir": "reports_dir",
    "screenshotFolder": "screenshots_dir",
    "logsDir": "logs_dir",
    "threadCount": "max_workers",
    "environment": "environment",
    "browser": "browser",
    "reportFormat": "report_format",
    "logLevel": "log_level",
    "suiteName": "suite_name",
}


class HarnessConfig(BaseModel):
    """Harness configuration"""

    suite_name: str = "Test Suite"
    max_retry_attempts: int = 2
    capture_on_success: bool = False
    max_test_duration_ms: int = 30000
    reports_dir: str = "reports"
    screenshots_dir: str = "screenshots"
    logs_dir: str = "logs"
    max_workers: int = 4
    environment: str = "Not Configured"
    browser: str = "Not Configured"
    report_format: str = "html"
    log_level: str = "INFO"

    @field_validator("max_retry_attempts")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError(f"max_retry_attempts must be non-negative, got {value}")
        return value

    @field_validator("max_test_duration_ms", "max_workers")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError(f"value must be positive, got {value}")
        return value

    @field_validator("report_format")
    @classmethod
    def _known_format(cls, value: str) -> str:
        value = value.lower()
        if value not in ("html", "json"):
            raise ValueError(f"Unsupported report format: {value}")
        return value

    @property
    def reports_path(self) -> Path:
        return Path(self.reports_dir)

    @property
    def screenshots_path(self) -> Path:
        return self.reports_path / self.screenshots_dir

    @property
    def logs_path(self) -> Path:
        return self.reports_path / self.logs_dir

    @classmethod
    def from_properties(cls, properties: Mapping[str, Any]) -> "HarnessConfig":
        """Build a config from a flat property lookup.

        Unknown keys are ignored. A value that fails validation falls back to the
        field default and a warning is logged, so one bad property does not stop
        the suite.

        Args:
            properties: Mapping using the property names in PROPERTY_KEYS or
                the model field names directly.

        Returns:
            HarnessConfig instance
        """
        values: Dict[str, Any] = {}
        for key, raw in properties.items():
            field_name = PROPERTY_KEYS.get(key, key)
            if field_name not in cls.model_fields:
                continue
            if isinstance(raw, str):
                raw = raw.strip()
            values[field_name] = raw

        accepted: Dict[str, Any] = {}
        for field_name, raw in values.items():
            try:
                cls(**{field_name: raw})
            except ValidationError as e:
                default = cls.model_fields[field_name].default
                logger.warning(
                    f"Invalid value {raw!r} for '{field_name}', using default {default!r}: "
                    f"{e.errors()[0]['msg']}"
                )
                continue
            accepted[field_name] = raw

        return cls(**accepted)

    @classmethod
    def from_env(
        cls,
        prefix: str = "WEBHARNESS_",
        environ: Optional[Mapping[str, str]] = None,
    ) -> "HarnessConfig":
        """Build a config from environment variables such as WEBHARNESS_MAX_WORKERS."""
        environ = os.environ if environ is None else environ
        properties = {
            key[len(prefix):].lower(): value
            for key, value in environ.items()
            if key.startswith(prefix)
        }
        return cls.from_properties(properties)
