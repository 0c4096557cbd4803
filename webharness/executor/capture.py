"""
Artifact Capture.

Takes screenshots from a worker's session and persists them under the shared
artifacts directory with collision-free names.
"""

import itertools
import os
import re
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional

from loguru import logger

from webharness.executor.errors import CaptureError
from webharness.executor.sessions import Session
from webharness.executor.types import Artifact

FAILURE_PREFIX = "FAILURE"
CHECKPOINT_PREFIX = "CHECKPOINT"
SUCCESS_PREFIX = "SUCCESS"

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9_-]")
_MAX_LABEL_LENGTH = 80


def sanitize_label(label: str) -> str:
    """Replace anything outside [a-zA-Z0-9_-] with underscores."""
    cleaned = _UNSAFE_CHARS.sub("_", label or "").strip("_")
    return cleaned[:_MAX_LABEL_LENGTH] or "artifact"


class ArtifactCapture:
    """
    Screenshot capture for failing and checkpointed tests.

    Filenames combine a prefix, the sanitized label, a microsecond timestamp and
    a process-wide sequence number, so two captures on different workers in the
    same millisecond still land in different files. Each file is written under a
    temporary name and renamed into place, so a returned Artifact never points
    at a partial file.
    """

    _sequence = itertools.count(1)
    _sequence_lock = threading.Lock()

    def __init__(self, artifacts_dir: Path, report_root: Path) -> None:
        """
        Initialize artifact capture.

        Args:
            artifacts_dir: Directory that receives the image files.
            report_root: Root the stored relative paths are computed against.
        """
        self.artifacts_dir = Path(artifacts_dir)
        self.report_root = Path(report_root)

    @classmethod
    def _next_sequence(cls) -> int:
        with cls._sequence_lock:
            return next(cls._sequence)

    def build_filename(self, label: str, prefix: str = FAILURE_PREFIX) -> str:
        timestamp = datetime.now().strftime("%H-%M-%S-%f")
        return f"{prefix}_{sanitize_label(label)}_{timestamp}_{self._next_sequence():06d}.png"

    def capture(
        self,
        session: Session,
        label: str,
        prefix: str = FAILURE_PREFIX,
    ) -> Artifact:
        """
        Capture a screenshot from the session and persist it.

        Args:
            session: Live session owned by the calling worker.
            label: Human-readable label; sanitized into the filename.
            prefix: Filename prefix (FAILURE, CHECKPOINT, SUCCESS).

        Returns:
            The persisted Artifact.

        Raises:
            CaptureError: If the session is unusable or the file cannot be written.
        """
        try:
            alive = session.is_alive()
        except Exception as e:
            raise CaptureError(label, f"session probe failed: {e}", cause=e)
        if not alive:
            raise CaptureError(label, f"session for worker {session.owner} is not alive")

        try:
            data = session.screenshot()
        except Exception as e:
            raise CaptureError(label, f"screenshot failed: {e}", cause=e)
        if not data:
            raise CaptureError(label, "driver returned an empty screenshot")

        filename = self.build_filename(label, prefix)
        target = self.artifacts_dir / filename
        self._write(label, target, data)

        relative = target.relative_to(self.report_root).as_posix()
        artifact = Artifact(name=filename, relative_path=relative, data=bytes(data))
        logger.info(f"Screenshot saved to: {target}")
        return artifact

    def try_capture(
        self,
        session: Optional[Session],
        label: str,
        prefix: str = FAILURE_PREFIX,
    ) -> Optional[Artifact]:
        """Capture, returning None instead of raising. Used on degraded paths."""
        if session is None:
            logger.warning(f"No session available for '{label}'; skipping screenshot")
            return None
        try:
            return self.capture(session, label, prefix)
        except CaptureError as e:
            logger.warning(f"Could not capture screenshot: {e}")
            return None

    def _write(self, label: str, target: Path, data: bytes) -> None:
        temp = target.with_name(f".{target.name}.part")
        try:
            self.artifacts_dir.mkdir(parents=True, exist_ok=True)
            with open(temp, "xb") as fh:
                fh.write(data)
            if target.exists():
                raise FileExistsError(f"Artifact already exists: {target}")
            os.replace(temp, target)
        except OSError as e:
            try:
                temp.unlink(missing_ok=True)
            except OSError as cleanup_error:
                logger.debug(f"Could not remove partial file {temp}: {cleanup_error}")
            raise CaptureError(label, f"could not write {target}: {e}", cause=e)
