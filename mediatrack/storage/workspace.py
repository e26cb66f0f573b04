"""Per-job working directories for produced artifacts, with TTL cleanup."""

import logging
import os
import shutil
import time
from pathlib import Path
from typing import Iterable, Optional, Union

from mediatrack.config import settings

logger = logging.getLogger(__name__)


class JobWorkspace:
    """Owns ``<base>/<job_id>/`` directories holding transcodes, parts and thumbnails."""

    def __init__(self, base_dir: Optional[str] = None, ttl_hours: int = 24):
        self._base_dir = Path(base_dir or settings.work_dir)
        self._base_dir.mkdir(parents=True, exist_ok=True)
        self._ttl_seconds = ttl_hours * 3600

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def job_dir(self, job_id: str) -> Path:
        """Get or create the directory for a job's artifacts."""
        path = self._base_dir / job_id
        path.mkdir(parents=True, exist_ok=True)
        return path

    def path_for(self, job_id: str, filename: str) -> Path:
        return self.job_dir(job_id) / filename

    def discard(self, job_id: str) -> None:
        shutil.rmtree(self._base_dir / job_id, ignore_errors=True)

    def cleanup_expired(self) -> int:
        """Remove job directories older than TTL. Returns count of removed dirs."""
        now = time.time()
        removed = 0
        if not self._base_dir.exists():
            return 0
        for entry in self._base_dir.iterdir():
            if not entry.is_dir():
                continue
            if now - entry.stat().st_mtime > self._ttl_seconds:
                shutil.rmtree(entry, ignore_errors=True)
                removed += 1
        if removed:
            logger.info(f"Removed {removed} expired job workspace(s)")
        return removed


def remove_files(paths: Iterable[Union[str, Path]]) -> None:
    """Best-effort delete; failures are logged and skipped."""
    for path in paths:
        try:
            os.remove(path)
        except FileNotFoundError:
            continue
        except OSError as exc:
            logger.warning(f"Could not remove {path}: {exc}")
