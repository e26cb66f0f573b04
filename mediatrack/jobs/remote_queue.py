"""Remote queue executor: hands the upload to an external worker via the store.

The executor's part ends with the commit. Progress is pinned at a small fixed
value because the remote worker's progress is not observable; the result
arrives later through the result poller.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

from mediatrack.github.store import VersionedStore, result_path, upload_path
from mediatrack.jobs.dispatcher import JobExecutor
from mediatrack.jobs.errors import InputError, RemoteStoreError
from mediatrack.jobs.models import JobRecord, JobResult, JobStatus
from mediatrack.jobs.registry import JobRegistry
from mediatrack.storage.workspace import remove_files

logger = logging.getLogger(__name__)


class RemoteQueueExecutor(JobExecutor):
    def __init__(
        self,
        registry: JobRegistry,
        store: VersionedStore,
        queued_progress: float = 15.0,
    ):
        self._registry = registry
        self._store = store
        self._queued_progress = queued_progress

    async def submit(self, job: JobRecord) -> None:
        """Commit the input artifact and mark the job queued.

        Raises RemoteStoreError (after marking the job ``error``) when the
        commit fails; there is no fallback path. An unreadable input raises
        InputError the same way.
        """
        try:
            if not job.source_path:
                raise InputError(f"Job {job.id} has no input artifact")
            source = Path(job.source_path)
            loop = asyncio.get_event_loop()
            data = await loop.run_in_executor(None, source.read_bytes)
            target = upload_path(job.id, source.suffix)
            await self._store.write_file(
                target,
                data,
                f"Upload video {job.original_name} (id: {job.id})",
            )
        except (OSError, InputError, RemoteStoreError) as exc:
            message = str(exc) or type(exc).__name__
            logger.error(f"Remote queue commit for job {job.id} failed: {message}")
            await self._registry.update_status(job.id, JobStatus.ERROR, error_message=message)
            if isinstance(exc, OSError):
                raise InputError(f"Cannot read input artifact: {message}") from exc
            raise

        remove_files([source])
        await self._registry.update_status(
            job.id, JobStatus.PROCESSING, self._queued_progress
        )
        logger.info(f"Job {job.id} queued for remote processing at {target}")


class RemoteResultReader:
    """Reads a remote worker's result file. A pure read; safe to repeat."""

    def __init__(self, store: VersionedStore):
        self._store = store

    async def fetch(self, job_id: str) -> Optional[JobResult]:
        data = await self._store.read_file(result_path(job_id))
        if data is None:
            return None
        return JobResult.from_payload(json.loads(data))
