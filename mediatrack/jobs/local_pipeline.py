"""In-process pipeline executor using asyncio workers.

Jobs are queued and picked up by a fixed number of worker tasks (one by
default, since transcoding saturates the CPU). Each job runs the stage
sequence below against the media toolkit and uploader, reporting progress
through the registry:

    analyze -> transform -> split (if oversized) -> thumbnail -> upload -> finalize

A failing stage moves the job to ``error``; artifacts already produced are left
where they are.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import List, Optional, Union

from mediatrack.github.notifier import JobNotifier, NullNotifier
from mediatrack.github.store import VersionedStore, result_path
from mediatrack.jobs.dispatcher import JobExecutor
from mediatrack.jobs.errors import StageError
from mediatrack.jobs.models import JobRecord, JobStatus
from mediatrack.jobs.progress import (
    Stage,
    StageDone,
    StageProgress,
    StageStream,
    aggregate,
)
from mediatrack.jobs.registry import JobRegistry
from mediatrack.media.base import MediaToolkit
from mediatrack.media.presets import Preset
from mediatrack.storage.uploader import ArtifactKind, ArtifactUploader, UploadItem
from mediatrack.storage.workspace import remove_files

logger = logging.getLogger(__name__)


class LocalPipelineExecutor(JobExecutor):
    """Local async job queue running the media pipeline."""

    def __init__(
        self,
        registry: JobRegistry,
        toolkit: MediaToolkit,
        uploader: ArtifactUploader,
        preset: Optional[Preset] = None,
        max_output_bytes: int = 98_000_000,
        thumbnail_offset: float = 2.0,
        notifier: Optional[JobNotifier] = None,
        results_store: Optional[VersionedStore] = None,
        workers: int = 1,
    ):
        self._registry = registry
        self._toolkit = toolkit
        self._uploader = uploader
        self._preset = preset or Preset()
        self._max_output_bytes = max_output_bytes
        self._thumbnail_offset = thumbnail_offset
        self._notifier = notifier or NullNotifier()
        self._results_store = results_store
        self._workers = max(1, workers)

        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._tasks: List[asyncio.Task] = []
        self._running = False

    async def submit(self, job: JobRecord) -> None:
        await self._queue.put(job.id)

    async def start(self) -> None:
        self._running = True
        self._tasks = [
            asyncio.create_task(self._worker_loop(n)) for n in range(self._workers)
        ]

    async def stop(self) -> None:
        self._running = False
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []

    async def _worker_loop(self, worker: int) -> None:
        """Process queued jobs one at a time."""
        while self._running:
            try:
                job_id = await asyncio.wait_for(self._queue.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            except asyncio.CancelledError:
                break

            logger.debug(f"Worker {worker} picked up job {job_id}")
            await self.run(job_id)

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def run(self, job_id: str) -> Optional[JobRecord]:
        """Run every stage for ``job_id``. Never raises; returns the final snapshot."""
        job = await self._registry.get(job_id)
        if job is None:
            logger.warning(f"Job {job_id} vanished before processing started")
            return None
        if job.status != JobStatus.UPLOADED:
            logger.warning(f"Job {job_id} is {job.status.value}, not starting pipeline")
            return job

        produced: List[Path] = []
        stage = Stage.ANALYZE
        try:
            await self._report(job_id, Stage.ANALYZE, 0)
            if not job.source_path or not Path(job.source_path).exists():
                raise StageError(stage.value, f"Input artifact missing for job {job_id}")
            source = Path(job.source_path)

            properties = await self._toolkit.analyze(source)
            await self._report(job_id, Stage.ANALYZE, 100)

            stage = Stage.TRANSFORM
            output = await self._consume(
                job_id, stage, self._toolkit.transform(source, job_id, self._preset)
            )
            produced.append(output)

            stage = Stage.SPLIT
            artifacts: Union[Path, List[Path]] = output
            if output.stat().st_size > self._max_output_bytes:
                artifacts = await self._toolkit.split(output, job_id, properties.duration)
                produced.extend(artifacts)
                remove_files([output])
            await self._report(job_id, stage, 100)

            stage = Stage.THUMBNAIL
            first = artifacts[0] if isinstance(artifacts, list) else artifacts
            offset = self._thumbnail_offset
            if properties.duration > 0:
                offset = min(offset, properties.duration / 2)
            thumbnail = await self._toolkit.capture_thumbnail(first, job_id, offset)
            produced.append(thumbnail)
            await self._report(job_id, stage, 100)

            stage = Stage.UPLOAD
            if isinstance(artifacts, list):
                items = [UploadItem(path, ArtifactKind.VIDEO_PART) for path in artifacts]
            else:
                items = [UploadItem(artifacts, ArtifactKind.VIDEO)]
            items.append(UploadItem(thumbnail, ArtifactKind.THUMBNAIL))
            result = await self._consume(job_id, stage, self._uploader.upload(job_id, items))

            stage = Stage.FINALIZE
            await self._report(job_id, stage, 0)
            final = await self._registry.update_result(job_id, result)
        except Exception as exc:
            message = str(exc) or type(exc).__name__
            logger.error(f"Job {job_id} failed during {stage.value}: {message}")
            failed = await self._registry.update_status(
                job_id, JobStatus.ERROR, error_message=message
            )
            await self._notify_failure(failed or job, message)
            return failed

        remove_files([source, *produced])
        if final is None:
            logger.warning(f"Job {job_id} finished processing but was no longer tracked")
            return None
        await self._after_completion(final)
        logger.info(f"Job {job_id} processed successfully")
        return final

    async def _report(self, job_id: str, stage: Stage, percent: float) -> None:
        await self._registry.update_status(
            job_id, JobStatus.PROCESSING, aggregate(stage, percent)
        )

    async def _consume(self, job_id: str, stage: Stage, stream: StageStream):
        """Relay a stage stream's progress and return its final value."""
        async for item in stream:
            if isinstance(item, StageProgress):
                await self._report(job_id, stage, item.percent)
            elif isinstance(item, StageDone):
                await self._report(job_id, stage, 100)
                return item.value
        raise StageError(stage.value, f"{stage.value} finished without a result")

    # ------------------------------------------------------------------
    # Best-effort side effects
    # ------------------------------------------------------------------

    async def _after_completion(self, job: JobRecord) -> None:
        try:
            await self._notifier.job_completed(job)
        except Exception as exc:
            logger.warning(f"Completion notification for job {job.id} failed: {exc}")

        if self._results_store is None:
            return
        payload = {"job": job.snapshot(), "results": job.result.model_dump(mode="json")}
        try:
            await self._results_store.write_file(
                result_path(job.id),
                json.dumps(payload, indent=2).encode("utf-8"),
                f"Add processing results for {job.original_name}",
            )
        except Exception as exc:
            logger.warning(f"Committing results for job {job.id} failed: {exc}")

    async def _notify_failure(self, job: JobRecord, message: str) -> None:
        try:
            await self._notifier.job_failed(job, message)
        except Exception as exc:
            logger.warning(f"Failure notification for job {job.id} failed: {exc}")
