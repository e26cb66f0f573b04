"""Authoritative in-memory store of job records.

All writes go through the narrow update operations below. Each job id has its
own ``asyncio.Lock``; a mutation and the event announcing it happen under that
lock with no await in between, so subscribers see one job's events in the
order the mutations were applied. Records are replaced, never edited in place,
and reads hand out copies.
"""

import asyncio
import logging
from datetime import datetime
from typing import Dict, List, Optional

from mediatrack.jobs.broadcaster import (
    GLOBAL_TOPIC,
    EventBroadcaster,
    Subscription,
    job_topic,
)
from mediatrack.jobs.errors import JobConflictError
from mediatrack.jobs.models import (
    EventKind,
    JobEvent,
    JobRecord,
    JobResult,
    JobStats,
    JobStatus,
)

logger = logging.getLogger(__name__)

# Allowed status transitions. Terminal statuses have no way out.
_TRANSITIONS = {
    JobStatus.UPLOADED: {JobStatus.PROCESSING, JobStatus.ERROR},
    JobStatus.PROCESSING: {JobStatus.PROCESSING, JobStatus.ERROR, JobStatus.COMPLETED},
    JobStatus.COMPLETED: set(),
    JobStatus.ERROR: set(),
}


class JobRegistry:
    """Single source of truth for job status and progress."""

    def __init__(self, broadcaster: EventBroadcaster):
        self._broadcaster = broadcaster
        self._jobs: Dict[str, JobRecord] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    @property
    def broadcaster(self) -> EventBroadcaster:
        return self._broadcaster

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def create(self, job: JobRecord) -> JobRecord:
        """Register ``job`` as ``uploaded`` with progress 0 and announce it."""
        if job.id in self._jobs:
            raise JobConflictError(job.id)

        now = datetime.utcnow()
        record = job.model_copy(
            update={
                "status": JobStatus.UPLOADED,
                "progress": 0.0,
                "error_message": None,
                "result": None,
                "completed_at": None,
                "last_update": now,
            },
            deep=True,
        )
        lock = self._locks.setdefault(job.id, asyncio.Lock())
        async with lock:
            self._jobs[job.id] = record
            self._publish(EventKind.CREATED, record)
        logger.info(f"Job {job.id} created ({record.original_name}, {record.size} bytes)")
        return record.model_copy(deep=True)

    async def update_status(
        self,
        job_id: str,
        status: JobStatus,
        progress: Optional[float] = None,
        error_message: Optional[str] = None,
    ) -> Optional[JobRecord]:
        """Merge a status/progress change into the record.

        Returns the new snapshot, or None when the update was rejected (unknown
        id, terminal job, illegal transition). Rejections are logged, never raised.
        """
        if status == JobStatus.COMPLETED:
            logger.warning(
                f"Job {job_id}: completion requires a result, use update_result"
            )
            return None
        return await self._apply(job_id, status, progress, error_message=error_message)

    async def update_result(self, job_id: str, result: JobResult) -> Optional[JobRecord]:
        """Mark the job completed at 100% with ``result`` attached."""
        return await self._apply(job_id, JobStatus.COMPLETED, 100.0, result=result)

    async def remove(self, job_id: str) -> bool:
        lock = self._locks.get(job_id)
        if lock is None:
            logger.warning(f"Job {job_id} not found for removal")
            return False
        async with lock:
            if self._jobs.pop(job_id, None) is None:
                return False
            self._broadcaster.publish(JobEvent(kind=EventKind.REMOVED, job_id=job_id))
        self._locks.pop(job_id, None)
        logger.info(f"Job {job_id} removed from tracking")
        return True

    async def clear_completed(self) -> int:
        """Drop every completed job and announce how many went."""
        removed = 0
        for job_id in [j.id for j in self._jobs.values() if j.status == JobStatus.COMPLETED]:
            lock = self._locks.get(job_id)
            if lock is None:
                continue
            async with lock:
                if self._jobs.pop(job_id, None) is not None:
                    removed += 1
            self._locks.pop(job_id, None)
        self._broadcaster.publish(JobEvent(kind=EventKind.CLEARED, count=removed))
        logger.info(f"Cleared {removed} completed job(s)")
        return removed

    async def _apply(
        self,
        job_id: str,
        status: JobStatus,
        progress: Optional[float],
        error_message: Optional[str] = None,
        result: Optional[JobResult] = None,
    ) -> Optional[JobRecord]:
        lock = self._locks.get(job_id)
        if lock is None:
            logger.warning(f"Job {job_id} not found for status update")
            return None

        async with lock:
            current = self._jobs.get(job_id)
            if current is None:
                logger.warning(f"Job {job_id} not found for status update")
                return None
            if status not in _TRANSITIONS[current.status]:
                logger.warning(
                    f"Job {job_id}: ignoring transition "
                    f"{current.status.value} -> {status.value}"
                )
                return None

            now = datetime.utcnow()
            update = {"status": status, "last_update": now}

            if progress is None:
                progress = current.progress
            progress = min(max(float(progress), 0.0), 100.0)
            if status == JobStatus.PROCESSING and progress < current.progress:
                progress = current.progress
            if status == current.status and progress == current.progress:
                return current.model_copy(deep=True)
            update["progress"] = progress

            if status == JobStatus.ERROR:
                update["error_message"] = error_message or "Processing failed"
            else:
                update["error_message"] = None

            if status == JobStatus.COMPLETED:
                update["result"] = result.model_copy(deep=True)
                update["completed_at"] = now

            record = current.model_copy(update=update)
            self._jobs[job_id] = record
            kind = EventKind.COMPLETED if status == JobStatus.COMPLETED else EventKind.UPDATED
            self._publish(kind, record)

        logger.info(f"Job {job_id} status updated: {status.value} ({progress:.1f}%)")
        return record.model_copy(deep=True)

    def _publish(self, kind: EventKind, record: JobRecord) -> None:
        self._broadcaster.publish(
            JobEvent(kind=kind, job_id=record.id, job=record.model_copy(deep=True))
        )

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    async def watch(self, subscription: Subscription, job_id: str) -> Optional[JobRecord]:
        """Subscribe to one job's topic, queuing its current snapshot first.

        Returns the snapshot, or None if the job is unknown (nothing subscribed).
        """
        lock = self._locks.get(job_id)
        if lock is None:
            return None
        async with lock:
            current = self._jobs.get(job_id)
            if current is None:
                return None
            snapshot = current.model_copy(deep=True)
            self._broadcaster.subscribe(
                subscription,
                job_topic(job_id),
                snapshot=JobEvent(kind=EventKind.SNAPSHOT, job_id=job_id, job=snapshot),
            )
        return snapshot

    def unwatch(self, subscription: Subscription, job_id: str) -> None:
        self._broadcaster.unsubscribe(subscription, job_topic(job_id))

    def watch_all(self, subscription: Subscription) -> List[JobRecord]:
        """Subscribe to the global topic, queuing a snapshot of every job first."""
        jobs = [job.model_copy(deep=True) for job in self._jobs.values()]
        self._broadcaster.subscribe(
            subscription,
            GLOBAL_TOPIC,
            snapshot=JobEvent(kind=EventKind.SNAPSHOT, jobs=jobs),
        )
        return jobs

    def unwatch_all(self, subscription: Subscription) -> None:
        self._broadcaster.unsubscribe(subscription, GLOBAL_TOPIC)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, job_id: str) -> Optional[JobRecord]:
        job = self._jobs.get(job_id)
        return job.model_copy(deep=True) if job else None

    async def list(self) -> List[JobRecord]:
        return [job.model_copy(deep=True) for job in self._jobs.values()]

    async def list_by_status(self, status: JobStatus) -> List[JobRecord]:
        return [
            job.model_copy(deep=True)
            for job in self._jobs.values()
            if job.status == status
        ]

    async def list_active(self) -> List[JobRecord]:
        return [
            job.model_copy(deep=True)
            for job in self._jobs.values()
            if not job.is_terminal
        ]

    async def stats(self) -> JobStats:
        counts = {status: 0 for status in JobStatus}
        for job in self._jobs.values():
            counts[job.status] += 1
        uploaded = counts[JobStatus.UPLOADED]
        processing = counts[JobStatus.PROCESSING]
        return JobStats(
            total=len(self._jobs),
            uploaded=uploaded,
            processing=processing,
            completed=counts[JobStatus.COMPLETED],
            error=counts[JobStatus.ERROR],
            active=uploaded + processing,
        )
