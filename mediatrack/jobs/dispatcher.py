"""Executor interface and the dispatcher that binds each job to one executor."""

import logging
from abc import ABC, abstractmethod
from typing import Dict, Optional

from mediatrack.jobs.models import ExecutionMode, JobRecord
from mediatrack.jobs.registry import JobRegistry

logger = logging.getLogger(__name__)


class JobExecutor(ABC):
    """Abstract interface for running a registered job (local or remote)."""

    @abstractmethod
    async def submit(self, job: JobRecord) -> None:
        """Start work on an already-registered job."""
        ...

    async def start(self) -> None:
        """Start the executor (e.g., start worker loop)."""
        return None

    async def stop(self) -> None:
        """Stop the executor gracefully."""
        return None


def parse_mode(value: str) -> ExecutionMode:
    """Map the PROCESSING_MODE setting onto an ExecutionMode.

    ``github`` is accepted as a synonym for ``remote``.
    """
    normalized = (value or "").strip().lower()
    if normalized in ("remote", "github"):
        return ExecutionMode.REMOTE
    if normalized in ("", "local"):
        return ExecutionMode.LOCAL
    raise ValueError(f"Unknown processing mode '{value}' (expected 'local' or 'remote')")


class ExecutionDispatcher:
    """Registers new jobs and hands each to the executor for its mode.

    The mode is read once per job and stored on the record, so a job never
    changes strategy mid-flight even if the configured mode does.
    """

    def __init__(
        self,
        registry: JobRegistry,
        executors: Dict[ExecutionMode, JobExecutor],
        mode: ExecutionMode = ExecutionMode.LOCAL,
    ):
        self._registry = registry
        self._executors = executors
        self.mode = mode

    @property
    def registry(self) -> JobRegistry:
        return self._registry

    async def submit(self, job: JobRecord, mode: Optional[ExecutionMode] = None) -> JobRecord:
        """Create ``job`` in the registry and start its executor.

        Errors from the remote executor propagate to the caller; the local
        executor reports failures through the registry instead.
        """
        mode = mode or self.mode
        executor = self._executors.get(mode)
        if executor is None:
            raise ValueError(f"No executor configured for mode '{mode.value}'")

        record = await self._registry.create(job.model_copy(update={"execution_mode": mode}))
        logger.info(f"Job {record.id} dispatched to {mode.value} executor")
        await executor.submit(record)
        return await self._registry.get(record.id) or record

    async def get_status(self, job_id: str) -> Optional[JobRecord]:
        return await self._registry.get(job_id)

    async def start(self) -> None:
        for executor in self._executors.values():
            await executor.start()

    async def stop(self) -> None:
        for executor in self._executors.values():
            await executor.stop()
