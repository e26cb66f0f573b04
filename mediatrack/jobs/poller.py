"""Bounded polling loop that waits for a remote worker's result.

The poller runs on the caller's side. Every attempt is a pure read; the only
write is the ``on_result`` reconciliation after the first hit. Running out of
attempts raises PollTimeoutError and leaves the job's status alone, since a
slow worker may still finish.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from mediatrack.jobs.errors import PollTimeoutError
from mediatrack.jobs.models import JobResult

logger = logging.getLogger(__name__)

FetchFn = Callable[[str], Awaitable[Optional[JobResult]]]
ReconcileFn = Callable[[str, JobResult], Awaitable[object]]


class ResultPoller:
    def __init__(
        self,
        fetch: FetchFn,
        interval: float = 15.0,
        max_attempts: int = 80,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._fetch = fetch
        self._interval = interval
        self._max_attempts = max_attempts
        self._sleep = sleep

    @property
    def timeout(self) -> float:
        return self._interval * self._max_attempts

    async def poll(
        self,
        job_id: str,
        on_result: Optional[ReconcileFn] = None,
    ) -> JobResult:
        """Poll until a result exists or the attempt ceiling is reached."""
        attempts = 0
        while attempts < self._max_attempts:
            await self._sleep(self._interval)
            attempts += 1
            try:
                result = await self._fetch(job_id)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning(
                    f"Result poll {attempts}/{self._max_attempts} for job "
                    f"{job_id} failed: {exc}"
                )
                continue

            if result is not None:
                logger.info(f"Result for job {job_id} found after {attempts} attempt(s)")
                if on_result is not None:
                    await on_result(job_id, result)
                return result
            logger.debug(f"Result poll {attempts}/{self._max_attempts}: job {job_id} not ready")

        logger.warning(f"Timed out waiting for results of job {job_id}")
        raise PollTimeoutError(job_id, attempts)
