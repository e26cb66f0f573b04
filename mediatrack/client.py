"""HTTP client for the mediatrack service.

Used by scripts and other services that submit media and wait for results.
For remote-queue jobs nothing is pushed while the external worker runs, so
``wait_for_result`` polls ``/api/v1/results/{id}`` through a ResultPoller.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx

from mediatrack.config import settings
from mediatrack.jobs.models import JobResult
from mediatrack.jobs.poller import ReconcileFn, ResultPoller

logger = logging.getLogger(__name__)


class MediaTrackClient:
    def __init__(
        self,
        base_url: str = "http://localhost:8001",
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/") + "/api/v1",
            timeout=timeout,
            transport=transport,
        )

    async def create_job(self, path: str) -> Dict[str, Any]:
        """Upload a video file and start processing it."""
        file_path = Path(path)
        with open(file_path, "rb") as fh:
            response = await self._client.post(
                "/jobs",
                files={"file": (file_path.name, fh, "video/mp4")},
            )
        response.raise_for_status()
        return response.json()

    async def get_job(self, job_id: str) -> Dict[str, Any]:
        response = await self._client.get(f"/jobs/{job_id}")
        response.raise_for_status()
        return response.json()

    async def list_jobs(self, status: Optional[str] = None) -> List[Dict[str, Any]]:
        params = {"status": status} if status else None
        response = await self._client.get("/jobs", params=params)
        response.raise_for_status()
        return response.json()

    async def fetch_result(self, job_id: str) -> Optional[JobResult]:
        """One poll attempt. None while the worker has not published a result."""
        response = await self._client.get(f"/results/{job_id}")
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return JobResult.model_validate(response.json()["result"])

    async def wait_for_result(
        self,
        job_id: str,
        interval: Optional[float] = None,
        max_attempts: Optional[int] = None,
        on_result: Optional[ReconcileFn] = None,
    ) -> JobResult:
        """Poll until the result exists. Raises PollTimeoutError at the ceiling."""
        poller = ResultPoller(
            self.fetch_result,
            interval=settings.poll_interval_seconds if interval is None else interval,
            max_attempts=settings.poll_max_attempts if max_attempts is None else max_attempts,
        )
        return await poller.poll(job_id, on_result=on_result)

    async def close(self):
        await self._client.aclose()

    async def __aenter__(self) -> "MediaTrackClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
