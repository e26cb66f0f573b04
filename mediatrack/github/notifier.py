"""Best-effort job notifications filed as GitHub issues."""

import logging
from abc import ABC, abstractmethod
from typing import Optional

from mediatrack.github.store import GitHubStore
from mediatrack.jobs.models import JobRecord

logger = logging.getLogger(__name__)

_FOOTER = "---\n*This issue was automatically created by the media processing service.*"


def format_size(num_bytes: int) -> str:
    if num_bytes <= 0:
        return "0 Bytes"
    size = float(num_bytes)
    for unit in ("Bytes", "KB", "MB", "GB"):
        if size < 1024 or unit == "GB":
            return f"{round(size, 2):g} {unit}"
        size /= 1024
    return f"{num_bytes} Bytes"


def _details(job: JobRecord) -> str:
    return (
        "**Job Details:**\n"
        f"- **Original Name:** {job.original_name}\n"
        f"- **Job ID:** {job.id}\n"
        f"- **Size:** {format_size(job.size)}\n"
        f"- **Upload Time:** {job.created_at.isoformat()}\n"
    )


def completed_issue_body(job: JobRecord) -> str:
    result = job.result
    lines = ["## Media Processing Completed", "", _details(job), "**Processing Results:**"]
    if result is not None:
        if result.primary_artifact_url:
            lines.append(f"- **Main Video URL:** {result.primary_artifact_url}")
        if result.thumbnail_url:
            lines.append(f"- **Thumbnail URL:** {result.thumbnail_url}")
        if result.part_urls:
            lines.append(f"- **Video Parts:** {len(result.part_urls)} parts")
            lines.append("")
            lines.append("**Video Parts:**")
            lines.extend(
                f"- Part {index}: {url}"
                for index, url in enumerate(result.part_urls, start=1)
            )
    lines.extend(["", _FOOTER])
    return "\n".join(lines)


def error_issue_body(job: JobRecord, error: str) -> str:
    return "\n".join([
        "## Media Processing Error",
        "",
        _details(job),
        "**Error Details:**",
        "```",
        error,
        "```",
        "",
        _FOOTER,
    ])


class JobNotifier(ABC):
    """Fire-and-forget side channel. Callers swallow its failures."""

    @abstractmethod
    async def job_completed(self, job: JobRecord) -> None:
        ...

    @abstractmethod
    async def job_failed(self, job: JobRecord, error: str) -> None:
        ...


class NullNotifier(JobNotifier):
    async def job_completed(self, job: JobRecord) -> None:
        return None

    async def job_failed(self, job: JobRecord, error: str) -> None:
        return None


class GitHubIssueNotifier(JobNotifier):
    def __init__(self, store: GitHubStore):
        self._store = store

    @property
    def enabled(self) -> bool:
        return self._store.enabled

    async def job_completed(self, job: JobRecord) -> None:
        if not self.enabled:
            logger.debug(f"Issue notifications disabled, skipping job {job.id}")
            return
        await self._store.create_issue(
            f"Media Processing: {job.original_name}",
            completed_issue_body(job),
            ["media-processing", "automated", "completed"],
        )

    async def job_failed(self, job: JobRecord, error: Optional[str] = None) -> None:
        if not self.enabled:
            logger.debug(f"Issue notifications disabled, skipping job {job.id}")
            return
        await self._store.create_issue(
            f"Media Processing Error: {job.original_name}",
            error_issue_body(job, error or job.error_message or "unknown error"),
            ["media-processing", "automated", "error"],
        )
